import asyncio
from datetime import datetime

import pytest

from steward_discord.agent import GenerationContext, ResponseGenerator, format_history
from steward_discord.permissions import PermissionTier
from steward_discord.persona import PersonaProfile
from steward_discord.provider import (
    GenerationError,
    SessionStateError,
    content_event,
    result_event,
    system_event,
)
from steward_discord.store import HistoryEntry


class DummyProvider:
    def __init__(self, *scripts, gate: asyncio.Event | None = None):
        self.scripts = list(scripts)
        self.gate = gate
        self.calls: list[dict] = []

    async def stream(self, prompt, *, system_prompt, resume=None):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "resume": resume})
        script = self.scripts.pop(0) if self.scripts else [result_event("ok", None)]
        if self.gate is not None:
            await self.gate.wait()
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item


def _generator(provider, store):
    return ResponseGenerator(
        provider,
        store,
        PersonaProfile(),
        timezone="UTC",
        clock=lambda tz: datetime(2026, 1, 2, 3, 4, 5, tzinfo=tz),
    )


def _context(tier=PermissionTier.EVERYONE, history=(), permission_note=""):
    return GenerationContext(
        user_id="u1",
        display_name="Alice",
        channel_id="c1",
        channel_name="general",
        tier=tier,
        permission_note=permission_note,
        history=history,
    )


@pytest.mark.asyncio
async def test_second_request_while_in_flight_gets_busy_message(store):
    gate = asyncio.Event()
    provider = DummyProvider([content_event("Hello"), result_event("Hello there", "tok-1")], gate=gate)
    generator = _generator(provider, store)

    first = asyncio.create_task(generator.generate("first", _context()))
    await asyncio.sleep(0)
    assert generator.is_busy("u1")

    second = await generator.generate("second", _context())
    assert second == generator.persona.busy_message

    gate.set()
    assert await first == "Hello there"
    assert len(provider.calls) == 1
    assert not generator.is_busy("u1")


@pytest.mark.asyncio
async def test_session_token_is_stored_and_resumed(store):
    provider = DummyProvider(
        [content_event("Hi"), result_event("Hi!", "tok-1")],
        [result_event("Again", "tok-2")],
    )
    generator = _generator(provider, store)

    assert await generator.generate("hello", _context()) == "Hi!"
    assert store.sessions[("u1", "c1")].session_token == "tok-1"

    assert await generator.generate("hello again", _context()) == "Again"
    assert provider.calls[0]["resume"] is None
    assert provider.calls[1]["resume"] == "tok-1"
    assert store.sessions[("u1", "c1")].session_token == "tok-2"


@pytest.mark.asyncio
async def test_session_error_clears_token_and_apologises(store):
    await store.upsert_session("u1", "c1", "stale-token")
    provider = DummyProvider([SessionStateError("could not resume session")])
    generator = _generator(provider, store)

    reply = await generator.generate("hello", _context())

    assert reply == generator.persona.error_message
    assert store.resets == [("u1", "c1", None)]
    assert store.sessions[("u1", "c1")].session_token is None
    assert not generator.is_busy("u1")


@pytest.mark.asyncio
async def test_other_errors_keep_the_session(store):
    await store.upsert_session("u1", "c1", "good-token")
    provider = DummyProvider([GenerationError("rate limited")])
    generator = _generator(provider, store)

    reply = await generator.generate("hello", _context())

    assert reply == generator.persona.error_message
    assert store.resets == []
    assert store.sessions[("u1", "c1")].session_token == "good-token"


@pytest.mark.asyncio
async def test_progress_receives_cumulative_text_and_compaction_note(store):
    provider = DummyProvider(
        [
            content_event("Hel"),
            content_event("lo"),
            system_event("compact_boundary"),
            result_event("", "tok-1"),
        ]
    )
    generator = _generator(provider, store)
    seen: list[str] = []

    reply = await generator.generate("hello", _context(), seen.append)

    assert seen[0] == "Hel"
    assert seen[1] == "Hello"
    assert seen[2].startswith("Hello") and generator.persona.compacting_note in seen[2]
    assert reply == "Hello"


@pytest.mark.asyncio
async def test_empty_generation_returns_fallback(store):
    provider = DummyProvider([result_event("", None)])
    generator = _generator(provider, store)

    assert await generator.generate("hello", _context()) == generator.persona.empty_message
    assert store.session_upserts == []


@pytest.mark.asyncio
async def test_system_prompt_sections(store):
    await store.upsert_user("u1", "alice", "Alice")
    store.users["u1"].personality_summary = "Tendencies: open"
    provider = DummyProvider()
    generator = _generator(provider, store)
    history = [HistoryEntry("Bob", "anyone tried pgvector?"), HistoryEntry("Alice", "yes")]

    everyday = await generator.build_system_prompt(_context(history=history))
    admin = await generator.build_system_prompt(
        _context(tier=PermissionTier.ADMIN, permission_note="Permission tier: admin (roles: Maintainer)")
    )

    assert "2026-01-02 03:04:05 (UTC)" in everyday
    assert "#general" in everyday
    assert "Personality: Tendencies: open" in everyday
    assert "Bob: anyone tried pgvector?" in everyday
    assert "[ADMIN_ACTION:" not in everyday
    assert "[ADMIN_ACTION:" in admin
    assert "Permission tier: admin (roles: Maintainer)" in admin
    assert "Permission tier" not in everyday


def test_format_history_keeps_last_ten_and_truncates():
    history = [HistoryEntry(f"user{i}", "x" * 300) for i in range(15)]

    lines = format_history(history).splitlines()

    assert len(lines) == 10
    assert lines[0].startswith("user5: ")
    assert len(lines[0]) == len("user5: ") + 150
