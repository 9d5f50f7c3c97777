from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


def pytest_configure() -> None:
    """Ensure `src/` is importable without installing the package."""
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if src.exists():
        sys.path.insert(0, str(src))


class DummyStore:
    """In-memory stand-in for ``steward_discord.store.Store``."""

    def __init__(self):
        self.users: dict[str, SimpleNamespace] = {}
        self.messages: list[SimpleNamespace] = []
        self.sessions: dict[tuple[str, str], SimpleNamespace] = {}
        self.session_upserts: list[tuple[str, str, str]] = []
        self.resets: list[tuple[str, str, str | None]] = []
        self.vectors: list[tuple[int, str, str, str, list[float]]] = []
        self.observations: list[dict] = []
        self.trait_updates: list[tuple[str, dict, str]] = []
        self.intros: dict[str, str] = {}
        self.history: list = []
        self.search_results: list = []
        self.similar_results: list = []
        self.fail_vector_saves = False

    async def upsert_user(self, user_id, username, display_name=None, avatar_url=None):
        user = self.users.get(user_id)
        if user is None:
            user = SimpleNamespace(
                id=user_id,
                username=username,
                display_name=display_name or username,
                avatar_url=avatar_url,
                intro=None,
                message_count=0,
                personality_scores=None,
                personality_summary=None,
                notes=None,
            )
            self.users[user_id] = user
        else:
            user.username = username
            user.display_name = display_name or username

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def increment_message_count(self, user_id):
        self.users[user_id].message_count += 1

    async def save_user_intro(self, user_id, intro):
        self.intros[user_id] = intro

    async def update_trait_scores(self, user_id, scores, summary):
        self.trait_updates.append((user_id, scores, summary))
        user = self.users[user_id]
        user.personality_scores = scores
        user.personality_summary = summary

    async def save_message(self, record):
        for row in self.messages:
            if row.discord_message_id == record.discord_message_id:
                return SimpleNamespace(id=row.id, created=False)
        row = SimpleNamespace(
            id=len(self.messages) + 1,
            discord_message_id=record.discord_message_id,
            channel_id=record.channel_id,
            channel_name=record.channel_name,
            user_id=record.user_id,
            content=record.content,
            is_bot=record.is_bot,
        )
        self.messages.append(row)
        return SimpleNamespace(id=row.id, created=True)

    async def get_recent_messages(self, user_id, limit=30):
        mine = [m for m in self.messages if m.user_id == user_id and not m.is_bot]
        return list(reversed(mine))[:limit]

    async def get_channel_history(self, channel_id, limit=15):
        return list(self.history)[-limit:]

    async def search_messages(self, query, limit=10):
        return list(self.search_results)[:limit]

    async def get_session(self, user_id, channel_id):
        return self.sessions.get((user_id, channel_id))

    async def upsert_session(self, user_id, channel_id, session_token):
        self.session_upserts.append((user_id, channel_id, session_token))
        existing = self.sessions.get((user_id, channel_id))
        if existing is None:
            self.sessions[(user_id, channel_id)] = SimpleNamespace(
                session_token=session_token, summary=None, message_count=1
            )
        else:
            existing.session_token = session_token
            existing.message_count += 1

    async def reset_session(self, user_id, channel_id, summary=None):
        self.resets.append((user_id, channel_id, summary))
        existing = self.sessions.get((user_id, channel_id))
        if existing is not None:
            existing.session_token = None
            existing.summary = summary

    async def add_trait_observation(
        self, user_id, observation, big5_delta, enneagram_delta, source_message_id=None
    ):
        self.observations.append(
            {
                "user_id": user_id,
                "observation": observation,
                "big5_delta": big5_delta,
                "enneagram_delta": enneagram_delta,
                "source_message_id": source_message_id,
            }
        )

    async def list_trait_observations(self, user_id, limit=50):
        mine = [SimpleNamespace(**o) for o in self.observations if o["user_id"] == user_id]
        return list(reversed(mine))[:limit]

    async def save_message_vector(self, message_id, user_id, channel_id, content_summary, embedding):
        if self.fail_vector_saves:
            raise RuntimeError("vector table unavailable")
        self.vectors.append((message_id, user_id, channel_id, content_summary, embedding))

    async def search_similar_messages(self, embedding, limit=5):
        return list(self.similar_results)[:limit]


class DummyStructuredClient:
    """Stands in for ``ClaudeClient``; returns queued results or raises them."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[tuple[list, type]] = []

    async def generate_response(self, messages, response_model, max_retries=1):
        self.calls.append((messages, response_model))
        if not self.results:
            raise ValueError("no structured output")
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def store() -> DummyStore:
    return DummyStore()


@pytest.fixture
def structured_client():
    return DummyStructuredClient
