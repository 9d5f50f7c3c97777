from datetime import UTC, datetime

import pytest

from steward_discord.search import format_search_results, run_search
from steward_discord.store import SearchHit


def _hit(i: int, content: str = "Postgres full-text search tips") -> SearchHit:
    return SearchHit(
        content=content,
        display_name=f"user{i}",
        channel_name="general",
        channel_id="c1",
        created_at=datetime(2026, 3, 1, 20, 0, tzinfo=UTC),
    )


class DummyBatcher:
    def __init__(self, hits, enabled=True):
        self.hits = hits
        self.enabled = enabled
        self.queries: list[str] = []

    async def search_similar(self, query, limit=5):
        self.queries.append(query)
        return self.hits


@pytest.mark.asyncio
async def test_full_text_hits_skip_semantic_search(store):
    store.search_results = [_hit(1)]
    batcher = DummyBatcher([_hit(2)])

    hits = await run_search(store, "postgres", batcher=batcher)

    assert hits == [_hit(1)]
    assert batcher.queries == []


@pytest.mark.asyncio
async def test_semantic_fallback_when_no_text_hits(store):
    batcher = DummyBatcher([_hit(2)])

    assert await run_search(store, "postgres", batcher=batcher) == [_hit(2)]
    assert await run_search(store, "postgres", batcher=DummyBatcher([_hit(2)], enabled=False)) == []


def test_format_empty_results():
    assert format_search_results([], "kafka") == "I found nothing about 'kafka' in the records. 🔍"


def test_format_uses_local_date_and_preview():
    long_text = "line one\n" + "x" * 200
    text = format_search_results([_hit(1, long_text)], "x", timezone="Asia/Tokyo")

    lines = text.splitlines()
    assert lines[0] == "🔍 **Results for 'x'** (1)"
    assert lines[2] == "> **user1** #general (2026-03-02)"
    assert lines[3] == "> " + ("line one " + "x" * 200)[:120] + "..."


def test_format_caps_shown_results():
    text = format_search_results([_hit(i) for i in range(11)], "postgres")

    assert text.count("> **user") == 8
    assert text.endswith("*...and 3 more*")
