import asyncio

import pytest

from steward_discord.batcher import EmbeddingBatcher


class DummyEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[list[str]] = []

    async def create_batch(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        return [[float(len(text)), 0.0] for text in texts]


def _text(i: int) -> str:
    return f"message number {i} about vector search"


@pytest.mark.asyncio
async def test_reaching_threshold_triggers_exactly_one_flush(store):
    embedder = DummyEmbedder()
    batcher = EmbeddingBatcher(store, embedder, batch_size=3)

    for i in range(3):
        assert batcher.enqueue(i, "u1", "c1", _text(i))
    await batcher.drain()

    assert embedder.calls == [[_text(0), _text(1), _text(2)]]
    assert [vector[0] for vector in store.vectors] == [0, 1, 2]
    assert batcher.pending == 0


@pytest.mark.asyncio
async def test_below_threshold_waits_for_timer_flush(store):
    embedder = DummyEmbedder()
    batcher = EmbeddingBatcher(store, embedder, batch_size=3)

    batcher.enqueue(1, "u1", "c1", _text(1))
    await batcher.drain()
    assert embedder.calls == []

    assert await batcher.flush() == 1
    assert len(store.vectors) == 1


@pytest.mark.asyncio
async def test_flush_never_exceeds_batch_size(store):
    embedder = DummyEmbedder()
    batcher = EmbeddingBatcher(store, embedder, batch_size=2)

    for i in range(5):
        batcher.enqueue(i, "u1", "c1", _text(i))
    await batcher.drain()
    while await batcher.flush():
        pass

    assert all(len(call) <= 2 for call in embedder.calls)
    assert sum(len(call) for call in embedder.calls) == 5


@pytest.mark.asyncio
async def test_provider_failure_drops_the_batch(store):
    embedder = DummyEmbedder(fail=True)
    batcher = EmbeddingBatcher(store, embedder, batch_size=2)

    batcher.enqueue(1, "u1", "c1", _text(1))
    batcher.enqueue(2, "u1", "c1", _text(2))
    await batcher.drain()

    assert len(embedder.calls) == 1
    assert store.vectors == []
    assert batcher.pending == 0


@pytest.mark.asyncio
async def test_short_or_disabled_messages_are_skipped(store):
    assert EmbeddingBatcher(store, None).enqueue(1, "u1", "c1", _text(1)) is False

    batcher = EmbeddingBatcher(store, DummyEmbedder())
    assert batcher.enqueue(1, "u1", "c1", "too short") is False
    assert batcher.pending == 0


@pytest.mark.asyncio
async def test_timer_flushes_on_interval(store):
    embedder = DummyEmbedder()
    batcher = EmbeddingBatcher(store, embedder, batch_size=10, flush_interval=0.01)
    batcher.enqueue(1, "u1", "c1", _text(1))

    batcher.start()
    for _ in range(50):
        if store.vectors:
            break
        await asyncio.sleep(0.01)
    await batcher.stop()

    assert len(store.vectors) == 1


@pytest.mark.asyncio
async def test_search_similar_uses_query_vector(store):
    store.similar_results = ["hit"]
    embedder = DummyEmbedder()
    batcher = EmbeddingBatcher(store, embedder)

    assert await batcher.search_similar("pgvector tuning") == ["hit"]
    assert embedder.calls == [["pgvector tuning"]]

    failing = EmbeddingBatcher(store, DummyEmbedder(fail=True))
    assert await failing.search_similar("pgvector tuning") == []
