"""Batched embedding of recorded messages.

Items are taken off the queue the moment a batch is formed. A batch whose
provider call fails is dropped and logged, never requeued.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from steward_shared.constants import (
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_FLUSH_INTERVAL_SECONDS,
    EMBEDDING_MAX_CHARS,
    EMBEDDING_MIN_CHARS,
)

from .tasks import BackgroundTasks

if TYPE_CHECKING:
    from .store import SearchHit, Store


class BatchEmbedder(Protocol):
    async def create_batch(self, texts: list[str]) -> list[list[float]]: ...


@dataclass(slots=True, frozen=True)
class EmbeddingItem:
    message_id: int
    user_id: str
    channel_id: str
    content: str


class EmbeddingBatcher:
    def __init__(
        self,
        store: Store,
        embedder: BatchEmbedder | None,
        *,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        flush_interval: float = EMBEDDING_FLUSH_INTERVAL_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._embedder = embedder
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self._queue: deque[EmbeddingItem] = deque()
        self._tasks = BackgroundTasks("embedding")
        self._timer: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self._embedder is not None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, message_id: int, user_id: str, channel_id: str, content: str) -> bool:
        """Queue a message for embedding; returns False if it was skipped."""
        if self._embedder is None or not content or len(content) < EMBEDDING_MIN_CHARS:
            return False

        self._queue.append(
            EmbeddingItem(message_id, user_id, channel_id, content[:EMBEDDING_MAX_CHARS])
        )
        if len(self._queue) >= self.batch_size:
            batch = self._take_batch()
            self._tasks.spawn(self._process(batch), label="threshold")
        return True

    def _take_batch(self) -> list[EmbeddingItem]:
        count = min(self.batch_size, len(self._queue))
        return [self._queue.popleft() for _ in range(count)]

    async def flush(self) -> int:
        """Embed up to one batch now; returns how many items were taken."""
        batch = self._take_batch()
        if batch:
            await self._process(batch)
        return len(batch)

    async def _process(self, batch: list[EmbeddingItem]) -> None:
        if self._embedder is None or not batch:
            return
        try:
            vectors = await self._embedder.create_batch([item.content for item in batch])
            saved = 0
            for item, vector in zip(batch, vectors):
                if not vector:
                    continue
                await self._store.save_message_vector(
                    item.message_id, item.user_id, item.channel_id, item.content, vector
                )
                saved += 1
        except Exception as exc:
            logger.warning("Embedding batch of {} dropped: {}", len(batch), exc)
            return
        logger.debug("Embedded {} of {} queued messages", saved, len(batch))

    def start(self) -> None:
        if self._embedder is None or self._timer is not None:
            return
        self._timer = asyncio.create_task(self._timer_loop(), name="embedding:timer")
        logger.info("Embedding flush timer started ({}s interval)", self.flush_interval)

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("Timed embedding flush failed")

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        await self._tasks.drain()

    async def drain(self) -> None:
        await self._tasks.drain()

    async def search_similar(self, query: str, limit: int = 5) -> list[SearchHit]:
        """Nearest recorded messages to ``query``; empty on any failure."""
        if self._embedder is None:
            return []
        try:
            vectors = await self._embedder.create_batch([query])
            if not vectors or not vectors[0]:
                return []
            return await self._store.search_similar_messages(vectors[0], limit)
        except Exception as exc:
            logger.warning("Semantic search failed: {}", exc)
            return []
