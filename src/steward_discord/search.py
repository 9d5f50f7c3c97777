"""Searching recorded server messages."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from loguru import logger

from steward_shared.constants import DEFAULT_TIMEZONE

if TYPE_CHECKING:
    from .batcher import EmbeddingBatcher
    from .store import SearchHit, Store

SEARCH_LIMIT = 10
SHOWN_RESULTS = 8
PREVIEW_CHARS = 120


async def run_search(
    store: Store,
    query: str,
    *,
    batcher: EmbeddingBatcher | None = None,
    limit: int = SEARCH_LIMIT,
) -> list[SearchHit]:
    """Full-text search first, nearest-neighbour search when that finds nothing."""
    hits = await store.search_messages(query, limit)
    if hits or batcher is None or not batcher.enabled:
        return hits

    logger.debug("No full-text hits for {!r}, trying semantic search", query)
    return await batcher.search_similar(query, limit)


def format_search_results(
    hits: Sequence[SearchHit], query: str, timezone: str = DEFAULT_TIMEZONE
) -> str:
    if not hits:
        return f"I found nothing about '{query}' in the records. 🔍"

    tz = ZoneInfo(timezone)
    lines = [f"🔍 **Results for '{query}'** ({len(hits)})", ""]
    for hit in hits[:SHOWN_RESULTS]:
        date = hit.created_at.astimezone(tz).strftime("%Y-%m-%d")
        name = hit.display_name or "unknown"
        channel = f" #{hit.channel_name}" if hit.channel_name else ""
        content = (hit.content or "").replace("\n", " ")
        preview = content[:PREVIEW_CHARS] + ("..." if len(content) > PREVIEW_CHARS else "")
        lines.append(f"> **{name}**{channel} ({date})")
        lines.append(f"> {preview}")
        lines.append("")

    if len(hits) > SHOWN_RESULTS:
        lines.append(f"*...and {len(hits) - SHOWN_RESULTS} more*")

    return "\n".join(lines).rstrip()
