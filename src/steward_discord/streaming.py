"""Throttled live editing of a streamed reply.

The reply slot moves from unsent to a sending sentinel (set synchronously
so a second update cannot start another send) to the sent message. A
failed initial send puts the slot back to unsent so a later update can try
again. Edits are rate limited and fire-and-forget.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from loguru import logger

from steward_shared.constants import STREAM_EDIT_INTERVAL_SECONDS, STREAM_MIN_CHARS

from .safety import truncate_for_platform
from .tasks import BackgroundTasks


class EditableMessage(Protocol):
    async def edit(self, *, content: str) -> Any: ...


type SendFn = Callable[[str], Awaitable[EditableMessage]]


class _Sending:
    def __repr__(self) -> str:
        return "<SENDING>"


SENDING = _Sending()


class StreamThrottler:
    """Turns cumulative progress text into a few visible Discord edits."""

    def __init__(
        self,
        send: SendFn,
        *,
        min_chars: int = STREAM_MIN_CHARS,
        edit_interval: float = STREAM_EDIT_INTERVAL_SECONDS,
        progress_note: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._send = send
        self._min_chars = min_chars
        self._edit_interval = edit_interval
        self._progress_note = progress_note
        self._clock = clock
        self._slot: EditableMessage | _Sending | None = None
        self._last_edit = 0.0
        self._latest = ""
        self._tasks = BackgroundTasks("stream")

    @property
    def state(self) -> EditableMessage | _Sending | None:
        return self._slot

    @property
    def latest_text(self) -> str:
        return self._latest

    @property
    def message(self) -> EditableMessage | None:
        if self._slot is None or self._slot is SENDING:
            return None
        return self._slot

    def _render(self, text: str) -> str:
        return truncate_for_platform(text, suffix=self._progress_note)

    def update(self, text: str) -> None:
        """Feed the latest cumulative text. Never blocks."""
        self._latest = text

        if self._slot is None:
            if len(text) >= self._min_chars:
                self._slot = SENDING
                self._tasks.spawn(self._initial_send(text), label="send")
            return

        if self._slot is SENDING:
            return

        now = self._clock()
        if now - self._last_edit >= self._edit_interval:
            self._last_edit = now
            self._tasks.spawn(self._edit(self._slot, self._render(text)), label="edit")

    async def _initial_send(self, text: str) -> None:
        try:
            message = await self._send(self._render(text))
        except Exception as exc:
            logger.warning("Initial streamed send failed: {}", exc)
            self._slot = None
            return
        self._slot = message
        self._last_edit = self._clock()

    async def _edit(self, message: EditableMessage, content: str) -> None:
        try:
            await message.edit(content=content)
        except Exception as exc:
            logger.warning("Streamed edit failed: {}", exc)

    async def finalize(self, text: str) -> EditableMessage | None:
        """Publish the final text over the live message, or as a fresh reply.

        Outstanding progress edits are awaited first so none of them can
        land after the final content.
        """
        await self._tasks.drain()

        if not text:
            return self.message

        live = self.message
        if live is not None:
            try:
                await live.edit(content=text)
                return live
            except Exception as exc:
                logger.warning("Final edit failed, sending a new reply instead: {}", exc)

        try:
            return await self._send(text)
        except Exception as exc:
            logger.error("Could not deliver final reply: {}", exc)
            return None
