"""Generation provider boundary.

Maps the Claude Agent SDK message stream onto three event kinds the
response generator understands: incremental content, the final result
(authoritative text plus continuation token) and informational system
notices.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ProcessError,
    ResultMessage,
    SystemMessage,
    TextBlock,
    query,
)
from claude_agent_sdk.types import StreamEvent as SDKStreamEvent
from loguru import logger


class GenerationError(RuntimeError):
    """The provider call failed or reported an error result."""


class SessionStateError(GenerationError):
    """The stored continuation token could not be resumed."""


class GenerationEventType(str, Enum):
    CONTENT = "content"
    RESULT = "result"
    SYSTEM = "system"


@dataclass(slots=True, frozen=True)
class GenerationEvent:
    type: GenerationEventType
    text: str = ""
    session_token: str | None = None
    subtype: str | None = None

    @property
    def is_compaction(self) -> bool:
        return self.type is GenerationEventType.SYSTEM and (
            "compact" in (self.subtype or "") or "compacting" in self.text
        )


def content_event(text: str) -> GenerationEvent:
    return GenerationEvent(type=GenerationEventType.CONTENT, text=text)


def result_event(text: str, session_token: str | None) -> GenerationEvent:
    return GenerationEvent(type=GenerationEventType.RESULT, text=text, session_token=session_token)


def system_event(subtype: str | None, text: str = "") -> GenerationEvent:
    return GenerationEvent(type=GenerationEventType.SYSTEM, text=text, subtype=subtype)


class GenerationProvider(Protocol):
    def stream(
        self,
        prompt: str,
        *,
        system_prompt: str,
        resume: str | None = None,
    ) -> AsyncIterator[GenerationEvent]: ...


def _text_delta(message: SDKStreamEvent) -> str:
    raw = message.event
    if raw.get("type") != "content_block_delta":
        return ""
    delta = raw.get("delta", {})
    if delta.get("type") != "text_delta":
        return ""
    return delta.get("text", "")


def _assistant_text(message: AssistantMessage) -> str:
    return "".join(block.text for block in message.content if isinstance(block, TextBlock))


def _system_text(message: SystemMessage) -> str:
    data = message.data or {}
    for key in ("message", "status", "content"):
        value = data.get(key)
        if isinstance(value, str):
            return value
    return ""


class ClaudeGenerationProvider:
    """Generation provider backed by the Claude Agent SDK ``query`` API."""

    def __init__(
        self,
        *,
        model: str,
        cwd: str | Path,
        allowed_tools: Sequence[str] = ("WebSearch", "WebFetch"),
        max_turns: int = 30,
        env: dict[str, str] | None = None,
        include_partial_messages: bool = True,
        permission_mode: str = "default",
    ):
        self.model = model
        self.cwd = Path(cwd)
        self.allowed_tools = list(allowed_tools)
        self.max_turns = max_turns
        self.env = env or {}
        self.include_partial_messages = include_partial_messages
        self.permission_mode = permission_mode

    def _options(self, system_prompt: str, resume: str | None) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            model=self.model,
            cwd=str(self.cwd),
            system_prompt=system_prompt,
            allowed_tools=self.allowed_tools,
            max_turns=self.max_turns,
            resume=resume,
            env=self.env,
            setting_sources=[],
            permission_mode=self.permission_mode,
            include_partial_messages=self.include_partial_messages,
        )

    async def stream(
        self,
        prompt: str,
        *,
        system_prompt: str,
        resume: str | None = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Yield generation events for one prompt.

        Raises:
            SessionStateError: If resuming ``resume`` failed in the CLI process
            GenerationError: If the provider reported an error result
        """
        self.cwd.mkdir(parents=True, exist_ok=True)
        options = self._options(system_prompt, resume)

        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, SDKStreamEvent):
                    if text := _text_delta(message):
                        yield content_event(text)

                elif isinstance(message, AssistantMessage):
                    # With partial messages on, the same text already arrived as deltas
                    if not self.include_partial_messages:
                        if text := _assistant_text(message):
                            yield content_event(text)

                elif isinstance(message, SystemMessage):
                    yield system_event(message.subtype, _system_text(message))

                elif isinstance(message, ResultMessage):
                    if message.is_error:
                        raise GenerationError(
                            f"Generation ended with {message.subtype}: {message.result or ''}".strip()
                        )
                    yield result_event(message.result or "", message.session_id)
        except ProcessError as exc:
            if resume:
                logger.warning("Resuming session {} failed: {}", resume, exc)
                raise SessionStateError(str(exc)) from exc
            raise
