"""Session-scoped reply generation for Discord users."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from loguru import logger

from steward_shared.constants import DEFAULT_TIMEZONE, HISTORY_ENTRY_CHARS, HISTORY_WINDOW

from .actions import admin_tool_spec
from .permissions import PermissionTier
from .persona import PersonaProfile
from .provider import GenerationEventType, GenerationProvider, SessionStateError
from .store import HistoryEntry
from .traits import personality_context

if TYPE_CHECKING:
    from .store import Store

type ProgressCallback = Callable[[str], None]

_SESSION_ERROR_HINTS = ("session", "resume")


@dataclass(slots=True)
class GenerationContext:
    """Who is asking, where, and what was said recently."""

    user_id: str
    display_name: str
    channel_id: str
    channel_name: str
    tier: PermissionTier = PermissionTier.EVERYONE
    permission_note: str = ""
    history: Sequence[HistoryEntry] = field(default_factory=tuple)


def looks_like_session_error(exc: Exception) -> bool:
    """Heuristic used when the provider did not raise a typed session error."""
    if isinstance(exc, SessionStateError):
        return True
    text = str(exc).lower()
    return any(hint in text for hint in _SESSION_ERROR_HINTS)


def format_history(history: Sequence[HistoryEntry]) -> str:
    window = list(history)[-HISTORY_WINDOW:]
    return "\n".join(
        f"{entry.display_name or 'unknown'}: {entry.content[:HISTORY_ENTRY_CHARS]}" for entry in window
    )


class ResponseGenerator:
    """Single-flight, session-resuming front end to the generation provider."""

    def __init__(
        self,
        provider: GenerationProvider,
        store: Store,
        persona: PersonaProfile | None = None,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[ZoneInfo], datetime] | None = None,
    ):
        self._provider = provider
        self._store = store
        self._persona = persona or PersonaProfile()
        self._tz = ZoneInfo(timezone)
        self._clock = clock or (lambda tz: datetime.now(tz))
        self._in_flight: set[str] = set()

    @property
    def persona(self) -> PersonaProfile:
        return self._persona

    def is_busy(self, user_id: str) -> bool:
        return user_id in self._in_flight

    async def build_system_prompt(self, context: GenerationContext) -> str:
        """Persona rules, local time, tier guidance, user profile and recent chat."""
        now = self._clock(self._tz)
        sections = [
            self._persona.rules,
            f"## Current time\n{now:%Y-%m-%d %H:%M:%S} ({self._tz.key})",
            f"## Location\nDiscord channel: #{context.channel_name or 'unknown'}",
            f"## Who you are talking to\n{self._persona.tier_guidance(context.tier)}",
        ]
        if context.permission_note:
            sections[-1] += f"\n{context.permission_note}"

        if context.tier.is_privileged:
            sections.append(admin_tool_spec())

        user = await self._store.get_user(context.user_id)
        profile = personality_context(user)
        if profile:
            sections.append(f"## About this member\n{profile}")

        if context.history:
            sections.append(f"## Recent conversation in this channel\n{format_history(context.history)}")

        return "\n\n".join(sections)

    async def generate(
        self,
        user_message: str,
        context: GenerationContext,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Generate a reply, resuming the user's session in this channel.

        Args:
            user_message: Text to answer (mentions already stripped)
            context: Caller identity, channel and recent history
            on_progress: Receives the cumulative text as it streams in

        Returns:
            The final reply text, or one of the persona's fixed messages
            when busy, empty or failed. Never raises for provider errors.
        """
        user_id = context.user_id
        if user_id in self._in_flight:
            logger.info("User {} already has a reply in flight", user_id)
            return self._persona.busy_message

        self._in_flight.add(user_id)
        try:
            session = await self._store.get_session(user_id, context.channel_id)
            resume = session.session_token if session else None
            system_prompt = await self.build_system_prompt(context)

            logger.info(
                "Generating for {} ({}) in #{} resume={}",
                context.display_name,
                user_id,
                context.channel_name,
                bool(resume),
            )

            response = ""
            new_token: str | None = None
            async for event in self._provider.stream(
                user_message, system_prompt=system_prompt, resume=resume
            ):
                match event.type:
                    case GenerationEventType.CONTENT:
                        response += event.text
                        if on_progress and response:
                            on_progress(response)
                    case GenerationEventType.RESULT:
                        if event.text:
                            response = event.text
                        if event.session_token:
                            new_token = event.session_token
                    case GenerationEventType.SYSTEM:
                        if on_progress and event.is_compaction:
                            on_progress(f"{response}\n\n{self._persona.compacting_note}")

            if new_token:
                await self._store.upsert_session(user_id, context.channel_id, new_token)

            return response or self._persona.empty_message

        except Exception as exc:
            logger.exception("Generation failed for user {}: {}", user_id, exc)
            if looks_like_session_error(exc):
                logger.warning("Clearing session for user {} in {}", user_id, context.channel_id)
                try:
                    await self._store.reset_session(user_id, context.channel_id)
                except Exception:
                    logger.exception("Failed to clear session for user {}", user_id)
            return self._persona.error_message

        finally:
            self._in_flight.discard(user_id)

    async def reset(self, user_id: str, channel_id: str, summary: str | None = None) -> str:
        await self._store.reset_session(user_id, channel_id, summary)
        return self._persona.reset_message
