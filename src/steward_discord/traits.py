"""Per-user personality accumulation.

Scores only ever change by adding clamped deltas, so applying two deltas
in turn lands on the same vector as applying their sum once.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, Field

from steward_shared.constants import (
    TRAIT_ANALYSIS_THRESHOLD,
    TRAIT_DELTA_LIMIT,
    TRAIT_MIN_MESSAGE_CHARS,
    TRAIT_MIN_SAMPLE,
    TRAIT_SAMPLE_SIZE,
)
from steward_shared.llm_client import Message
from steward_shared.llm_schemas import TraitDelta

from .tasks import BackgroundTasks

if TYPE_CHECKING:
    from steward_shared.llm_client import ClaudeClient
    from steward_shared.models import User

    from .store import Store

BIG5_AXES = ("O", "C", "E", "A", "N")
ENNEAGRAM_TYPES = tuple(str(n) for n in range(1, 10))

SIGNIFICANCE = 10.0
ENNEAGRAM_MINIMUM = 5.0

_AXIS_LABELS = {
    "O": ("open", "conservative"),
    "C": ("planful", "flexible"),
    "E": ("extroverted", "introverted"),
    "A": ("cooperative", "independent"),
    "N": ("sensitive", "stable"),
}

ENNEAGRAM_NAMES = {
    "1": "Reformer",
    "2": "Helper",
    "3": "Achiever",
    "4": "Individualist",
    "5": "Investigator",
    "6": "Loyalist",
    "7": "Enthusiast",
    "8": "Challenger",
    "9": "Peacemaker",
}

ANALYSIS_PROMPT = """\
You are a psychologist reading a Discord member's recent messages.

Current cumulative scores:
Big Five: O(openness)={O:g}, C(conscientiousness)={C:g}, E(extraversion)={E:g}, A(agreeableness)={A:g}, N(neuroticism)={N:g}

Suggest how these scores should move based on the messages.

Rules:
- Every delta is between -10 and +10.
- Use 0 for traits without a clear signal.
- Keep the observation objective, one or two lines.
- Enneagram keys are "1" to "9"."""


def clamp(value: float, limit: float = TRAIT_DELTA_LIMIT) -> float:
    return max(-limit, min(limit, float(value)))


class TraitScores(BaseModel):
    """Cumulative Big Five axes plus a sparse enneagram map."""

    big5: dict[str, float] = Field(default_factory=lambda: dict.fromkeys(BIG5_AXES, 0.0))
    enneagram: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> TraitScores:
        if not raw:
            return cls()
        scores = cls.model_validate(raw)
        for axis in BIG5_AXES:
            scores.big5.setdefault(axis, 0.0)
        return scores

    def apply(self, big5_delta: dict[str, float], enneagram_delta: dict[str, float]) -> TraitScores:
        """New scores with each delta component clamped then added."""
        big5 = {
            axis: self.big5.get(axis, 0.0) + clamp(big5_delta.get(axis, 0.0)) for axis in BIG5_AXES
        }
        enneagram = dict(self.enneagram)
        for key, delta in enneagram_delta.items():
            if key not in ENNEAGRAM_TYPES:
                continue
            enneagram[key] = enneagram.get(key, 0.0) + clamp(delta)
        return TraitScores(big5=big5, enneagram=enneagram)

    def summarize(self) -> str:
        labels = []
        for axis in BIG5_AXES:
            value = self.big5.get(axis, 0.0)
            if abs(value) > SIGNIFICANCE:
                high, low = _AXIS_LABELS[axis]
                labels.append(high if value > 0 else low)

        top = sorted(
            ((key, value) for key, value in self.enneagram.items() if value > ENNEAGRAM_MINIMUM),
            key=lambda item: item[1],
            reverse=True,
        )[:2]

        summary = f"Tendencies: {', '.join(labels)}" if labels else "Analyzing"
        if top:
            types = ", ".join(f"{key} ({ENNEAGRAM_NAMES.get(key, '?')})" for key, _ in top)
            summary += f" / Enneagram: {types}"
        return summary


def personality_context(user: User | None) -> str:
    """Profile block injected into the reply prompt; empty for unknown users."""
    if user is None:
        return ""
    lines = []
    if user.display_name:
        lines.append(f"Name: {user.display_name}")
    if user.intro:
        lines.append(f"Introduction: {user.intro}")
    if user.personality_summary:
        lines.append(f"Personality: {user.personality_summary}")
    if user.message_count:
        lines.append(f"Messages posted: {user.message_count}")
    if user.notes:
        lines.append(f"Notes: {user.notes}")
    return "\n".join(lines)


class TraitAccumulator:
    """Counts messages per user and periodically re-scores their personality."""

    def __init__(
        self,
        store: Store,
        client: ClaudeClient | None,
        *,
        threshold: int = TRAIT_ANALYSIS_THRESHOLD,
    ):
        self._store = store
        self._client = client
        self.threshold = threshold
        self._counts: defaultdict[str, int] = defaultdict(int)
        self._tasks = BackgroundTasks("traits")

    def count(self, user_id: str) -> int:
        return self._counts[user_id]

    def observe(self, user_id: str, text: str, source_message_id: str | None = None) -> bool:
        """Count a message; returns True when it triggered a reanalysis."""
        if not text or len(text) < TRAIT_MIN_MESSAGE_CHARS:
            return False

        self._counts[user_id] += 1
        if self._counts[user_id] % self.threshold != 0:
            return False

        self._tasks.spawn(self.reanalyze(user_id, source_message_id), label=user_id)
        return True

    async def drain(self) -> None:
        await self._tasks.drain()

    async def reanalyze(self, user_id: str, source_message_id: str | None = None) -> TraitScores | None:
        """Nudge stored scores from the user's latest messages.

        A provider failure or unusable output is treated as no signal and
        nothing is written.
        """
        if self._client is None:
            return None

        messages = await self._store.get_recent_messages(user_id, TRAIT_SAMPLE_SIZE)
        if len(messages) < TRAIT_MIN_SAMPLE:
            return None

        user = await self._store.get_user(user_id)
        if user is None:
            return None

        current = TraitScores.from_stored(user.personality_scores)
        transcript = "\n".join(
            f"[{m.channel_name or '?'}] {m.content[:200]}" for m in messages
        )

        try:
            delta = await self._client.generate_response(
                [
                    Message(role="system", content=ANALYSIS_PROMPT.format(**current.big5)),
                    Message(
                        role="user",
                        content=f"Recent messages from {user.display_name or user.username}:\n\n{transcript}",
                    ),
                ],
                TraitDelta,
            )
        except Exception as exc:
            logger.warning("Trait analysis for {} produced no signal: {}", user_id, exc)
            return None

        big5_delta = {axis: clamp(getattr(delta.big5_delta, axis)) for axis in BIG5_AXES}
        enneagram_delta = {
            key: clamp(value) for key, value in delta.enneagram_delta.items() if key in ENNEAGRAM_TYPES
        }

        updated = current.apply(big5_delta, enneagram_delta)
        summary = updated.summarize()

        await self._store.update_trait_scores(user_id, updated.model_dump(), summary)
        await self._store.add_trait_observation(
            user_id, delta.observation, big5_delta, enneagram_delta, source_message_id
        )
        logger.info("Updated traits for {}: {}", user_id, delta.observation or summary)
        return updated
