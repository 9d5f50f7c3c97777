from __future__ import annotations

from typing import Literal, TypeAlias

from pydantic import BaseModel, Field

Intent: TypeAlias = Literal[
    "self_introduction",
    "question",
    "discussion",
    "announcement",
    "greeting",
    "reaction",
    "other",
]


class SafetyJudgement(BaseModel):
    safe: bool = True
    reason: str | None = None


class IntentClassification(BaseModel):
    intent: Intent = "other"


class Big5Delta(BaseModel):
    O: float = 0.0
    C: float = 0.0
    E: float = 0.0
    A: float = 0.0
    N: float = 0.0


class TraitDelta(BaseModel):
    """Personality nudge proposed from a window of recent messages.

    Every component is expected in [-10, 10]; callers clamp before applying.
    """

    observation: str = ""
    big5_delta: Big5Delta = Field(default_factory=Big5Delta)
    enneagram_delta: dict[str, float] = Field(default_factory=dict)


__all__ = [
    "Big5Delta",
    "Intent",
    "IntentClassification",
    "SafetyJudgement",
    "TraitDelta",
]
