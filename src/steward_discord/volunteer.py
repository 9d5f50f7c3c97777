"""Deciding when to join a conversation without being mentioned."""

from __future__ import annotations

import random
import re
import time
from collections.abc import Callable

from steward_shared.constants import (
    VOLUNTEER_ACTIVE_WINDOW_SECONDS,
    VOLUNTEER_COOLDOWN_SECONDS,
    VOLUNTEER_PROBABILITY,
)

TECH_KEYWORDS = re.compile(
    r"(?:claude|gpt|openai|anthropic|agent|llm|embedding|rag|mcp|fine.?tun|prompt|"
    r"hallucinat|token|vector|inference|model)",
    re.IGNORECASE,
)

QUESTION_WORDS = re.compile(
    r"\b(?:how|why|what|which|can|could|does|is there|anyone know|any idea)\b",
    re.IGNORECASE,
)


def looks_like_question(text: str) -> bool:
    return "?" in text or "？" in text or QUESTION_WORDS.search(text) is not None


def mentions_tech(text: str) -> bool:
    return TECH_KEYWORDS.search(text) is not None


class VolunteerPolicy:
    """Per-channel activity and cooldown bookkeeping.

    A channel becomes eligible only after the bot has replied there, and
    stays eligible for ``active_window`` seconds after the latest reply.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        active_window: float = VOLUNTEER_ACTIVE_WINDOW_SECONDS,
        cooldown: float = VOLUNTEER_COOLDOWN_SECONDS,
        probability: float = VOLUNTEER_PROBABILITY,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.enabled = enabled
        self.active_window = active_window
        self.cooldown = cooldown
        self.probability = probability
        self._clock = clock
        self._rng = rng
        self._last_active: dict[str, float] = {}
        self._last_volunteered: dict[str, float] = {}

    def mark_active(self, channel_id: str) -> None:
        self._last_active[channel_id] = self._clock()

    def is_active(self, channel_id: str) -> bool:
        last = self._last_active.get(channel_id)
        return last is not None and self._clock() - last <= self.active_window

    def should_volunteer(self, channel_id: str, content: str) -> bool:
        if not self.enabled or not self.is_active(channel_id):
            return False

        now = self._clock()
        last = self._last_volunteered.get(channel_id)
        if last is not None and now - last < self.cooldown:
            return False

        if not (looks_like_question(content) and mentions_tech(content)):
            return False

        if self._rng() >= self.probability:
            return False

        self._last_volunteered[channel_id] = now
        return True
