"""Cheap intent labelling for channel-specific behaviour."""

from __future__ import annotations

from typing import TYPE_CHECKING, get_args

from loguru import logger

from steward_shared.llm_client import Message
from steward_shared.llm_schemas import Intent, IntentClassification

if TYPE_CHECKING:
    from steward_shared.llm_client import ClaudeClient

VALID_INTENTS: tuple[str, ...] = get_args(Intent)

MIN_CLASSIFIED_CHARS = 5
CLASSIFIER_INPUT_CHARS = 500

CLASSIFIER_PROMPT = """\
You classify the intent of a single Discord message.
Pick exactly one category:

- self_introduction: the author introduces themselves (name, background, interests)
- question: a technical question or a request for advice
- discussion: opinions, thoughts, or sharing an experience
- announcement: an event, a release, or a shared article
- greeting: hello, good morning, good night
- reaction: a short reaction such as "nice" or "makes sense"
- other: none of the above

Channel: #{channel}"""


class IntentClassifier:
    """Labels a message with one of ``VALID_INTENTS``; anything uncertain is ``other``."""

    def __init__(self, client: ClaudeClient | None):
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def classify(self, content: str, channel_name: str | None = None) -> str:
        if self._client is None or not content or len(content) < MIN_CLASSIFIED_CHARS:
            return "other"

        try:
            result = await self._client.generate_response(
                [
                    Message(role="system", content=CLASSIFIER_PROMPT.format(channel=channel_name or "unknown")),
                    Message(role="user", content=content[:CLASSIFIER_INPUT_CHARS]),
                ],
                IntentClassification,
                max_retries=0,
            )
        except Exception as exc:
            logger.warning("Intent classification failed: {}", exc)
            return "other"

        intent = result.intent if result.intent in VALID_INTENTS else "other"
        logger.debug("#{}: {!r} -> {}", channel_name or "?", content[:40], intent)
        return intent
