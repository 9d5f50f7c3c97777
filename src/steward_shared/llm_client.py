"""Structured-output LLM client used for classification and analysis calls."""

from __future__ import annotations

import asyncio
import json
import tempfile
import time
from pathlib import Path
from typing import Any, TypeVar

import sentry_sdk
from claude_agent_sdk import ClaudeAgentOptions, query
from loguru import logger
from pydantic import BaseModel

from .constants import DEFAULT_CLASSIFIER_MODEL

T = TypeVar("T", bound=BaseModel)

_auth_failed = False
_auth_failure_logged = False

_WRAPPER_KEYS = (
    "parameters",
    "parameter",
    "arguments",
    "argument",
    "input",
    "output",
    "data",
    "object",
    "result",
)


class AuthenticationError(Exception):
    """Raised when the model backend rejects our credentials."""


def _is_auth_error(error: Exception) -> bool:
    error_str = str(error).lower()
    return any(
        pattern in error_str
        for pattern in (
            "authentication",
            "unauthorized",
            "not authenticated",
            "invalid api key",
            "login required",
            "token expired",
        )
    )


class Message(BaseModel):
    role: str
    content: str


def format_messages(messages: list[Message]) -> str:
    """Flatten a chat transcript into a single prompt string."""
    parts = []
    for msg in messages:
        match msg.role:
            case "user":
                parts.append(f"User: {msg.content}")
            case "assistant":
                parts.append(f"Assistant: {msg.content}")
            case _:
                parts.append(msg.content)
    return "\n\n".join(parts)


def _unwrap_tool_payload(candidate: Any) -> Any:
    """Peel single-key wrappers such as {"parameters": {...}} off tool payloads."""
    for _ in range(10):
        if not isinstance(candidate, dict) or len(candidate) != 1:
            return candidate
        key, value = next(iter(candidate.items()))
        if key in _WRAPPER_KEYS or (
            isinstance(value, dict) and key.endswith(("Output", "Response", "Result", "Schema"))
        ):
            candidate = value
            continue
        return candidate
    logger.warning("Too many nested tool payload wrappers, giving up unwrapping")
    return candidate


def _try_parse_json_from_text(text: str) -> Any | None:
    stripped = text.strip()
    if not stripped:
        return None

    try:
        return json.loads(stripped)
    except ValueError:
        pass

    # Fenced or prose-wrapped object
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end <= start:
        return None

    try:
        return json.loads(stripped[start : end + 1])
    except ValueError:
        return None


def _extract_structured(msg: Any) -> Any | None:
    structured = getattr(msg, "structured_output", None)
    if structured:
        return _unwrap_tool_payload(structured)

    content = getattr(msg, "content", None)
    if isinstance(content, str):
        parsed = _try_parse_json_from_text(content)
        return _unwrap_tool_payload(parsed) if parsed is not None else None

    for block in content or []:
        tool_input = block.get("input") if isinstance(block, dict) else getattr(block, "input", None)
        if tool_input:
            return _unwrap_tool_payload(tool_input)
        block_text = getattr(block, "text", None)
        if block_text:
            parsed = _try_parse_json_from_text(block_text)
            if parsed is not None:
                return _unwrap_tool_payload(parsed)
    return None


class ClaudeClient:
    """Claude client for structured output generation."""

    def __init__(
        self,
        model: str = DEFAULT_CLASSIFIER_MODEL,
        *,
        env: dict[str, str] | None = None,
    ):
        self.model = model
        self.env = env or {}
        # Keep these throwaway sessions out of any real project directory
        self._cwd = Path(tempfile.gettempdir()) / "steward-llm"

    async def generate_response(
        self,
        messages: list[Message],
        response_model: type[T],
        max_retries: int = 1,
    ) -> T:
        """Generate structured output validated against ``response_model``.

        Args:
            messages: Transcript to send
            response_model: Pydantic model describing the expected JSON
            max_retries: Retries after the first attempt

        Raises:
            AuthenticationError: If credentials were rejected (never retried)
            ValueError: If no attempt produced structured output
        """
        global _auth_failed, _auth_failure_logged

        if _auth_failed:
            raise AuthenticationError("Model credentials were rejected earlier; skipping call")

        self._cwd.mkdir(exist_ok=True)
        options = ClaudeAgentOptions(
            model=self.model,
            cwd=str(self._cwd),
            max_turns=2,
            setting_sources=[],
            env=self.env,
            output_format={
                "type": "json_schema",
                "schema": response_model.model_json_schema(),
            },
        )
        prompt = format_messages(messages)

        last_error: Exception | None = None
        total_latency_ms = 0

        for attempt in range(max_retries + 1):
            start_time = time.monotonic()
            result = None

            try:
                # Drain the whole stream; breaking early upsets the SDK's cleanup
                async for msg in query(prompt=prompt, options=options):
                    if result is None:
                        result = _extract_structured(msg)
            except Exception as e:
                last_error = e
                total_latency_ms += int((time.monotonic() - start_time) * 1000)

                if _is_auth_error(e):
                    _auth_failed = True
                    if not _auth_failure_logged:
                        _auth_failure_logged = True
                        logger.error("Model credentials rejected; structured LLM calls disabled")
                    raise AuthenticationError(str(e)) from e

                logger.warning(
                    "LLM generate_response attempt {}/{} failed: {}",
                    attempt + 1,
                    max_retries + 1,
                    e,
                )
                if attempt < max_retries:
                    await asyncio.sleep(0.5 * (attempt + 1))
                continue

            total_latency_ms += int((time.monotonic() - start_time) * 1000)

            if result:
                logger.debug(
                    "LLM generate_response: model={} schema={} latency_ms={} attempt={}",
                    self.model,
                    response_model.__name__,
                    total_latency_ms,
                    attempt + 1,
                )
                sentry_sdk.add_breadcrumb(
                    category="llm",
                    message=f"LLM: {response_model.__name__}",
                    level="info",
                    data={"model": self.model, "latency_ms": total_latency_ms, "attempts": attempt + 1},
                )
                return response_model.model_validate(result)

            last_error = ValueError("No structured output in response")
            if attempt < max_retries:
                await asyncio.sleep(0.5 * (attempt + 1))

        sentry_sdk.add_breadcrumb(
            category="llm",
            message=f"LLM failed: {response_model.__name__}",
            level="warning",
            data={"model": self.model, "latency_ms": total_latency_ms, "attempts": max_retries + 1},
        )
        raise last_error or ValueError("No structured output in response")
