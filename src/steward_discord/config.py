"""Configuration helpers for steward-discord."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from steward_shared.config import load_steward_config
from steward_shared.paths import get_config_dir

from .permissions import DEFAULT_ROLE_TIERS, PermissionTier


class ConfigError(RuntimeError):
    """Raised when steward-discord configuration is invalid."""


def _split_csv(value: str | Iterable[str] | None) -> frozenset[str]:
    """Normalize comma or iterable values into a frozen set of strings."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        parts = [segment.strip() for segment in value.split(",")]
    else:
        parts = [segment.strip() for segment in value]
    return frozenset(part for part in parts if part)


def _split_list(value: str | Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        parts = [segment.strip() for segment in value.split(",")]
    else:
        parts = [segment.strip() for segment in value]
    return tuple(part for part in parts if part)


def _coerce_int(field: str, value: object, default: int) -> int:
    """Parse integer configuration values with helpful errors."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {field}: {value!r}") from exc


def _coerce_float(field: str, value: object, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for {field}: {value!r}") from exc


def _coerce_bool(field: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Invalid boolean for {field}: {value!r}")


def _first_set(*values: object) -> object:
    """First value that is not None/empty, so explicit False survives."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


@dataclass(slots=True)
class BotConfig:
    """Resolved Discord bot configuration."""

    token: str
    database_url: str
    guild_id: str | None = None
    allowed_channels: frozenset[str] = frozenset()
    intro_channel: str = "introductions"
    rules_channel: str = "rules"
    welcome_enabled: bool = True
    volunteer_enabled: bool = True
    role_tiers: dict[str, PermissionTier] = field(default_factory=lambda: dict(DEFAULT_ROLE_TIERS))

    model: str = "claude-sonnet-4-5"
    max_turns: int = 30
    work_dir: str = ""
    allowed_tools: tuple[str, ...] = ("WebSearch", "WebFetch")
    timezone: str = "Asia/Tokyo"
    backend_env: dict[str, str] = field(default_factory=dict)
    include_partial_messages: bool = True

    advisory_enabled: bool = True
    classifier_model: str = "claude-haiku-4-5"

    openai_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_batch_size: int = 5
    embedding_flush_interval: float = 60.0

    traits_enabled: bool = True
    trait_threshold: int = 20
    trait_model: str = "claude-haiku-4-5"

    stream_min_chars: int = 20
    stream_edit_interval: float = 3.0

    github_token: str | None = None
    github_repo: str | None = None
    github_repo_dir: str | None = None
    github_base_branch: str = "main"

    sentry_dsn: str | None = None
    sentry_environment: str = "production"

    @property
    def embeddings_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_token and self.github_repo)


def _role_tiers(overrides: dict[str, str] | None) -> dict[str, PermissionTier]:
    """Default role tiers with configured role names layered on top."""
    tiers = dict(DEFAULT_ROLE_TIERS)
    for role_name, label in (overrides or {}).items():
        tier = PermissionTier.__members__.get(str(label).upper())
        if tier is None or tier is PermissionTier.OWNER:
            raise ConfigError(f"Invalid permission tier for role {role_name!r}: {label!r}")
        tiers[role_name.lower()] = tier
    return tiers


def _backend_env(base_url: str | None, auth_token: str | None) -> dict[str, str]:
    """Environment overrides pointing the agent at an Anthropic-compatible backend."""
    env: dict[str, str] = {}
    if base_url:
        env["ANTHROPIC_BASE_URL"] = base_url
    if auth_token:
        env["ANTHROPIC_AUTH_TOKEN"] = auth_token
    return env


def load_bot_config(
    *,
    token_override: str | None = None,
    guild_override: str | None = None,
    database_override: str | None = None,
    model_override: str | None = None,
    allow_channels: Iterable[str] | None = None,
    volunteer_override: bool | None = None,
) -> BotConfig:
    """Load configuration from overrides, then environment, then config.toml."""

    raw = load_steward_config()
    discord_section = raw.get("discord", {})
    database_section = raw.get("database", {})
    generation = raw.get("generation", {})
    safety = raw.get("safety", {})
    embeddings = raw.get("embeddings", {})
    traits = raw.get("traits", {})
    streaming = raw.get("streaming", {})
    github = raw.get("github", {})
    sentry = raw.get("sentry", {})

    token = token_override or os.getenv("STEWARD_DISCORD_TOKEN") or discord_section.get("token")
    if not token:
        raise ConfigError(
            "Discord bot token missing. Provide --token, set STEWARD_DISCORD_TOKEN, "
            "or add [discord].token to config.toml.",
        )

    database_url = (
        database_override
        or os.getenv("STEWARD_DATABASE_URL")
        or database_section.get("url")
    )
    if not database_url:
        raise ConfigError("Database URL missing. Set STEWARD_DATABASE_URL or [database].url.")

    timezone = os.getenv("STEWARD_TIMEZONE") or generation.get("timezone") or "Asia/Tokyo"
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone: {timezone!r}") from exc

    allowed_tools = _split_list(
        os.getenv("STEWARD_ALLOWED_TOOLS") or generation.get("allowed_tools")
    ) or ("WebSearch", "WebFetch")

    work_dir = os.getenv("STEWARD_WORK_DIR") or generation.get("work_dir") or ""
    if not work_dir:
        work_dir = str(get_config_dir() / "workspace")

    volunteer_enabled = _coerce_bool(
        "volunteer_enabled",
        _first_set(
            volunteer_override,
            os.getenv("STEWARD_VOLUNTEER"),
            discord_section.get("volunteer_enabled"),
            True,
        ),
    )

    return BotConfig(
        token=token,
        database_url=database_url,
        guild_id=guild_override or os.getenv("STEWARD_GUILD_ID") or discord_section.get("guild_id") or None,
        allowed_channels=_split_csv(
            allow_channels
            or os.getenv("STEWARD_ALLOWED_CHANNELS")
            or discord_section.get("allowed_channels"),
        ),
        intro_channel=discord_section.get("intro_channel") or "introductions",
        rules_channel=discord_section.get("rules_channel") or "rules",
        welcome_enabled=_coerce_bool(
            "welcome_enabled", _first_set(discord_section.get("welcome_enabled"), True)
        ),
        volunteer_enabled=volunteer_enabled,
        role_tiers=_role_tiers(discord_section.get("role_tiers")),
        model=model_override or os.getenv("STEWARD_MODEL") or generation.get("model") or "claude-sonnet-4-5",
        max_turns=_coerce_int(
            "max_turns",
            _first_set(os.getenv("STEWARD_MAX_TURNS"), generation.get("max_turns")),
            default=30,
        ),
        work_dir=work_dir,
        allowed_tools=allowed_tools,
        timezone=timezone,
        backend_env=_backend_env(
            os.getenv("STEWARD_BACKEND_URL") or generation.get("base_url"),
            os.getenv("STEWARD_BACKEND_TOKEN") or generation.get("auth_token"),
        ),
        include_partial_messages=_coerce_bool(
            "include_partial_messages",
            _first_set(generation.get("include_partial_messages"), True),
        ),
        advisory_enabled=_coerce_bool(
            "advisory_enabled",
            _first_set(os.getenv("STEWARD_ADVISORY_CHECK"), safety.get("advisory_enabled"), True),
        ),
        classifier_model=safety.get("classifier_model") or "claude-haiku-4-5",
        openai_api_key=os.getenv("OPENAI_API_KEY") or embeddings.get("api_key") or None,
        embedding_model=embeddings.get("model") or "text-embedding-3-small",
        embedding_batch_size=_coerce_int("batch_size", embeddings.get("batch_size"), default=5),
        embedding_flush_interval=_coerce_float(
            "flush_interval_seconds", embeddings.get("flush_interval_seconds"), default=60.0
        ),
        traits_enabled=_coerce_bool("traits.enabled", _first_set(traits.get("enabled"), True)),
        trait_threshold=_coerce_int("traits.threshold", traits.get("threshold"), default=20),
        trait_model=traits.get("model") or "claude-haiku-4-5",
        stream_min_chars=_coerce_int("min_chars", streaming.get("min_chars"), default=20),
        stream_edit_interval=_coerce_float(
            "edit_interval_seconds", streaming.get("edit_interval_seconds"), default=3.0
        ),
        github_token=os.getenv("GITHUB_TOKEN") or github.get("token") or None,
        github_repo=os.getenv("GITHUB_REPO") or github.get("repo") or None,
        github_repo_dir=os.getenv("STEWARD_REPO_DIR") or github.get("repo_dir") or None,
        github_base_branch=github.get("base_branch") or "main",
        sentry_dsn=os.getenv("SENTRY_DSN") or sentry.get("dsn") or None,
        sentry_environment=sentry.get("environment") or "production",
    )
