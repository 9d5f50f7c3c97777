"""Configuration loading for steward with TOML support."""

from __future__ import annotations

import tomllib
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_ALLOWED_TOOLS,
    DEFAULT_CLASSIFIER_MODEL,
    DEFAULT_DB_ASYNC_URL,
    DEFAULT_INTRO_CHANNEL,
    DEFAULT_MAX_TURNS,
    DEFAULT_MODEL,
    DEFAULT_RULES_CHANNEL,
    DEFAULT_TIMEZONE,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_FLUSH_INTERVAL_SECONDS,
    EMBEDDING_MODEL,
    STREAM_EDIT_INTERVAL_SECONDS,
    STREAM_MIN_CHARS,
    TRAIT_ANALYSIS_THRESHOLD,
)
from .paths import get_config_path


class DiscordConfig(BaseModel):
    """Discord bot configuration."""

    token: str = Field("", title="Token", description="Discord bot token")
    guild_id: str = Field("", title="Guild", description="Home guild ID (empty = any)")
    allowed_channels: str = Field("", title="Allowed Channels", description="Comma-separated channel IDs")
    intro_channel: str = Field(DEFAULT_INTRO_CHANNEL, title="Intro Channel", description="Channel name for self-introductions")
    rules_channel: str = Field(DEFAULT_RULES_CHANNEL, title="Rules Channel", description="Channel name linked from the welcome message")
    welcome_enabled: bool = Field(True, title="Welcome", description="Greet new members in the intro channel")
    volunteer_enabled: bool = Field(True, title="Volunteer", description="Occasionally join un-mentioned technical questions")
    role_tiers: dict[str, Literal["everyone", "member", "core", "admin"]] = Field(
        default_factory=dict,
        title="Role Tiers",
        description="Extra role name to permission tier mappings, merged over the defaults",
    )


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = Field(DEFAULT_DB_ASYNC_URL, title="Database URL", description="PostgreSQL connection string")


class GenerationConfig(BaseModel):
    """Reply generation settings."""

    model: str = Field(DEFAULT_MODEL, title="Model", description="Model used for replies")
    max_turns: int = Field(DEFAULT_MAX_TURNS, title="Max Turns", description="Agent turn budget per reply")
    work_dir: str = Field("", title="Working Directory", description="Sandbox directory for the agent (empty = data dir)")
    allowed_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS), title="Allowed Tools")
    timezone: str = Field(DEFAULT_TIMEZONE, title="Timezone", description="Timezone used for the current-time preamble")
    base_url: str = Field("", title="Backend URL", description="Anthropic-compatible endpoint override")
    auth_token: str = Field("", title="Backend Token", description="Auth token for the backend override")
    include_partial_messages: bool = Field(True, title="Partial Messages", description="Stream token deltas while generating")


class SafetyConfig(BaseModel):
    """Input classifier settings."""

    advisory_enabled: bool = Field(True, title="Advisory Check", description="Ask a model to judge messages the patterns let through")
    classifier_model: str = Field(DEFAULT_CLASSIFIER_MODEL, title="Classifier Model")


class EmbeddingConfig(BaseModel):
    """Message embedding settings."""

    api_key: str = Field("", title="OpenAI API Key")
    model: str = Field(EMBEDDING_MODEL, title="Model")
    batch_size: int = Field(EMBEDDING_BATCH_SIZE, title="Batch Size")
    flush_interval_seconds: float = Field(EMBEDDING_FLUSH_INTERVAL_SECONDS, title="Flush Interval")


class TraitConfig(BaseModel):
    """Personality analysis settings."""

    enabled: bool = Field(True, title="Enabled")
    threshold: int = Field(TRAIT_ANALYSIS_THRESHOLD, title="Threshold", description="Messages between analyses")
    model: str = Field(DEFAULT_CLASSIFIER_MODEL, title="Model")


class StreamingConfig(BaseModel):
    """Live reply editing settings."""

    min_chars: int = Field(STREAM_MIN_CHARS, title="Min Characters")
    edit_interval_seconds: float = Field(STREAM_EDIT_INTERVAL_SECONDS, title="Edit Interval")


class GitHubConfig(BaseModel):
    """Issue tracker settings."""

    token: str = Field("", title="Token")
    repo: str = Field("", title="Repository", description="owner/name")
    repo_dir: str = Field("", title="Checkout", description="Local clone used by the dev pipeline")
    base_branch: str = Field("main", title="Base Branch")


class SentryConfig(BaseModel):
    dsn: str = Field("", title="DSN")
    environment: str = Field("production", title="Environment")


class StewardConfigDict(dict):
    """Wrapper that supports both attribute and dict access."""

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'StewardConfigDict' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value


class StewardConfig(BaseModel):
    """Main steward configuration with validation."""

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    embeddings: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    traits: TraitConfig = Field(default_factory=TraitConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sentry: SentryConfig = Field(default_factory=SentryConfig)

    def to_dict(self) -> StewardConfigDict:
        """Convert to dict-like object with attribute access on each section."""
        result = StewardConfigDict(self.model_dump())
        for key, value in result.items():
            if isinstance(value, dict):
                result[key] = StewardConfigDict(value)
        return result


def load_steward_config() -> StewardConfigDict:
    """Load steward configuration from config.toml with validation.

    Falls back to defaults if the config file doesn't exist or cannot be parsed.
    """
    config_data: dict[str, Any] = {}

    config_path = get_config_path()
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load config from {}: {}", config_path, e)

    try:
        return StewardConfig(**config_data).to_dict()
    except Exception as e:
        logger.warning("Config validation failed, falling back to defaults: {}", e)
        return StewardConfig().to_dict()
