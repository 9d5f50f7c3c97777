import pytest

from steward_discord.config import ConfigError, load_bot_config
from steward_discord.permissions import PermissionTier


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "STEWARD_DISCORD_TOKEN",
        "STEWARD_DATABASE_URL",
        "STEWARD_GUILD_ID",
        "STEWARD_ALLOWED_CHANNELS",
        "STEWARD_MODEL",
        "STEWARD_MAX_TURNS",
        "STEWARD_TIMEZONE",
        "STEWARD_VOLUNTEER",
        "STEWARD_ADVISORY_CHECK",
        "STEWARD_WORK_DIR",
        "STEWARD_BACKEND_URL",
        "STEWARD_BACKEND_TOKEN",
        "OPENAI_API_KEY",
        "GITHUB_TOKEN",
        "GITHUB_REPO",
        "SENTRY_DSN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STEWARD_WORK_DIR", "/tmp/steward-test")


def test_load_config_prefers_cli_over_env(monkeypatch):
    monkeypatch.setenv("STEWARD_DISCORD_TOKEN", "env-token")
    monkeypatch.setenv("STEWARD_DATABASE_URL", "postgresql://env/db")
    monkeypatch.setattr("steward_discord.config.load_steward_config", lambda: {})

    config = load_bot_config(token_override="cli-token", model_override="cli-model")

    assert config.token == "cli-token"
    assert config.model == "cli-model"
    assert config.database_url == "postgresql://env/db"
    assert config.allowed_channels == frozenset()
    assert config.timezone == "Asia/Tokyo"
    assert config.volunteer_enabled is True
    assert config.embeddings_enabled is False
    assert config.github_enabled is False


def test_load_config_reads_env_and_lists(monkeypatch):
    monkeypatch.setattr("steward_discord.config.load_steward_config", lambda: {})
    monkeypatch.setenv("STEWARD_DISCORD_TOKEN", "env-token")
    monkeypatch.setenv("STEWARD_DATABASE_URL", "postgresql://env/db")
    monkeypatch.setenv("STEWARD_ALLOWED_CHANNELS", "111, 222")
    monkeypatch.setenv("STEWARD_MAX_TURNS", "12")
    monkeypatch.setenv("STEWARD_VOLUNTEER", "0")
    monkeypatch.setenv("STEWARD_TIMEZONE", "UTC")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("GITHUB_REPO", "octo/steward")

    config = load_bot_config()

    assert config.allowed_channels == frozenset({"111", "222"})
    assert config.max_turns == 12
    assert config.volunteer_enabled is False
    assert config.timezone == "UTC"
    assert config.embeddings_enabled is True
    assert config.github_enabled is True
    assert config.github_repo == "octo/steward"


def test_toml_values_used_when_env_missing(monkeypatch):
    monkeypatch.setattr(
        "steward_discord.config.load_steward_config",
        lambda: {
            "discord": {"token": "toml-token", "intro_channel": "hello"},
            "database": {"url": "postgresql://toml/db"},
            "generation": {"base_url": "https://proxy.example", "auth_token": "proxy-key"},
            "streaming": {"min_chars": 40},
        },
    )

    config = load_bot_config()

    assert config.token == "toml-token"
    assert config.database_url == "postgresql://toml/db"
    assert config.intro_channel == "hello"
    assert config.stream_min_chars == 40
    assert config.backend_env == {
        "ANTHROPIC_BASE_URL": "https://proxy.example",
        "ANTHROPIC_AUTH_TOKEN": "proxy-key",
    }


def test_missing_token_raises(monkeypatch):
    monkeypatch.setattr("steward_discord.config.load_steward_config", lambda: {})
    monkeypatch.setenv("STEWARD_DATABASE_URL", "postgresql://env/db")

    with pytest.raises(ConfigError):
        load_bot_config()


def test_missing_database_raises(monkeypatch):
    monkeypatch.setattr("steward_discord.config.load_steward_config", lambda: {})
    monkeypatch.setenv("STEWARD_DISCORD_TOKEN", "env-token")

    with pytest.raises(ConfigError):
        load_bot_config()


def test_invalid_values_raise(monkeypatch):
    monkeypatch.setattr("steward_discord.config.load_steward_config", lambda: {})
    monkeypatch.setenv("STEWARD_DISCORD_TOKEN", "env-token")
    monkeypatch.setenv("STEWARD_DATABASE_URL", "postgresql://env/db")

    monkeypatch.setenv("STEWARD_MAX_TURNS", "many")
    with pytest.raises(ConfigError):
        load_bot_config()

    monkeypatch.delenv("STEWARD_MAX_TURNS")
    monkeypatch.setenv("STEWARD_TIMEZONE", "Mars/Olympus")
    with pytest.raises(ConfigError):
        load_bot_config()


def test_role_tiers_extend_the_defaults(monkeypatch):
    monkeypatch.setattr(
        "steward_discord.config.load_steward_config",
        lambda: {
            "discord": {"token": "t", "role_tiers": {"Maintainer": "admin", "Member": "core"}},
            "database": {"url": "postgresql://toml/db"},
        },
    )

    config = load_bot_config()

    assert config.role_tiers["maintainer"] is PermissionTier.ADMIN
    assert config.role_tiers["member"] is PermissionTier.CORE
    assert config.role_tiers["moderator"] is PermissionTier.ADMIN


@pytest.mark.parametrize("label", ["owner", "superuser"])
def test_role_tiers_reject_unknown_or_owner(monkeypatch, label):
    monkeypatch.setattr(
        "steward_discord.config.load_steward_config",
        lambda: {
            "discord": {"token": "t", "role_tiers": {"Maintainer": label}},
            "database": {"url": "postgresql://toml/db"},
        },
    )

    with pytest.raises(ConfigError):
        load_bot_config()
