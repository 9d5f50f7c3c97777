"""Shared filesystem helpers for steward."""

from __future__ import annotations

import os
import platform
from pathlib import Path


def get_config_dir() -> Path:
    """Get platform-specific config directory."""
    match platform.system():
        case "Windows":
            return Path(os.getenv("LOCALAPPDATA", "")) / "steward"
        case "Darwin":
            return Path.home() / "Library" / "Application Support" / "steward"
        case _:
            return Path.home() / ".config" / "steward"


def get_config_path() -> Path:
    """Location of the user's config.toml (overridable with STEWARD_CONFIG)."""
    override = os.getenv("STEWARD_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_config_dir() / "config.toml"
