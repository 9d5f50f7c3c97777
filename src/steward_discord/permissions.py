"""Role-based permission tiers.

Tiers are derived from role *names* (exact, case-insensitive) so the same
mapping works across guilds without pinning role IDs.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import IntEnum
from typing import Any


class PermissionTier(IntEnum):
    EVERYONE = 0
    MEMBER = 1
    CORE = 2
    ADMIN = 3
    OWNER = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def is_privileged(self) -> bool:
        """Owner and admin may emit server-management action tags."""
        return self >= PermissionTier.ADMIN


DEFAULT_ROLE_TIERS: dict[str, PermissionTier] = {
    "admin": PermissionTier.ADMIN,
    "moderator": PermissionTier.ADMIN,
    "core": PermissionTier.CORE,
    "member": PermissionTier.MEMBER,
}

COMMAND_TIERS: dict[str, PermissionTier] = {
    "issue": PermissionTier.CORE,
    "dev": PermissionTier.ADMIN,
    "search": PermissionTier.EVERYONE,
    "reset": PermissionTier.EVERYONE,
    "clear": PermissionTier.EVERYONE,
    "personality": PermissionTier.CORE,
}

_TIER_NAMES = {
    PermissionTier.OWNER: "the server owner",
    PermissionTier.ADMIN: "administrators",
    PermissionTier.CORE: "core members and above",
    PermissionTier.MEMBER: "members and above",
    PermissionTier.EVERYONE: "everyone",
}


def resolve_tier(member: Any, role_tiers: Mapping[str, PermissionTier] | None = None) -> PermissionTier:
    """Highest tier granted to a guild member; ``None`` (e.g. DMs) is EVERYONE."""
    if member is None:
        return PermissionTier.EVERYONE

    guild = getattr(member, "guild", None)
    if guild is not None and guild.owner_id == member.id:
        return PermissionTier.OWNER

    mapping = {name.lower(): tier for name, tier in (role_tiers or DEFAULT_ROLE_TIERS).items()}
    highest = PermissionTier.EVERYONE
    for role in getattr(member, "roles", []):
        tier = mapping.get(role.name.lower())
        if tier is not None and tier > highest:
            highest = tier
    return highest


def required_tier(command: str) -> PermissionTier:
    return COMMAND_TIERS.get(command, PermissionTier.EVERYONE)


def has_permission(command: str, tier: PermissionTier) -> bool:
    return tier >= required_tier(command)


def permission_denied_message(command: str) -> str:
    needed = _TIER_NAMES[required_tier(command)]
    return f"My apologies. The `{command}` command is reserved for **{needed}**. 🎩"


def permission_context(member: Any, role_tiers: Mapping[str, PermissionTier] | None = None) -> str:
    """One-line summary of a member's tier and roles for the prompt."""
    tier = resolve_tier(member, role_tiers)
    roles = [role.name for role in getattr(member, "roles", []) if role.name != "@everyone"]
    if roles:
        return f"Permission tier: {tier.label} (roles: {', '.join(roles)})"
    return f"Permission tier: {tier.label}"
