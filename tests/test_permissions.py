from types import SimpleNamespace

import pytest

from steward_discord.permissions import (
    PermissionTier,
    has_permission,
    permission_context,
    permission_denied_message,
    resolve_tier,
)


def _member(*role_names, member_id=10, owner_id=1):
    return SimpleNamespace(
        id=member_id,
        guild=SimpleNamespace(owner_id=owner_id),
        roles=[SimpleNamespace(name=name) for name in ("@everyone", *role_names)],
    )


def test_owner_outranks_roles():
    assert resolve_tier(_member(member_id=1)) is PermissionTier.OWNER


@pytest.mark.parametrize(
    ("roles", "expected"),
    [
        ((), PermissionTier.EVERYONE),
        (("Member",), PermissionTier.MEMBER),
        (("member", "CORE"), PermissionTier.CORE),
        (("Moderator", "Member"), PermissionTier.ADMIN),
        (("Admins",), PermissionTier.EVERYONE),
    ],
)
def test_highest_role_wins(roles, expected):
    assert resolve_tier(_member(*roles)) is expected


def test_missing_member_is_everyone():
    assert resolve_tier(None) is PermissionTier.EVERYONE


def test_custom_role_mapping():
    tiers = {"Maintainer": PermissionTier.ADMIN}

    assert resolve_tier(_member("maintainer"), tiers) is PermissionTier.ADMIN
    assert resolve_tier(_member("Admin"), tiers) is PermissionTier.EVERYONE


def test_command_requirements():
    assert has_permission("search", PermissionTier.EVERYONE)
    assert not has_permission("issue", PermissionTier.MEMBER)
    assert has_permission("issue", PermissionTier.CORE)
    assert not has_permission("dev", PermissionTier.CORE)
    assert has_permission("dev", PermissionTier.OWNER)


def test_only_top_tiers_are_privileged():
    assert PermissionTier.OWNER.is_privileged
    assert PermissionTier.ADMIN.is_privileged
    assert not PermissionTier.CORE.is_privileged


def test_denied_message_names_required_tier():
    assert "**administrators**" in permission_denied_message("dev")
    assert "`issue`" in permission_denied_message("issue")


def test_permission_context_lists_roles():
    assert permission_context(_member("Core")) == "Permission tier: core (roles: Core)"
    assert permission_context(_member()) == "Permission tier: everyone"


def test_permission_context_uses_configured_tiers():
    tiers = {"maintainer": PermissionTier.ADMIN}

    assert permission_context(_member("Maintainer"), tiers) == "Permission tier: admin (roles: Maintainer)"
