"""Server-management actions embedded in generated replies.

Privileged replies may carry ``[ADMIN_ACTION:{...json...}]`` tags. They are
stripped from the visible text, validated into one model per action kind,
and executed in order against the guild. A failing action reports its own
result line and never stops the ones after it.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal

import discord
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

ACTION_MARKER = "[ADMIN_ACTION:"

MISSING_PERMISSIONS_CODE = 50013
MISSING_PERMISSIONS_HINT = (
    "❌ I lack the server permissions for that. Please enable Manage Channels "
    "and Manage Roles for the bot in the Developer Portal, then try again."
)

_DECODER = json.JSONDecoder()


class _Action(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class CreateChannel(_Action):
    type: Literal["create_channel"] = "create_channel"
    name: str | None = None
    channel_type: Literal["text", "voice", "forum", "stage", "announcement"] = "text"
    category: str | None = None
    topic: str | None = None
    nsfw: bool = False


class DeleteChannel(_Action):
    type: Literal["delete_channel"] = "delete_channel"
    name: str | None = None
    id: str | None = None


class EditChannel(_Action):
    type: Literal["edit_channel"] = "edit_channel"
    name: str | None = None
    id: str | None = None
    new_name: str | None = None
    topic: str | None = None
    nsfw: bool | None = None
    slowmode: int | None = None


class CreateCategory(_Action):
    type: Literal["create_category"] = "create_category"
    name: str | None = None


class DeleteCategory(_Action):
    type: Literal["delete_category"] = "delete_category"
    name: str | None = None
    id: str | None = None


class CreateRole(_Action):
    type: Literal["create_role"] = "create_role"
    name: str | None = None
    color: str | None = None
    mentionable: bool = False
    hoist: bool = False


class DeleteRole(_Action):
    type: Literal["delete_role"] = "delete_role"
    name: str | None = None
    id: str | None = None


class AssignRole(_Action):
    type: Literal["assign_role"] = "assign_role"
    user_id: str | None = None
    role_name: str | None = None
    role_id: str | None = None


class RemoveRole(_Action):
    type: Literal["remove_role"] = "remove_role"
    user_id: str | None = None
    role_name: str | None = None
    role_id: str | None = None


class CreateThread(_Action):
    type: Literal["create_thread"] = "create_thread"
    channel_name: str | None = None
    channel_id: str | None = None
    name: str | None = None
    auto_archive_duration: int = 1440


class ArchiveThread(_Action):
    type: Literal["archive_thread"] = "archive_thread"
    thread_id: str | None = None
    thread_name: str | None = None


class SetChannelPermission(_Action):
    type: Literal["set_channel_permission"] = "set_channel_permission"
    channel_name: str | None = None
    channel_id: str | None = None
    target_type: Literal["role", "member"] = "role"
    target_name: str | None = None
    target_id: str | None = None
    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)


class ListChannels(_Action):
    type: Literal["list_channels"] = "list_channels"


class ListRoles(_Action):
    type: Literal["list_roles"] = "list_roles"


AdminAction = Annotated[
    CreateChannel
    | DeleteChannel
    | EditChannel
    | CreateCategory
    | DeleteCategory
    | CreateRole
    | DeleteRole
    | AssignRole
    | RemoveRole
    | CreateThread
    | ArchiveThread
    | SetChannelPermission
    | ListChannels
    | ListRoles,
    Field(discriminator="type"),
]

_ACTION_ADAPTER: TypeAdapter[AdminAction] = TypeAdapter(AdminAction)


def parse_action(payload: Any) -> AdminAction:
    return _ACTION_ADAPTER.validate_python(payload)


def extract_actions(text: str) -> tuple[list[AdminAction], str]:
    """Pull every action tag out of ``text``.

    Returns the parsed actions in order of appearance and the text with all
    tags removed and trimmed. Tags that do not parse are dropped from the
    text and logged.
    """
    actions: list[AdminAction] = []
    pieces: list[str] = []
    cursor = 0

    while True:
        start = text.find(ACTION_MARKER, cursor)
        if start == -1:
            break
        pieces.append(text[cursor:start])
        body_start = start + len(ACTION_MARKER)

        end, payload = _decode_tag(text, body_start)
        if payload is not None:
            try:
                actions.append(parse_action(payload))
            except ValidationError as exc:
                logger.warning("Ignoring invalid admin action {}: {}", payload, exc.errors()[:1])

        if end == -1:
            # Unterminated tag: nothing after the marker is visible text.
            cursor = len(text)
            break
        cursor = end

    pieces.append(text[cursor:])
    return actions, "".join(pieces).strip()


def _decode_tag(text: str, body_start: int) -> tuple[int, Any]:
    """Decode one tag body; returns (index after the closing bracket, payload)."""
    position = body_start
    while position < len(text) and text[position].isspace():
        position += 1

    try:
        payload, json_end = _DECODER.raw_decode(text, position)
    except json.JSONDecodeError:
        payload, json_end = None, position

    close = json_end
    while close < len(text) and text[close].isspace():
        close += 1
    if payload is not None and close < len(text) and text[close] == "]":
        return close + 1, payload

    bracket = text.find("]", body_start)
    logger.warning("Malformed admin action tag: {!r}", text[body_start : body_start + 120])
    return (bracket + 1 if bracket != -1 else -1), None


# Lookups


def _as_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _same_name(left: str | None, right: str | None) -> bool:
    return left is not None and right is not None and left.lower() == right.lower()


def _find_channel(guild: Any, *, name: str | None, id: str | None, kind: Any = None) -> Any:
    """Channel by id or name; categories only match when ``kind`` asks for them."""

    def wanted(channel: Any) -> bool:
        if kind is not None:
            return channel.type == kind
        return channel.type != discord.ChannelType.category

    channel_id = _as_int(id)
    if channel_id is not None:
        channel = guild.get_channel(channel_id)
        return channel if channel is not None and wanted(channel) else None
    for channel in guild.channels:
        if wanted(channel) and _same_name(channel.name, name):
            return channel
    return None


def _find_role(guild: Any, *, name: str | None, id: str | None) -> Any:
    role_id = _as_int(id)
    if role_id is not None:
        return guild.get_role(role_id)
    for role in guild.roles:
        if _same_name(role.name, name):
            return role
    return None


async def _fetch_member(guild: Any, user_id: str | None) -> Any:
    member_id = _as_int(user_id)
    if member_id is None:
        return None
    try:
        return await guild.fetch_member(member_id)
    except discord.HTTPException:
        return None


async def _find_thread(guild: Any, *, id: str | None, name: str | None) -> Any:
    thread_id = _as_int(id)
    if thread_id is not None:
        return guild.get_thread(thread_id) or guild.get_channel(thread_id)
    for thread in guild.threads:
        if _same_name(thread.name, name):
            return thread
    # Threads created before the cache warmed up only show up via the API.
    for thread in await guild.active_threads():
        if _same_name(thread.name, name):
            return thread
    return None


def _permission_flag(name: str) -> str | None:
    """Accept ``ViewChannel`` or ``view_channel`` style names."""
    flag = re.sub(r"(?<!^)(?=[A-Z])", "_", name.strip()).lower()
    return flag if flag in discord.Permissions.VALID_FLAGS else None


_CHANNEL_EMOJI = {
    discord.ChannelType.text: "💬",
    discord.ChannelType.voice: "🔊",
    discord.ChannelType.news: "📢",
    discord.ChannelType.stage_voice: "🎙️",
    discord.ChannelType.forum: "📋",
}


def _missing(kind: str, ref: str | None) -> str:
    return f"❌ I could not find the {kind} '{ref or '?'}'."


class ActionExecutor:
    """Runs parsed actions against one guild."""

    def __init__(self, guild: Any):
        self.guild = guild

    async def execute_all(self, actions: list[AdminAction]) -> list[str]:
        results = []
        for action in actions:
            try:
                results.append(await self.execute(action))
            except Exception as exc:
                logger.opt(exception=exc).error("Admin action {} failed", action.type)
                if getattr(exc, "code", None) == MISSING_PERMISSIONS_CODE:
                    results.append(MISSING_PERMISSIONS_HINT)
                else:
                    results.append("❌ That did not go through. Please try again.")
        return results

    async def execute(self, action: AdminAction) -> str:
        guild = self.guild
        logger.info("Executing admin action {} in guild {}", action.type, guild.id)

        match action:
            case CreateChannel(name=None) | CreateCategory(name=None) | CreateRole(name=None):
                return "❌ No name was given."

            case CreateChannel():
                parent = None
                if action.category:
                    parent = _find_channel(
                        guild, name=action.category, id=None, kind=discord.ChannelType.category
                    )
                channel = await self._create_channel(action, parent)
                return f"✅ Created channel <#{channel.id}>."

            case DeleteChannel():
                channel = _find_channel(guild, name=action.name, id=action.id)
                if channel is None:
                    return _missing("channel", action.name or action.id)
                name = channel.name
                await channel.delete()
                return f"✅ Deleted channel #{name}."

            case EditChannel():
                channel = _find_channel(guild, name=action.name, id=action.id)
                if channel is None:
                    return _missing("channel", action.name or action.id)
                edits: dict[str, Any] = {}
                if action.new_name is not None:
                    edits["name"] = action.new_name
                if action.topic is not None:
                    edits["topic"] = action.topic
                if action.nsfw is not None:
                    edits["nsfw"] = action.nsfw
                if action.slowmode is not None:
                    edits["slowmode_delay"] = action.slowmode
                await channel.edit(**edits)
                return f"✅ Updated channel <#{channel.id}>."

            case CreateCategory():
                category = await guild.create_category(action.name)
                return f"✅ Created category '{category.name}'."

            case DeleteCategory():
                category = _find_channel(
                    guild, name=action.name, id=action.id, kind=discord.ChannelType.category
                )
                if category is None:
                    return _missing("category", action.name or action.id)
                name = category.name
                await category.delete()
                return f"✅ Deleted category '{name}'."

            case CreateRole():
                options: dict[str, Any] = {
                    "name": action.name,
                    "mentionable": action.mentionable,
                    "hoist": action.hoist,
                }
                if action.color:
                    options["colour"] = discord.Colour.from_str(action.color)
                role = await guild.create_role(**options)
                return f"✅ Created role '{role.name}'."

            case DeleteRole():
                role = _find_role(guild, name=action.name, id=action.id)
                if role is None:
                    return _missing("role", action.name or action.id)
                if role.managed:
                    return f"❌ '{role.name}' is managed by an integration and cannot be deleted."
                name = role.name
                await role.delete()
                return f"✅ Deleted role '{name}'."

            case AssignRole() | RemoveRole():
                if not action.user_id:
                    return "❌ No member was given."
                member = await _fetch_member(guild, action.user_id)
                if member is None:
                    return _missing("member", action.user_id)
                role = _find_role(guild, name=action.role_name, id=action.role_id)
                if role is None:
                    return _missing("role", action.role_name or action.role_id)
                if isinstance(action, AssignRole):
                    await member.add_roles(role)
                    return f"✅ Gave {member.display_name} the '{role.name}' role."
                await member.remove_roles(role)
                return f"✅ Removed the '{role.name}' role from {member.display_name}."

            case CreateThread():
                channel = _find_channel(guild, name=action.channel_name, id=action.channel_id)
                if channel is None:
                    return _missing("channel", action.channel_name or action.channel_id)
                if not action.name:
                    return "❌ No thread name was given."
                thread = await channel.create_thread(
                    name=action.name,
                    auto_archive_duration=action.auto_archive_duration,
                    type=discord.ChannelType.public_thread,
                )
                return f"✅ Started thread '{thread.name}'."

            case ArchiveThread():
                thread = await _find_thread(guild, id=action.thread_id, name=action.thread_name)
                if thread is None:
                    return _missing("thread", action.thread_name or action.thread_id)
                await thread.edit(archived=True)
                return f"✅ Archived thread '{thread.name}'."

            case SetChannelPermission():
                channel = _find_channel(guild, name=action.channel_name, id=action.channel_id)
                if channel is None:
                    return _missing("channel", action.channel_name or action.channel_id)
                if action.target_type == "role":
                    target = _find_role(guild, name=action.target_name, id=action.target_id)
                else:
                    target = await _fetch_member(guild, action.target_id)
                    if target is None and action.target_name:
                        target = guild.get_member_named(action.target_name)
                if target is None:
                    return _missing(action.target_type, action.target_name or action.target_id)
                overwrite = discord.PermissionOverwrite(**self._overwrite_flags(action))
                await channel.set_permissions(target, overwrite=overwrite)
                return f"✅ Updated permissions on <#{channel.id}>."

            case ListChannels():
                return self._list_channels()

            case ListRoles():
                return self._list_roles()

    async def _create_channel(self, action: CreateChannel, parent: Any) -> Any:
        guild = self.guild
        options: dict[str, Any] = {"category": parent}
        if action.topic:
            options["topic"] = action.topic

        match action.channel_type:
            case "voice":
                return await guild.create_voice_channel(action.name, category=parent)
            case "stage":
                return await guild.create_stage_channel(action.name, category=parent)
            case "forum":
                return await guild.create_forum(action.name, nsfw=action.nsfw, **options)
            case "announcement":
                return await guild.create_text_channel(action.name, nsfw=action.nsfw, news=True, **options)
            case _:
                return await guild.create_text_channel(action.name, nsfw=action.nsfw, **options)

    @staticmethod
    def _overwrite_flags(action: SetChannelPermission) -> dict[str, bool]:
        flags: dict[str, bool] = {}
        for name in action.allow:
            flag = _permission_flag(name)
            if flag:
                flags[flag] = True
        for name in action.deny:
            flag = _permission_flag(name)
            if flag:
                flags[flag] = False
        return flags

    def _list_channels(self) -> str:
        channels = sorted(
            (c for c in self.guild.channels if c.type != discord.ChannelType.category),
            key=lambda c: c.position,
        )
        lines = []
        for channel in channels:
            emoji = _CHANNEL_EMOJI.get(channel.type, "📁")
            parent = getattr(channel, "category", None)
            suffix = f" ({parent.name})" if parent is not None else ""
            lines.append(f"{emoji} {channel.name}{suffix}")
        return f"📋 **Channels** ({len(lines)})\n" + "\n".join(lines)

    def _list_roles(self) -> str:
        roles = sorted(
            (r for r in self.guild.roles if r.name != "@everyone"),
            key=lambda r: r.position,
            reverse=True,
        )
        lines = [f"• {role.name}: {len(role.members)} members" for role in roles]
        return f"📋 **Roles** ({len(lines)})\n" + "\n".join(lines)


def admin_tool_spec() -> str:
    """Prompt section describing the action tags to privileged users' replies."""
    return """\
## Server management (owner and admin only)

You can manage this server by placing action tags in your reply. Each tag
must be written exactly as [ADMIN_ACTION:{ JSON }]. Use one tag per
operation; several tags may appear in one reply. Results are reported to
the user automatically.

### Channels
- create_channel:
  [ADMIN_ACTION:{"type":"create_channel","name":"channel-name","channelType":"text|voice|forum|stage|announcement","category":"Category (optional)","topic":"Topic (optional)"}]
- delete_channel:
  [ADMIN_ACTION:{"type":"delete_channel","name":"channel-name"}]
- edit_channel:
  [ADMIN_ACTION:{"type":"edit_channel","name":"channel-name","newName":"optional","topic":"optional","slowmode":seconds}]

### Categories
- create_category:
  [ADMIN_ACTION:{"type":"create_category","name":"Category"}]
- delete_category:
  [ADMIN_ACTION:{"type":"delete_category","name":"Category"}]

### Roles
- create_role:
  [ADMIN_ACTION:{"type":"create_role","name":"Role","color":"#FF0000","mentionable":false,"hoist":false}]
- delete_role:
  [ADMIN_ACTION:{"type":"delete_role","name":"Role"}]
- assign_role (take userId from a mention: <@123456> means userId "123456"):
  [ADMIN_ACTION:{"type":"assign_role","userId":"123456","roleName":"Role"}]
- remove_role:
  [ADMIN_ACTION:{"type":"remove_role","userId":"123456","roleName":"Role"}]

### Threads
- create_thread:
  [ADMIN_ACTION:{"type":"create_thread","channelName":"parent-channel","name":"Thread"}]
- archive_thread:
  [ADMIN_ACTION:{"type":"archive_thread","threadName":"Thread"}]

### Permissions
- set_channel_permission:
  [ADMIN_ACTION:{"type":"set_channel_permission","channelName":"channel-name","targetType":"role","targetName":"Role","allow":["ViewChannel"],"deny":["SendMessages"]}]
  Permission names: ViewChannel, SendMessages, ManageChannels, ManageRoles, ManageMessages, EmbedLinks, AttachFiles, ReadMessageHistory, MentionEveryone, Connect, Speak

### Information
- list_channels:
  [ADMIN_ACTION:{"type":"list_channels"}]
- list_roles:
  [ADMIN_ACTION:{"type":"list_roles"}]

### Rules
- Always ask for confirmation before any delete, and emit the tag only after the user confirms.
- When doing many operations at once, report progress along the way.
- Take userId values from the mentions in the user's message.
- Surround tags with a short explanation in your usual butler voice."""
