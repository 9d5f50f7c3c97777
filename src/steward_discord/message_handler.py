"""Per-message pipeline: record, observe, route, generate, deliver."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import discord
from discord import AllowedMentions
from loguru import logger

from steward_shared.constants import (
    HISTORY_FETCH_LIMIT,
    INTRO_MAX_CHARS,
    INTRO_MIN_CHARS,
    TYPING_REFRESH_SECONDS,
)

from .actions import ActionExecutor, extract_actions
from .agent import GenerationContext
from .permissions import PermissionTier, permission_context, resolve_tier
from .safety import mask_secrets
from .store import MessageRecord
from .streaming import StreamThrottler

if TYPE_CHECKING:
    from .agent import ResponseGenerator
    from .batcher import EmbeddingBatcher
    from .classifier import IntentClassifier
    from .commands import CommandRouter
    from .safety import SafetyFilter
    from .store import Store
    from .traits import TraitAccumulator
    from .volunteer import VolunteerPolicy

_MENTION_RE = re.compile(r"<@!?\d+>")

# Replies may mention users but never roles or @everyone.
REPLY_MENTIONS = AllowedMentions(everyone=False, roles=False, users=True, replied_user=True)


def strip_mentions(text: str) -> str:
    return _MENTION_RE.sub("", text).strip()


class TypingIndicator:
    """Keeps the typing indicator alive until the block exits."""

    def __init__(self, channel: Any, interval: float = TYPING_REFRESH_SECONDS):
        self.channel = channel
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> TypingIndicator:
        await self._pulse()
        self._task = asyncio.create_task(self._refresh())
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        return False

    @property
    def is_active(self) -> bool:
        return self._task is not None

    async def _pulse(self) -> None:
        try:
            await self.channel.typing()
        except Exception as exc:
            logger.debug("Typing indicator failed: {}", exc)

    async def _refresh(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._pulse()


def message_record(message: Any) -> MessageRecord:
    channel = message.channel
    reference = getattr(message, "reference", None)
    attachments = [
        {
            "id": str(a.id),
            "filename": a.filename,
            "url": a.url,
            "content_type": a.content_type,
            "size": a.size,
        }
        for a in getattr(message, "attachments", [])
    ]
    embeds = [embed.to_dict() for embed in getattr(message, "embeds", [])]
    return MessageRecord(
        discord_message_id=str(message.id),
        channel_id=str(channel.id),
        user_id=str(message.author.id),
        content=message.content or "",
        guild_id=str(message.guild.id) if message.guild else None,
        channel_name=getattr(channel, "name", None),
        attachments=attachments or None,
        embeds=embeds or None,
        is_bot=bool(message.author.bot),
        reply_to=str(reference.message_id) if reference and reference.message_id else None,
        thread_id=str(channel.id) if isinstance(channel, discord.Thread) else None,
    )


@dataclass(slots=True)
class MessageHandler:
    """Everything that happens between Discord delivering a message and our reply."""

    store: Store
    generator: ResponseGenerator
    safety: SafetyFilter
    commands: CommandRouter
    volunteer: VolunteerPolicy
    batcher: EmbeddingBatcher | None = None
    traits: TraitAccumulator | None = None
    classifier: IntentClassifier | None = None
    intro_channel: str | None = None
    stream_min_chars: int | None = None
    stream_edit_interval: float | None = None
    reply_channels: frozenset[str] = frozenset()
    role_tiers: Mapping[str, PermissionTier] | None = None

    async def record(self, message: Any) -> None:
        """Persist the author and message; queue human text for embedding."""
        author = message.author
        user_id = str(author.id)
        try:
            avatar = getattr(author, "display_avatar", None)
            await self.store.upsert_user(
                user_id,
                author.name,
                getattr(author, "display_name", None),
                avatar.url if avatar else None,
            )
            saved = await self.store.save_message(message_record(message))
            if author.bot or not saved.created:
                return
            await self.store.increment_message_count(user_id)
        except Exception as exc:
            logger.warning("Recording message {} failed: {}", message.id, exc)
            return

        if self.batcher is not None and saved.id is not None and message.content:
            self.batcher.enqueue(saved.id, user_id, str(message.channel.id), message.content)

    async def handle(self, message: Any, bot_user: Any) -> None:
        if bot_user is not None and message.author.id == bot_user.id:
            return

        await self.record(message)
        if message.author.bot:
            return

        user_id = str(message.author.id)
        if self.traits is not None:
            self.traits.observe(user_id, message.content or "", str(message.id))

        await self._maybe_save_intro(message)

        channel_id = str(message.channel.id)
        if self.reply_channels and channel_id not in self.reply_channels:
            return

        mentioned = bot_user is not None and any(m.id == bot_user.id for m in message.mentions)
        if not mentioned:
            if not self.volunteer.should_volunteer(channel_id, message.content or ""):
                return
            logger.info("Volunteering in #{} for {}", getattr(message.channel, "name", "?"), user_id)

        content = strip_mentions(message.content or "") if mentioned else (message.content or "").strip()
        persona = self.generator.persona
        if not content:
            await message.reply(persona.summoned_message, allowed_mentions=REPLY_MENTIONS)
            return

        tier = resolve_tier(message.author, self.role_tiers)
        if await self.commands.handle(message, content, tier):
            return

        verdict = await self.safety.check_input(content, message.author.name)
        if not verdict.safe:
            await message.reply(persona.blocked_message, allowed_mentions=REPLY_MENTIONS)
            return

        prompt = content if mentioned else f"{persona.volunteer_prefix}\n\n{content}"
        await self.respond(message, prompt, tier)

    async def _maybe_save_intro(self, message: Any) -> None:
        content = message.content or ""
        if not self.intro_channel or getattr(message.channel, "name", None) != self.intro_channel:
            return
        if len(content) <= INTRO_MIN_CHARS:
            return
        if self.classifier is not None and self.classifier.enabled:
            intent = await self.classifier.classify(content, message.channel.name)
            if intent != "self_introduction":
                return
        try:
            await self.store.save_user_intro(str(message.author.id), content[:INTRO_MAX_CHARS])
            logger.info("Saved introduction for {}", message.author.id)
        except Exception as exc:
            logger.warning("Saving introduction failed: {}", exc)

    async def respond(self, message: Any, prompt: str, tier: PermissionTier) -> None:
        """Generate, post-process and deliver a reply to ``message``."""
        persona = self.generator.persona
        channel = message.channel

        async def send(text: str) -> Any:
            return await message.reply(text, allowed_mentions=REPLY_MENTIONS)

        throttle_options: dict[str, Any] = {"progress_note": persona.generating_note}
        if self.stream_min_chars is not None:
            throttle_options["min_chars"] = self.stream_min_chars
        if self.stream_edit_interval is not None:
            throttle_options["edit_interval"] = self.stream_edit_interval
        throttler = StreamThrottler(send, **throttle_options)

        async with TypingIndicator(channel):
            try:
                history = await self.store.get_channel_history(str(channel.id), HISTORY_FETCH_LIMIT)
                context = GenerationContext(
                    user_id=str(message.author.id),
                    display_name=getattr(message.author, "display_name", None) or message.author.name,
                    channel_id=str(channel.id),
                    channel_name=getattr(channel, "name", None) or "",
                    tier=tier,
                    permission_note=permission_context(message.author, self.role_tiers),
                    history=history,
                )
                response = await self.generator.generate(
                    prompt, context, lambda text: throttler.update(mask_secrets(text))
                )

                if tier.is_privileged and message.guild is not None:
                    actions, clean = extract_actions(response)
                    if actions:
                        logger.info("{} admin action(s) from {}", len(actions), message.author.id)
                        results = await ActionExecutor(message.guild).execute_all(actions)
                        response = "\n\n".join(part for part in (clean, "\n".join(results)) if part)

                final = self.safety.filter_output(response)
                if final:
                    await throttler.finalize(final)
                    self.volunteer.mark_active(str(channel.id))
            except Exception:
                logger.exception("Reply to message {} failed", message.id)
                try:
                    await message.reply(persona.error_message, allowed_mentions=REPLY_MENTIONS)
                except Exception as exc:
                    logger.warning("Could not send error reply: {}", exc)

    async def welcome(self, member: Any, rules_channel: str | None) -> None:
        """Greet a new member in the introduction channel."""
        try:
            avatar = getattr(member, "display_avatar", None)
            await self.store.upsert_user(
                str(member.id), member.name, member.display_name, avatar.url if avatar else None
            )
        except Exception as exc:
            logger.warning("Recording new member {} failed: {}", member.id, exc)

        if not self.intro_channel:
            return
        guild = member.guild
        intro = _channel_named(guild, self.intro_channel)
        if intro is None:
            return
        rules = _channel_named(guild, rules_channel) if rules_channel else None
        text = self.generator.persona.welcome_message(member.mention, rules.id if rules else None)
        await intro.send(text, allowed_mentions=REPLY_MENTIONS)


def _channel_named(guild: Any, name: str) -> Any:
    for channel in guild.channels:
        if channel.name == name:
            return channel
    return None
