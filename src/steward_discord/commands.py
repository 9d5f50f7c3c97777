"""Text commands addressed to the bot by mention."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from discord import AllowedMentions
from loguru import logger

from steward_shared.constants import DEFAULT_TIMEZONE

from .issues import format_issue_created, format_pr_created, issue_body, parse_issue_command
from .permissions import COMMAND_TIERS, PermissionTier, has_permission, permission_denied_message
from .search import format_search_results, run_search
from .traits import TraitScores

if TYPE_CHECKING:
    from .agent import ResponseGenerator
    from .batcher import EmbeddingBatcher
    from .issues import DevPipeline, GitHubClient
    from .store import Store

_RESET_RE = re.compile(r"^(reset|clear)$", re.IGNORECASE)
_SEARCH_RE = re.compile(r"^search\s+(.+)$", re.IGNORECASE | re.DOTALL)
_ISSUE_RE = re.compile(r"^issue\s+(.+)$", re.IGNORECASE | re.DOTALL)
_DEV_RE = re.compile(r"^dev\s+#?(\d+)$", re.IGNORECASE)
_PERSONALITY_RE = re.compile(r"^personality(?:\s+<@!?(\d+)>)?$", re.IGNORECASE)

NO_MENTIONS = AllowedMentions.none()


@dataclass(slots=True, frozen=True)
class Command:
    name: str
    argument: str = ""


def parse_command(content: str) -> Command | None:
    text = content.strip()
    if _RESET_RE.match(text):
        return Command("reset")
    if match := _SEARCH_RE.match(text):
        return Command("search", match.group(1).strip())
    if match := _ISSUE_RE.match(text):
        return Command("issue", match.group(1).strip())
    if match := _DEV_RE.match(text):
        return Command("dev", match.group(1))
    if match := _PERSONALITY_RE.match(text):
        return Command("personality", match.group(1) or "")
    return None


def command_word(content: str) -> str:
    parts = content.split(maxsplit=1)
    return parts[0].lower() if parts else ""


class CommandRouter:
    """Runs recognised commands; everything else falls through to generation."""

    def __init__(
        self,
        generator: ResponseGenerator,
        store: Store,
        *,
        batcher: EmbeddingBatcher | None = None,
        github: GitHubClient | None = None,
        pipeline: DevPipeline | None = None,
        timezone: str = DEFAULT_TIMEZONE,
        bot_name: str = "Steward",
    ):
        self.generator = generator
        self.store = store
        self.batcher = batcher
        self.github = github
        self.pipeline = pipeline
        self.timezone = timezone
        self.bot_name = bot_name

    async def handle(self, message: Any, content: str, tier: PermissionTier) -> bool:
        """Returns True when ``content`` was consumed as a command (or denied)."""
        word = command_word(content)
        if word in COMMAND_TIERS and not has_permission(word, tier):
            logger.info("Denied {} for {} (tier {})", word, message.author.id, tier.label)
            await message.reply(permission_denied_message(word), allowed_mentions=NO_MENTIONS)
            return True

        command = parse_command(content)
        if command is None:
            return False

        logger.info("Command {} from {}", command.name, message.author.id)
        match command.name:
            case "reset":
                await self._reset(message)
            case "search":
                await self._search(message, command.argument)
            case "issue":
                await self._issue(message, command.argument)
            case "dev":
                await self._dev(message, int(command.argument))
            case "personality":
                await self._personality(message, command.argument or str(message.author.id))
        return True

    async def _reset(self, message: Any) -> None:
        text = await self.generator.reset(str(message.author.id), str(message.channel.id))
        await message.reply(text, allowed_mentions=NO_MENTIONS)

    async def _search(self, message: Any, query: str) -> None:
        await message.channel.typing()
        try:
            hits = await run_search(self.store, query, batcher=self.batcher)
            text = format_search_results(hits, query, self.timezone)
        except Exception:
            logger.exception("Search for {!r} failed", query)
            text = "Something went wrong while searching. Please try again. 🎩"
        await message.reply(text, allowed_mentions=NO_MENTIONS)

    async def _issue(self, message: Any, argument: str) -> None:
        if self.github is None:
            await message.reply("GitHub is not configured for me, I am afraid. 🎩")
            return

        await message.channel.typing()
        title, body = parse_issue_command(argument)
        try:
            issue = await self.github.create_issue(
                title, issue_body(body, message.author.name, getattr(message.channel, "name", None))
            )
        except Exception:
            logger.exception("Creating issue {!r} failed", title)
            await message.reply("I could not file the issue. Please try again. 🎩")
            return
        await message.reply(
            format_issue_created(issue, message.author.mention, self.bot_name),
            allowed_mentions=NO_MENTIONS,
        )

    async def _dev(self, message: Any, issue_number: int) -> None:
        if self.pipeline is None:
            await message.reply("The dev pipeline is not configured for me, I am afraid. 🎩")
            return

        await message.reply(
            f"📋 Starting work on issue #{issue_number}. 🎩\nThis may take a while...",
            allowed_mentions=NO_MENTIONS,
        )
        progress = await message.channel.send("⏳ Getting ready...")

        async def report(status: str) -> None:
            try:
                await progress.edit(content=status)
            except Exception as exc:
                logger.warning("Progress update failed: {}", exc)

        try:
            pr = await self.pipeline.run(issue_number, report)
        except Exception:
            logger.exception("Dev pipeline for issue #{} failed", issue_number)
            await message.reply(
                "The implementation ran into a problem. Please try again later. 🎩"
            )
            return

        try:
            await progress.delete()
        except Exception as exc:
            logger.warning("Could not remove progress message: {}", exc)
        await message.reply(format_pr_created(pr), allowed_mentions=NO_MENTIONS)

    async def _personality(self, message: Any, user_id: str) -> None:
        user = await self.store.get_user(user_id)
        if user is None:
            await message.reply("I have no records of that member yet. 🎩")
            return

        scores = TraitScores.from_stored(user.personality_scores)
        big5 = ", ".join(f"{axis}={value:+.0f}" for axis, value in scores.big5.items())
        lines = [
            f"🧭 **{user.display_name or user.username}**",
            f"> {user.personality_summary or scores.summarize()}",
            f"> Big Five: {big5}",
        ]
        observations = await self.store.list_trait_observations(user_id, limit=3)
        lines.extend(f"> • {obs.observation}" for obs in observations if obs.observation)
        await message.reply("\n".join(lines), allowed_mentions=NO_MENTIONS)
