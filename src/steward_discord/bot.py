"""discord.py client runtime for steward-discord."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import discord
from loguru import logger

from steward_shared.database import check_connection

from .retry import exponential_backoff_retry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from steward_shared.embeddings import OpenAIEmbedder

    from .batcher import EmbeddingBatcher
    from .config import BotConfig
    from .issues import GitHubClient
    from .message_handler import MessageHandler
    from .traits import TraitAccumulator


class StewardDiscordClient(discord.Client):
    """Discord client that records the server and answers mentions."""

    def __init__(
        self,
        *,
        config: BotConfig,
        handler: MessageHandler,
        engine: AsyncEngine,
        batcher: EmbeddingBatcher | None = None,
        traits: TraitAccumulator | None = None,
        embedder: OpenAIEmbedder | None = None,
        github: GitHubClient | None = None,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(intents=intents)

        self.config = config
        self.handler = handler
        self.engine = engine
        self.batcher = batcher
        self.traits = traits
        self.embedder = embedder
        self.github = github

    async def on_ready(self) -> None:
        if not self.user:
            return
        logger.info("Logged in as {} (id={})", self.user, self.user.id)
        logger.info("Guild: {} | Model: {}", self.config.guild_id or "any", self.config.model)

        await self.change_presence(
            activity=discord.Activity(type=discord.ActivityType.watching, name="the community"),
            status=discord.Status.online,
        )

        try:
            await self._check_database()
            logger.info("Database connection OK")
        except Exception as exc:
            logger.error("Database unreachable, messages will not be recorded: {}", exc)

        if self.batcher is not None:
            self.batcher.start()

    @exponential_backoff_retry(max_retries=5, base_delay=1.0, operation_name="database check")
    async def _check_database(self) -> None:
        await check_connection(self.engine)

    def _is_allowed_guild(self, guild: Any) -> bool:
        if not self.config.guild_id:
            return True
        return guild is not None and str(guild.id) == self.config.guild_id

    async def on_message(self, message: discord.Message) -> None:
        if not self._is_allowed_guild(message.guild):
            return
        await self.handler.handle(message, self.user)

    async def on_member_join(self, member: discord.Member) -> None:
        if not self._is_allowed_guild(member.guild):
            return
        logger.info("Member joined: {} ({})", member, member.id)
        if not self.config.welcome_enabled:
            return
        try:
            await self.handler.welcome(member, self.config.rules_channel)
        except Exception:
            logger.exception("Welcome for {} failed", member.id)

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        logger.exception("Unhandled error in {}", event_method)

    async def close(self) -> None:
        try:
            if self.batcher is not None:
                await self.batcher.stop()
            if self.traits is not None:
                await self.traits.drain()
            if self.github is not None:
                await self.github.close()
            if self.embedder is not None:
                await self.embedder.close()
            await self.engine.dispose()
        except Exception as exc:
            logger.warning("Error during shutdown: {}", exc)
        finally:
            await super().close()
