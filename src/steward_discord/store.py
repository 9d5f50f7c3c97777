"""PostgreSQL persistence for users, messages, sessions and derived data.

Each method is its own short transaction; nothing here spans independent
writes (a session-token update and a message-count bump can land apart).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from steward_shared.models import (
    ConversationSession,
    Message,
    MessageVector,
    TraitObservation,
    User,
)


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    display_name: str
    content: str


@dataclass(slots=True, frozen=True)
class SearchHit:
    content: str
    display_name: str | None
    channel_name: str | None
    channel_id: str
    created_at: datetime
    discord_message_id: str | None = None
    guild_id: str | None = None
    distance: float | None = None


@dataclass(slots=True)
class MessageRecord:
    """Fields captured from a Discord message before it is stored."""

    discord_message_id: str
    channel_id: str
    user_id: str
    content: str
    guild_id: str | None = None
    channel_name: str | None = None
    attachments: list[dict[str, Any]] | None = None
    embeds: list[dict[str, Any]] | None = None
    is_bot: bool = False
    reply_to: str | None = None
    thread_id: str | None = None


@dataclass(slots=True, frozen=True)
class SavedMessage:
    """Row id of a stored message and whether this call inserted it."""

    id: int | None
    created: bool


def _now() -> datetime:
    return datetime.now(UTC)


class Store:
    """Async record store over a SQLModel session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # Users

    async def upsert_user(
        self,
        user_id: str,
        username: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> None:
        now = _now()
        stmt = insert(User).values(
            id=user_id,
            username=username,
            display_name=display_name or username,
            avatar_url=avatar_url,
            message_count=0,
            first_seen_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[User.id],
            set_={
                "username": stmt.excluded.username,
                "display_name": stmt.excluded.display_name,
                "avatar_url": stmt.excluded.avatar_url,
                "last_seen_at": now,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_user(self, user_id: str) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def increment_message_count(self, user_id: str) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(message_count=User.message_count + 1, last_seen_at=_now())
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def save_user_intro(self, user_id: str, intro: str) -> None:
        async with self.session_factory() as session:
            await session.execute(update(User).where(User.id == user_id).values(intro=intro))
            await session.commit()

    async def update_trait_scores(self, user_id: str, scores: dict[str, Any], summary: str) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(personality_scores=scores, personality_summary=summary)
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    # Messages

    async def save_message(self, record: MessageRecord) -> SavedMessage:
        """Append a message; replays of the same Discord message are ignored.

        ``created`` is False for a replay, whose id is looked up instead.
        """
        stmt = (
            insert(Message)
            .values(
                discord_message_id=record.discord_message_id,
                guild_id=record.guild_id,
                channel_id=record.channel_id,
                channel_name=record.channel_name,
                user_id=record.user_id,
                content=record.content,
                attachments=record.attachments,
                embeds=record.embeds,
                is_bot=record.is_bot,
                reply_to=record.reply_to,
                thread_id=record.thread_id,
                created_at=_now(),
            )
            .on_conflict_do_nothing(index_elements=[Message.discord_message_id])
            .returning(Message.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            row_id = result.scalar_one_or_none()
            await session.commit()
            if row_id is not None:
                return SavedMessage(row_id, created=True)

            existing = await session.execute(
                select(Message.id).where(Message.discord_message_id == record.discord_message_id)
            )
            return SavedMessage(existing.scalar_one_or_none(), created=False)

    async def get_recent_messages(self, user_id: str, limit: int = 30) -> list[Message]:
        """A user's latest human-authored messages, newest first."""
        stmt = (
            select(Message)
            .where(Message.user_id == user_id, Message.is_bot.is_(False))
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_channel_history(self, channel_id: str, limit: int = 15) -> list[HistoryEntry]:
        """Recent human messages in a channel, oldest first."""
        stmt = (
            select(Message.content, User.display_name, User.username)
            .join(User, User.id == Message.user_id, isouter=True)
            .where(Message.channel_id == channel_id, Message.is_bot.is_(False))
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            HistoryEntry(display_name=display or username or "unknown", content=content or "")
            for content, display, username in reversed(rows)
        ]

    async def search_messages(self, query: str, limit: int = 10) -> list[SearchHit]:
        """Full-text search over all recorded messages, newest first."""
        document = func.to_tsvector("simple", Message.content)
        tsquery = func.websearch_to_tsquery("simple", query)
        stmt = (
            select(Message, User.display_name)
            .join(User, User.id == Message.user_id, isouter=True)
            .where(document.op("@@")(tsquery))
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            SearchHit(
                content=message.content,
                display_name=display_name,
                channel_name=message.channel_name,
                channel_id=message.channel_id,
                created_at=message.created_at,
                discord_message_id=message.discord_message_id,
                guild_id=message.guild_id,
            )
            for message, display_name in rows
        ]

    # Conversation sessions

    async def get_session(self, user_id: str, channel_id: str) -> ConversationSession | None:
        stmt = select(ConversationSession).where(
            ConversationSession.user_id == user_id,
            ConversationSession.channel_id == channel_id,
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def upsert_session(self, user_id: str, channel_id: str, session_token: str) -> None:
        now = _now()
        stmt = insert(ConversationSession).values(
            user_id=user_id,
            channel_id=channel_id,
            session_token=session_token,
            message_count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="conversation_sessions_user_channel_key",
            set_={
                "session_token": stmt.excluded.session_token,
                "message_count": ConversationSession.message_count + 1,
                "updated_at": now,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def reset_session(self, user_id: str, channel_id: str, summary: str | None = None) -> None:
        """Clear the continuation token; the record itself is kept."""
        stmt = (
            update(ConversationSession)
            .where(
                ConversationSession.user_id == user_id,
                ConversationSession.channel_id == channel_id,
            )
            .values(session_token=None, summary=summary, updated_at=_now())
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()
        logger.info("Reset conversation session for user {} in channel {}", user_id, channel_id)

    # Trait observations

    async def add_trait_observation(
        self,
        user_id: str,
        observation: str,
        big5_delta: dict[str, float],
        enneagram_delta: dict[str, float],
        source_message_id: str | None = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                TraitObservation(
                    user_id=user_id,
                    observation=observation,
                    big5_delta=big5_delta,
                    enneagram_delta=enneagram_delta,
                    source_message_id=source_message_id,
                )
            )
            await session.commit()

    async def list_trait_observations(self, user_id: str, limit: int = 50) -> list[TraitObservation]:
        stmt = (
            select(TraitObservation)
            .where(TraitObservation.user_id == user_id)
            .order_by(TraitObservation.created_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # Vectors

    async def save_message_vector(
        self,
        message_id: int,
        user_id: str,
        channel_id: str,
        content_summary: str,
        embedding: list[float],
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                MessageVector(
                    message_id=message_id,
                    user_id=user_id,
                    channel_id=channel_id,
                    content_summary=content_summary,
                    embedding=embedding,
                )
            )
            await session.commit()

    async def search_similar_messages(self, embedding: list[float], limit: int = 5) -> list[SearchHit]:
        """Nearest stored messages by cosine distance."""
        distance = MessageVector.embedding.cosine_distance(embedding).label("distance")
        stmt = (
            select(
                MessageVector,
                User.display_name,
                Message.discord_message_id,
                Message.guild_id,
                Message.channel_name,
                distance,
            )
            .join(User, User.id == MessageVector.user_id, isouter=True)
            .join(Message, Message.id == MessageVector.message_id, isouter=True)
            .order_by(distance)
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            SearchHit(
                content=vector.content_summary,
                display_name=display_name,
                channel_name=channel_name,
                channel_id=vector.channel_id,
                created_at=vector.created_at,
                discord_message_id=discord_message_id,
                guild_id=guild_id,
                distance=float(dist),
            )
            for vector, display_name, discord_message_id, guild_id, channel_name, dist in rows
        ]
