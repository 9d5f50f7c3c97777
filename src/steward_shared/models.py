from datetime import UTC, datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from .constants import EMBEDDING_DIM

def _utc_now() -> datetime:
    """Helper for timezone-aware UTC datetime defaults."""
    return datetime.now(UTC)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    intro: str | None = None
    message_count: int = Field(default=0)
    personality_scores: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))
    personality_summary: str | None = None
    notes: str | None = None
    first_seen_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    last_seen_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class Message(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("discord_message_id", name="messages_discord_message_id_key"),
        Index("messages_channel_created_idx", "channel_id", "created_at"),
        Index("messages_user_created_idx", "user_id", "created_at"),
        Index(
            "messages_content_fts_idx",
            text("to_tsvector('simple', content)"),
            postgresql_using="gin",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    discord_message_id: str
    guild_id: str | None = None
    channel_id: str
    channel_name: str | None = None
    user_id: str = Field(foreign_key="users.id")
    content: str = Field(default="")
    attachments: list[dict[str, Any]] | None = Field(default=None, sa_column=Column(JSONB))
    embeds: list[dict[str, Any]] | None = Field(default=None, sa_column=Column(JSONB))
    is_bot: bool = Field(default=False)
    reply_to: str | None = None
    thread_id: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class ConversationSession(SQLModel, table=True):
    """One continuation token per (user, channel)."""

    __tablename__ = "conversation_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "channel_id", name="conversation_sessions_user_channel_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str
    channel_id: str
    session_token: str | None = None
    summary: str | None = None
    message_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class TraitObservation(SQLModel, table=True):
    __tablename__ = "trait_observations"
    __table_args__ = (
        Index("trait_observations_user_created_idx", "user_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id")
    observation: str = Field(default="")
    big5_delta: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))
    enneagram_delta: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))
    source_message_id: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class MessageVector(SQLModel, table=True):
    __tablename__ = "message_vectors"
    __table_args__ = (
        Index(
            "message_vectors_embedding_idx",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": "100"},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    message_id: int = Field(
        sa_column=Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    )
    user_id: str
    channel_id: str
    content_summary: str
    embedding: list[float] = Field(sa_column=Column(Vector(EMBEDDING_DIM), nullable=False))
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
