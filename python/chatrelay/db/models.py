"""SQLAlchemy ORM models for the chat relay.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable (generic Uuid, timezone-aware DateTime) so the
same metadata runs on PostgreSQL in production and SQLite in tests.
Statuses and roles are Python enums stored as text with CHECK constraints.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Timezone-aware current time, used as the Python-side default."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, PyEnum):
    """Roles a stored message can carry."""

    system = "system"
    user = "user"
    assistant = "assistant"


class MessageStatus(str, PyEnum):
    """Message lifecycle states.

    States:
        streaming: Assistant placeholder, relay still running
        completed: Terminal, full answer stored
        stopped: Terminal, client disconnected mid-stream
        error: Terminal, upstream or relay failure recorded in `error`
    """

    streaming = "streaming"
    completed = "completed"
    stopped = "stopped"
    error = "error"


TERMINAL_STATUSES = frozenset(
    {MessageStatus.completed.value, MessageStatus.stopped.value, MessageStatus.error.value}
)


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User model - owner of conversations and uploaded files."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class Conversation(Base):
    """Conversation model - a thread of messages owned by one user."""

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False, default="New Chat")
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        Index("ix_conversations_owner_updated", "owner_user_id", "updated_at"),
    )

    owner: Mapped["User"] = relationship("User")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.seq",
    )


class Message(Base):
    """Message model - a single message in a conversation.

    Assistant messages are created empty with status `streaming` and
    finalized exactly once; usage columns are only set on completion.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=MessageStatus.completed.value
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint(
            "role IN ('system', 'user', 'assistant')",
            name="ck_messages_role",
        ),
        CheckConstraint(
            "status IN ('streaming', 'completed', 'stopped', 'error')",
            name="ck_messages_status",
        ),
        CheckConstraint(
            "(status != 'streaming' OR role = 'assistant')",
            name="ck_messages_streaming_only_assistant",
        ),
        CheckConstraint(
            "prompt_tokens IS NULL OR prompt_tokens >= 0",
            name="ck_messages_prompt_tokens",
        ),
        CheckConstraint(
            "completion_tokens IS NULL OR completion_tokens >= 0",
            name="ck_messages_completion_tokens",
        ),
        CheckConstraint(
            "total_tokens IS NULL OR total_tokens >= 0",
            name="ck_messages_total_tokens",
        ),
        UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class UploadedFile(Base):
    """UploadedFile model - an immutable blob owned by one user.

    `stored_name` is the opaque blob key ("<uuid>-<safe original name>").
    """

    __tablename__ = "uploaded_files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    stored_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (CheckConstraint("size >= 0", name="ck_uploaded_files_size"),)

    @property
    def is_image(self) -> bool:
        """Whether the file is inlined as an image part rather than extracted."""
        return self.mime.startswith("image/")


class FileReadCursor(Base):
    """FileReadCursor model - how far a file's extracted text has been read.

    One row per (conversation, file). `offset` is a character offset into
    the normalized extracted text.
    """

    __tablename__ = "file_read_cursors"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("uploaded_files.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("\"offset\" >= 0", name="ck_file_read_cursors_offset"),
        UniqueConstraint("conversation_id", "file_id", name="uix_file_read_cursors_conv_file"),
        Index("ix_file_read_cursors_conv_user_updated", "conversation_id", "user_id", "updated_at"),
    )
