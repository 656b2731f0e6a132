"""Chat relay schema - users, conversations, messages, files, read cursors

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Tables:
- users: session subjects (login itself lives outside this service)
- conversations: user-owned chat threads with a per-thread seq counter
- messages: turns in a conversation; assistant rows carry lifecycle status,
  token counts and cost
- uploaded_files: immutable blobs referenced from message text
- file_read_cursors: per (conversation, file) offset into extracted text

Invariants enforced here:
- message seq is unique per conversation and >= 1
- status=streaming only valid for role=assistant
- token counters and file sizes are non-negative
- one read cursor per (conversation, file)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "owner_user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False, server_default="New Chat"),
        sa.Column("next_seq", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
    )
    op.create_index(
        "ix_conversations_owner_updated",
        "conversations",
        ["owner_user_id", "updated_at"],
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.UUID(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Text(), nullable=False, server_default="completed"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("estimated", sa.Boolean(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint(
            "role IN ('system', 'user', 'assistant')",
            name="ck_messages_role",
        ),
        sa.CheckConstraint(
            "status IN ('streaming', 'completed', 'stopped', 'error')",
            name="ck_messages_status",
        ),
        sa.CheckConstraint(
            "(status != 'streaming' OR role = 'assistant')",
            name="ck_messages_streaming_only_assistant",
        ),
        sa.CheckConstraint(
            "prompt_tokens IS NULL OR prompt_tokens >= 0",
            name="ck_messages_prompt_tokens",
        ),
        sa.CheckConstraint(
            "completion_tokens IS NULL OR completion_tokens >= 0",
            name="ck_messages_completion_tokens",
        ),
        sa.CheckConstraint(
            "total_tokens IS NULL OR total_tokens >= 0",
            name="ck_messages_total_tokens",
        ),
        sa.UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
    )
    op.create_table(
        "uploaded_files",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stored_name", sa.Text(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("mime", sa.Text(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("stored_name", name="uq_uploaded_files_stored_name"),
        sa.CheckConstraint("size >= 0", name="ck_uploaded_files_size"),
    )

    op.create_table(
        "file_read_cursors",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.UUID(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "file_id",
            sa.UUID(),
            sa.ForeignKey("uploaded_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("offset", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint('"offset" >= 0', name="ck_file_read_cursors_offset"),
        sa.UniqueConstraint(
            "conversation_id", "file_id", name="uix_file_read_cursors_conv_file"
        ),
    )
    op.create_index(
        "ix_file_read_cursors_conv_user_updated",
        "file_read_cursors",
        ["conversation_id", "user_id", "updated_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_file_read_cursors_conv_user_updated", table_name="file_read_cursors")
    op.drop_table("file_read_cursors")
    op.drop_table("uploaded_files")
    op.drop_table("messages")
    op.drop_index("ix_conversations_owner_updated", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("users")
