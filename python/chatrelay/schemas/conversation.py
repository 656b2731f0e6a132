"""Conversation and Message Pydantic schemas.

Contains request and response models for conversation and message endpoints.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field

from chatrelay.schemas.common import CamelModel

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "assistant", "system"]

# Valid message statuses - must match DB constraint
MESSAGE_STATUSES = Literal["streaming", "completed", "stopped", "error"]

TITLE_MAX_LENGTH = 80


# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(CamelModel):
    """Response schema for a conversation."""

    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class MessageOut(CamelModel):
    """Response schema for a message.

    Assistant messages start as `streaming` with empty content and are
    finalized once; token and cost fields are only set on completion.
    """

    id: UUID
    conversation_id: UUID
    seq: int
    role: MESSAGE_ROLES
    content: str
    status: MESSAGE_STATUSES
    error: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost: float | None = None
    estimated: bool | None = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Request Schemas
# =============================================================================


class CreateConversationRequest(CamelModel):
    """Request body for POST /conversations; title defaults to "New Chat"."""

    title: str | None = Field(default=None, max_length=1000)


class RenameConversationRequest(CamelModel):
    """Request body for PATCH /conversations/{id}."""

    title: str = Field(max_length=1000)
