"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from chatrelay.schemas.chat import ChatRequest, ChatResponse
from chatrelay.schemas.common import CamelModel
from chatrelay.schemas.conversation import (
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    RenameConversationRequest,
)

__all__ = [
    "CamelModel",
    "ChatRequest",
    "ChatResponse",
    "ConversationOut",
    "CreateConversationRequest",
    "MessageOut",
    "RenameConversationRequest",
]
