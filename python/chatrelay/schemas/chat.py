"""Chat request and response schemas."""

from uuid import UUID

from pydantic import Field, field_validator

from chatrelay.schemas.common import CamelModel
from chatrelay.schemas.conversation import MessageOut

MAX_FILE_IDS = 32


class ChatRequest(CamelModel):
    """Body of POST /chat and POST /chat/stream.

    `message` is the text stored and shown in the conversation; `prompt`,
    when given, is what the model sees instead (file-link lines are always
    stripped from it). `model` falls back to the configured default.
    """

    conversation_id: UUID | None = None
    message: str = ""
    prompt: str | None = None
    model: str | None = Field(default=None, max_length=200)
    file_ids: list[UUID] = Field(default_factory=list, max_length=MAX_FILE_IDS)

    @field_validator("message", mode="before")
    @classmethod
    def _none_message_is_empty(cls, value):
        return "" if value is None else value

    @field_validator("file_ids", mode="before")
    @classmethod
    def _none_file_ids_is_empty(cls, value):
        return [] if value is None else value


class ChatResponse(CamelModel):
    """Non-streaming chat result."""

    conversation_id: UUID
    message: MessageOut
