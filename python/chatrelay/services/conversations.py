"""Conversation and Message service layer.

All operations:
- Enforce owner-only access
- Use NOT_FOUND for both missing and foreign conversations (prevent probing)

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from chatrelay.db.models import Conversation, FileReadCursor, Message, utcnow
from chatrelay.db.session import transaction
from chatrelay.errors import InvalidRequestError, NotFoundError
from chatrelay.logging import get_logger
from chatrelay.schemas.conversation import TITLE_MAX_LENGTH, ConversationOut, MessageOut
from chatrelay.services.attachments import DEFAULT_TITLE

logger = get_logger(__name__)


def get_conversation_for_viewer_or_404(
    db: Session, viewer_id: UUID, conversation_id: UUID
) -> Conversation:
    """Load conversation and verify ownership.

    Raises:
        NotFoundError: If conversation doesn't exist OR viewer is not the owner.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or conversation.owner_user_id != viewer_id:
        raise NotFoundError(message="Conversation not found")
    return conversation


def conversation_to_out(conversation: Conversation) -> ConversationOut:
    """Convert Conversation ORM model to ConversationOut schema."""
    return ConversationOut.model_validate(conversation)


def message_to_out(message: Message) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    return MessageOut.model_validate(message)


def normalize_title(title: str | None) -> str:
    """Trim and cap a user-supplied title; empty means no title."""
    return (title or "").strip()[:TITLE_MAX_LENGTH]


def bump_conversation(db: Session, conversation_id: UUID) -> None:
    """Set updated_at to now. Does not commit."""
    db.execute(
        update(Conversation).where(Conversation.id == conversation_id).values(updated_at=utcnow())
    )


def create_conversation(db: Session, viewer_id: UUID, title: str | None = None) -> ConversationOut:
    """Create a new empty conversation.

    Args:
        db: Database session.
        viewer_id: The owner.
        title: Optional title; trimmed, at most 80 characters, default "New Chat".
    """
    conversation = Conversation(
        owner_user_id=viewer_id,
        title=normalize_title(title) or DEFAULT_TITLE,
    )
    db.add(conversation)
    db.commit()

    logger.info("conversation_created", conversation_id=str(conversation.id))
    return conversation_to_out(conversation)


def list_conversations(db: Session, viewer_id: UUID) -> list[ConversationOut]:
    """List conversations owned by the viewer, most recently updated first."""
    conversations = db.scalars(
        select(Conversation)
        .where(Conversation.owner_user_id == viewer_id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
    ).all()
    return [conversation_to_out(c) for c in conversations]


def rename_conversation(
    db: Session, viewer_id: UUID, conversation_id: UUID, title: str
) -> ConversationOut:
    """Rename a conversation.

    Raises:
        InvalidRequestError: If the trimmed title is empty.
        NotFoundError: If the conversation doesn't exist or isn't the viewer's.
    """
    new_title = normalize_title(title)
    if not new_title:
        raise InvalidRequestError(message="Title cannot be empty")

    conversation = get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)
    conversation.title = new_title
    conversation.updated_at = utcnow()
    db.commit()
    return conversation_to_out(conversation)


def delete_conversation(db: Session, viewer_id: UUID, conversation_id: UUID) -> None:
    """Delete a conversation with its messages and read cursors.

    All rows go in one transaction; nothing is deleted if any statement fails.

    Raises:
        NotFoundError: If conversation doesn't exist or viewer is not the owner.
    """
    get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)

    with transaction(db):
        db.execute(delete(FileReadCursor).where(FileReadCursor.conversation_id == conversation_id))
        db.execute(delete(Message).where(Message.conversation_id == conversation_id))
        db.execute(delete(Conversation).where(Conversation.id == conversation_id))

    logger.info("conversation_deleted", conversation_id=str(conversation_id))


def list_messages(db: Session, viewer_id: UUID, conversation_id: UUID) -> list[MessageOut]:
    """List all messages of a conversation in seq order.

    Raises:
        NotFoundError: If conversation doesn't exist or viewer is not the owner.
    """
    get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)
    messages = db.scalars(
        select(Message).where(Message.conversation_id == conversation_id).order_by(Message.seq)
    ).all()
    return [message_to_out(m) for m in messages]
