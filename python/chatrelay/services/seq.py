"""Per-conversation message numbering.

Messages are ordered by `seq`, handed out from the conversation's
`next_seq` counter (first message gets 1). The counter moves in a single
UPDATE ... RETURNING, so concurrent turns in one conversation can never
draw the same number. updated_at is not touched here.
"""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from chatrelay.db.models import Conversation


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Claim the next seq of a conversation inside the caller's transaction.

    Raises:
        ValueError: If the conversation does not exist.
    """
    new_next = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(next_seq=Conversation.next_seq + 1)
        .returning(Conversation.next_seq)
    ).scalar_one_or_none()

    if new_next is None:
        raise ValueError(f"Conversation {conversation_id} not found")
    return new_next - 1
