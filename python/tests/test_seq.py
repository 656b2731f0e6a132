"""Tests for message sequence assignment.

- The first seq of a conversation is 1
- Seq values are strictly increasing and unique per conversation
- Counters of different conversations are independent
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from chatrelay.db.models import Conversation
from chatrelay.services.seq import assign_next_message_seq
from tests.helpers import create_test_conversation


class TestSeqAssignment:
    """Tests for assign_next_message_seq()."""

    def test_first_seq_is_1(self, db_session: Session, test_user_id):
        """First assigned seq should be 1 (default next_seq)."""
        conversation_id = create_test_conversation(db_session, test_user_id)

        assert assign_next_message_seq(db_session, conversation_id) == 1
        assert (
            db_session.scalar(
                select(Conversation.next_seq).where(Conversation.id == conversation_id)
            )
            == 2
        )

    def test_sequential_assignment(self, db_session: Session, test_user_id):
        """Sequential assignments return consecutive seq values."""
        conversation_id = create_test_conversation(db_session, test_user_id)

        seqs = [assign_next_message_seq(db_session, conversation_id) for _ in range(3)]

        assert seqs == [1, 2, 3]

    def test_conversations_independent(self, db_session: Session, test_user_id):
        """Each conversation has its own counter."""
        first = create_test_conversation(db_session, test_user_id)
        second = create_test_conversation(db_session, test_user_id)

        assign_next_message_seq(db_session, first)
        assign_next_message_seq(db_session, first)

        assert assign_next_message_seq(db_session, second) == 1

    def test_nonexistent_conversation_raises(self, db_session: Session):
        """Assigning seq for nonexistent conversation raises ValueError."""
        with pytest.raises(ValueError, match="not found"):
            assign_next_message_seq(db_session, uuid4())
