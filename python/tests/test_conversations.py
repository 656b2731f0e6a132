"""Integration tests for conversation and message routes.

Tests cover:
- Create (default and trimmed titles), list order, rename, delete
- Message listing in seq order
- Owner-only access: another user's conversation is a 404
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy import select, update

from chatrelay.db.models import Conversation, FileReadCursor, Message
from chatrelay.services.attachments import upsert_file_cursor
from tests.helpers import (
    add_test_message,
    auth_headers,
    create_test_conversation,
    create_test_file,
    create_test_user,
)


class TestCreateConversation:
    """Tests for POST /conversations."""

    def test_default_title(self, auth_client, test_user_id):
        """Without a body the title is "New Chat"."""
        response = auth_client.post("/conversations", headers=auth_headers(test_user_id))

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["title"] == "New Chat"
        assert set(data) == {"id", "title", "createdAt", "updatedAt"}

    def test_title_trimmed_and_capped(self, auth_client, test_user_id):
        """Titles are trimmed and cut to 80 characters."""
        response = auth_client.post(
            "/conversations",
            json={"title": "  " + "t" * 100 + "  "},
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 201
        assert response.json()["data"]["title"] == "t" * 80

    def test_blank_title_uses_default(self, auth_client, test_user_id):
        """A whitespace-only title falls back to the default."""
        response = auth_client.post(
            "/conversations", json={"title": "   "}, headers=auth_headers(test_user_id)
        )

        assert response.json()["data"]["title"] == "New Chat"


class TestListConversations:
    """Tests for GET /conversations."""

    def test_most_recently_updated_first(self, auth_client, db_session, test_user_id):
        """Order is updated_at descending."""
        older = create_test_conversation(db_session, test_user_id, "older")
        newer = create_test_conversation(db_session, test_user_id, "newer")
        base = datetime(2024, 1, 1, tzinfo=UTC)
        db_session.execute(
            update(Conversation).where(Conversation.id == older).values(updated_at=base)
        )
        db_session.execute(
            update(Conversation)
            .where(Conversation.id == newer)
            .values(updated_at=base + timedelta(hours=1))
        )
        db_session.commit()

        response = auth_client.get("/conversations", headers=auth_headers(test_user_id))

        assert response.status_code == 200
        assert [c["title"] for c in response.json()["data"]] == ["newer", "older"]

    def test_only_own_conversations(self, auth_client, db_session, test_user_id):
        """Other users' conversations are not listed."""
        other = create_test_user(db_session)
        create_test_conversation(db_session, other, "theirs")
        create_test_conversation(db_session, test_user_id, "mine")

        response = auth_client.get("/conversations", headers=auth_headers(test_user_id))

        assert [c["title"] for c in response.json()["data"]] == ["mine"]

    def test_empty(self, auth_client, test_user_id):
        """No conversations is an empty list."""
        response = auth_client.get("/conversations", headers=auth_headers(test_user_id))

        assert response.json() == {"data": []}


class TestRenameConversation:
    """Tests for PATCH /conversations/{id}."""

    def test_rename(self, auth_client, db_session, test_user_id):
        """The new title is trimmed and returned."""
        conversation_id = create_test_conversation(db_session, test_user_id, "old")

        response = auth_client.patch(
            f"/conversations/{conversation_id}",
            json={"title": "  new name "},
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "new name"

    def test_empty_title_rejected(self, auth_client, db_session, test_user_id):
        """A title that is empty after trimming is a 400."""
        conversation_id = create_test_conversation(db_session, test_user_id, "old")

        response = auth_client.patch(
            f"/conversations/{conversation_id}",
            json={"title": "   "},
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Title cannot be empty"

    def test_rename_foreign(self, auth_client, db_session, test_user_id):
        """Renaming another user's conversation is a 404."""
        other = create_test_user(db_session)
        conversation_id = create_test_conversation(db_session, other, "theirs")

        response = auth_client.patch(
            f"/conversations/{conversation_id}",
            json={"title": "mine now"},
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 404
        db_session.expire_all()
        assert db_session.get(Conversation, conversation_id).title == "theirs"


class TestDeleteConversation:
    """Tests for DELETE /conversations/{id}."""

    def test_delete_cascades(self, auth_client, db_session, blob_store, test_user_id):
        """Messages and read cursors go with the conversation."""
        conversation_id = create_test_conversation(db_session, test_user_id)
        add_test_message(db_session, conversation_id, "user", "hi")
        file_id = create_test_file(db_session, blob_store, test_user_id)
        upsert_file_cursor(
            db_session,
            conversation_id=conversation_id,
            file_id=file_id,
            user_id=test_user_id,
            offset=3,
        )
        db_session.commit()

        response = auth_client.delete(
            f"/conversations/{conversation_id}", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 204
        db_session.expire_all()
        assert db_session.get(Conversation, conversation_id) is None
        assert (
            db_session.scalars(
                select(Message).where(Message.conversation_id == conversation_id)
            ).all()
            == []
        )
        assert (
            db_session.scalars(
                select(FileReadCursor).where(FileReadCursor.conversation_id == conversation_id)
            ).all()
            == []
        )

    def test_delete_missing(self, auth_client, test_user_id):
        """Deleting an unknown conversation is a 404."""
        response = auth_client.delete(
            f"/conversations/{uuid4()}", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_delete_foreign(self, auth_client, db_session, test_user_id):
        """Deleting another user's conversation is a 404 and deletes nothing."""
        other = create_test_user(db_session)
        conversation_id = create_test_conversation(db_session, other)

        response = auth_client.delete(
            f"/conversations/{conversation_id}", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 404
        db_session.expire_all()
        assert db_session.get(Conversation, conversation_id) is not None


class TestListMessages:
    """Tests for GET /conversations/{id}/messages."""

    def test_seq_order(self, auth_client, db_session, test_user_id):
        """Messages come back in seq order with camelCase fields."""
        conversation_id = create_test_conversation(db_session, test_user_id)
        add_test_message(db_session, conversation_id, "user", "q")
        add_test_message(db_session, conversation_id, "assistant", "a")

        response = auth_client.get(
            f"/conversations/{conversation_id}/messages", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [(m["seq"], m["role"], m["content"]) for m in data] == [
            (1, "user", "q"),
            (2, "assistant", "a"),
        ]
        assert data[0]["conversationId"] == str(conversation_id)
        assert data[0]["status"] == "completed"

    def test_foreign_messages(self, auth_client, db_session, test_user_id):
        """Another user's messages are a 404."""
        other = create_test_user(db_session)
        conversation_id = create_test_conversation(db_session, other)
        add_test_message(db_session, conversation_id, "user", "secret")

        response = auth_client.get(
            f"/conversations/{conversation_id}/messages", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 404
