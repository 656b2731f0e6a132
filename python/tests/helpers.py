"""Test helpers for authentication and common test operations.

Provides:
- Session token minting for test authentication
- Header generation for test requests
- Row creation helpers (users, conversations, messages, files)
- Provider event-stream bodies
"""

import json
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from chatrelay.auth.verifier import mint_session_token
from chatrelay.config import get_settings
from chatrelay.db.models import Conversation, Message, MessageRole, MessageStatus, User
from chatrelay.services.files import store_uploaded_file
from chatrelay.services.seq import assign_next_message_seq
from chatrelay.storage import BlobStoreBase

# Mirrors OPENROUTER_BASE_URL set in conftest.py
TEST_BASE_URL = "https://openrouter.test/api/v1"
CHAT_URL = f"{TEST_BASE_URL}/chat/completions"
MODELS_URL = f"{TEST_BASE_URL}/models"

# Served by the default models route of the provider_mock fixture
TEST_CATALOG = [
    {
        "id": "openai/gpt-4o-mini",
        "name": "GPT-4o mini",
        "pricing": {"prompt": "0.00000015", "completion": "0.0000006"},
    },
    {
        "id": "test/free-model",
        "name": "Free model",
        "pricing": {"prompt": "0", "completion": "0"},
    },
]


def mint_test_token(user_id: UUID | str, expires_in: int = 3600, **claims) -> str:
    """Mint a valid session token signed with the test secret."""
    return mint_session_token(
        get_settings().effective_jwt_secret,
        UUID(str(user_id)),
        username=claims.pop("username", "tester"),
        expires_in=expires_in,
        **claims,
    )


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with a valid Bearer session for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user(db: Session, username: str | None = None) -> UUID:
    """Insert a user row and return its id."""
    user = User(username=username or f"user-{uuid4().hex[:12]}")
    db.add(user)
    db.commit()
    return user.id


def create_test_conversation(db: Session, owner_id: UUID, title: str = "Test chat") -> UUID:
    """Insert an empty conversation and return its id."""
    conversation = Conversation(owner_user_id=owner_id, title=title)
    db.add(conversation)
    db.commit()
    return conversation.id


def add_test_message(
    db: Session,
    conversation_id: UUID,
    role: str,
    content: str,
    status: str = MessageStatus.completed.value,
) -> UUID:
    """Append a message with the next seq and return its id."""
    message = Message(
        conversation_id=conversation_id,
        seq=assign_next_message_seq(db, conversation_id),
        role=role,
        content=content,
        status=status,
    )
    db.add(message)
    db.commit()
    return message.id


def add_streaming_placeholder(db: Session, conversation_id: UUID) -> UUID:
    """Append an empty assistant message in `streaming` state."""
    return add_test_message(
        db, conversation_id, MessageRole.assistant.value, "", MessageStatus.streaming.value
    )


def create_test_file(
    db: Session,
    blob_store: BlobStoreBase,
    user_id: UUID,
    name: str = "notes.txt",
    data: bytes = b"hello",
    mime: str = "text/plain",
) -> UUID:
    """Store a blob plus its uploaded_files row and return the file id."""
    row = store_uploaded_file(
        db,
        blob_store,
        user_id=user_id,
        original_name=name,
        mime=mime,
        data=data,
        max_bytes=10 * 1024 * 1024,
    )
    return row.id


def sse_body(*deltas: str, done: bool = True) -> bytes:
    """Provider event-stream body with one `data:` line per delta."""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": delta}}]}) for delta in deltas
    ]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


def parse_ndjson(text: str) -> list[dict]:
    """Split an NDJSON body into decoded events."""
    return [json.loads(line) for line in text.splitlines() if line.strip()]
