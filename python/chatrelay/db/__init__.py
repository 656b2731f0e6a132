"""Database module for the chat relay.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from chatrelay.db.engine import create_db_engine, get_engine
from chatrelay.db.models import (
    TERMINAL_STATUSES,
    Base,
    Conversation,
    FileReadCursor,
    Message,
    MessageRole,
    MessageStatus,
    UploadedFile,
    User,
)
from chatrelay.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "MessageRole",
    "MessageStatus",
    "TERMINAL_STATUSES",
    # Models
    "User",
    "Conversation",
    "Message",
    "UploadedFile",
    "FileReadCursor",
]
