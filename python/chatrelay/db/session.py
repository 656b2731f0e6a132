"""Sessions for request handlers and the stream finalizer.

Route handlers get a request-scoped session from get_db(). The streaming
relay outlives its request, so the finalizer opens short sessions of its
own from get_session_factory(). Both come from create_session_factory(),
which tests also use to bind sessions to their savepoint connection.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.db.engine import get_engine


def create_session_factory(
    bind: Engine | Connection | None = None, **options: Any
) -> sessionmaker[Session]:
    """Build a sessionmaker with the options every chatrelay session uses.

    Objects stay readable after commit (the relay hands message ids and
    conversation rows across sessions) and nothing is flushed implicitly.

    Args:
        bind: Engine or connection; the default engine when None.
        **options: Extra sessionmaker options, e.g. join_transaction_mode.
    """
    return sessionmaker(
        bind=bind if bind is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
        **options,
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    with get_session_factory()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit the block's writes together or not at all.

        with transaction(db):
            db.add(message)
            bump_conversation(db, conversation_id)
    """
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    db.commit()
