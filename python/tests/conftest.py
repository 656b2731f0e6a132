"""Pytest configuration and fixtures for chat relay tests.

Test isolation strategy:
- Tests default to an in-memory SQLite database built from the ORM metadata;
  set DATABASE_URL to run against a migrated PostgreSQL database instead
- Every test runs in one outer transaction that is rolled back afterwards
- The provider is never called: respx intercepts httpx at the transport level
- Blobs live in an in-memory FakeBlobStore
"""

import os

# Must be set before chatrelay reads its settings
os.environ["CHATRELAY_ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["OPENROUTER_API_KEY"] = "sk-or-test"
os.environ["OPENROUTER_BASE_URL"] = "https://openrouter.test/api/v1"
os.environ.pop("JWT_SECRET", None)
os.environ.pop("CORS_ORIGIN", None)

from collections.abc import Generator
from uuid import UUID

import pytest
import respx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, inspect
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.api import deps
from chatrelay.app import create_app
from chatrelay.config import clear_settings_cache
from chatrelay.db.engine import create_db_engine
from chatrelay.db.models import Base
from chatrelay.db.session import get_db
from chatrelay.storage import FakeBlobStore
from tests.helpers import MODELS_URL, TEST_CATALOG, create_test_user
from tests.utils.db import TestDatabaseManager


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """Create a database engine for the test session.

    SQLite databases get their schema from the ORM metadata; any other
    database must already be migrated (alembic upgrade head).
    """
    clear_settings_cache()
    engine = create_db_engine(os.environ["DATABASE_URL"])
    if engine.dialect.name == "sqlite":
        Base.metadata.create_all(engine)
    elif not inspect(engine).has_table("users"):
        pytest.fail("Database schema not found. Run migrations first: alembic upgrade head")
    yield engine
    engine.dispose()


@pytest.fixture
def db_manager(engine: Engine) -> Generator[TestDatabaseManager, None, None]:
    """Outer transaction plus the session factory bound to it."""
    with TestDatabaseManager(engine) as manager:
        yield manager


@pytest.fixture
def db_session(db_manager: TestDatabaseManager) -> Session:
    """Primary session of the test; also used by route handlers."""
    return db_manager.session


@pytest.fixture
def session_factory(db_manager: TestDatabaseManager) -> sessionmaker[Session]:
    """Factory for the extra sessions the streaming finalizer opens."""
    return db_manager.session_factory


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def test_user_id(db_session: Session) -> UUID:
    """A persisted user."""
    return create_test_user(db_session)


@pytest.fixture
def provider_mock() -> Generator[respx.MockRouter, None, None]:
    """respx router for the provider; the model catalog is mocked by default."""
    with respx.mock(assert_all_called=False) as router:
        router.get(MODELS_URL, name="models").respond(200, json={"data": TEST_CATALOG})
        yield router


def _override_dependencies(
    app: FastAPI, db_session: Session, session_factory: sessionmaker[Session]
) -> None:
    def _get_test_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory


@pytest.fixture
def client(
    db_session: Session, session_factory: sessionmaker[Session], blob_store: FakeBlobStore
) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication.

    Suitable for public endpoints and basic functionality.
    """
    app = create_app(skip_auth_middleware=True)
    _override_dependencies(app, db_session, session_factory)
    with TestClient(app) as client:
        app.state.blob_store = blob_store
        yield client


@pytest.fixture
def auth_client(
    db_session: Session,
    session_factory: sessionmaker[Session],
    blob_store: FakeBlobStore,
    provider_mock: respx.MockRouter,
) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with auth middleware.

    Use auth_headers() to generate valid session tokens for requests.
    """
    app = create_app()
    _override_dependencies(app, db_session, session_factory)
    with TestClient(app) as client:
        app.state.blob_store = blob_store
        yield client
