"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the shared clients created
by the application lifespan.
"""

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.config import Settings, get_settings
from chatrelay.db.session import get_db
from chatrelay.db.session import get_session_factory as _default_session_factory
from chatrelay.services.llm import OpenRouterClient
from chatrelay.services.pricing import PriceCache
from chatrelay.storage import BlobStoreBase

__all__ = [
    "get_db",
    "get_session_factory",
    "get_app_settings",
    "get_openrouter_client",
    "get_price_cache",
    "get_blob_store",
]


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for work that outlives the request-scoped session.

    The streaming relay finalizes its message after the route returned, so
    it opens sessions of its own instead of using get_db().
    """
    return _default_session_factory()


def get_app_settings() -> Settings:
    return get_settings()


def get_openrouter_client(request: Request) -> OpenRouterClient:
    """Get the shared provider client from app state.

    The client wraps the httpx.AsyncClient created at startup, which
    provides connection pooling and proper cleanup.
    """
    return request.app.state.openrouter_client


def get_price_cache(request: Request) -> PriceCache:
    """Get the application-wide model price cache."""
    return request.app.state.price_cache


def get_blob_store(request: Request) -> BlobStoreBase:
    """Get the blob store holding uploaded files."""
    return request.app.state.blob_store
