"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from chatrelay.api.routes.chat import router as chat_router
from chatrelay.api.routes.conversations import router as conversations_router
from chatrelay.api.routes.files import router as files_router
from chatrelay.api.routes.health import router as health_router
from chatrelay.api.routes.models import router as models_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(chat_router)
    api_router.include_router(conversations_router)
    api_router.include_router(models_router)
    api_router.include_router(files_router)
    return api_router


__all__ = ["create_api_router"]
