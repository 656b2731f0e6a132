"""Authentication module.

This module provides:
- Session token minting and verification (HS256)
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from chatrelay.auth.middleware import AuthMiddleware, Viewer, get_current_user, get_viewer
from chatrelay.auth.verifier import SessionTokenVerifier, TokenVerifier, mint_session_token

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "get_current_user",
    "SessionTokenVerifier",
    "TokenVerifier",
    "mint_session_token",
]
