"""Session authentication.

The login surface lives elsewhere; this module only consumes its HS256
session tokens. AuthMiddleware turns a valid token into a Viewer,
get_viewer() hands it to routes, and get_current_user() additionally
requires the user row to still exist.
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from chatrelay.auth.verifier import TokenVerifier
from chatrelay.db.models import User
from chatrelay.db.session import get_db
from chatrelay.errors import ApiError, ApiErrorCode, UnauthorizedError
from chatrelay.logging import get_logger, set_user_id
from chatrelay.responses import error_json

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
DEFAULT_COOKIE_NAME = "token"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from JWT sub claim).
        username: Display name from the session.
        is_admin: Admin flag from the session.
    """

    user_id: UUID
    username: str | None = None
    is_admin: bool = False


def read_session_token(request: Request, cookie_name: str) -> str | None:
    """Session cookie if present, else `Authorization: Bearer <token>`."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    scheme, _, credentials = request.headers.get(AUTHORIZATION_HEADER, "").partition(" ")
    if scheme.lower() == "bearer":
        return credentials.strip() or None
    return None


class AuthMiddleware(BaseHTTPMiddleware):
    """Attach a Viewer to request.state or answer 401.

    Public paths and CORS preflights pass through untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        cookie_name: str = DEFAULT_COOKIE_NAME,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        token = read_session_token(request, self.cookie_name)
        if token is None:
            logger.warning("auth_failure", reason="missing_token")
            return error_json(ApiErrorCode.UNAUTHORIZED, "Authentication required", 401)

        try:
            claims = self.verifier.verify(token)
        except ApiError as e:
            return error_json(e.code, e.message, e.status_code)

        viewer = Viewer(
            user_id=UUID(str(claims["sub"])),
            username=claims.get("username"),
            is_admin=bool(claims.get("is_admin", False)),
        )
        request.state.viewer = viewer
        set_user_id(str(viewer.user_id))
        return await call_next(request)



def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        UnauthorizedError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise UnauthorizedError()
    return viewer


def get_current_user(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Viewer:
    """FastAPI dependency: viewer whose user row still exists.

    A valid token for a deleted user is treated as an expired session.
    """
    if db.get(User, viewer.user_id) is None:
        logger.warning("auth_failure", reason="user_missing", user_id=str(viewer.user_id))
        raise UnauthorizedError("Session expired, please log in again")
    return viewer
