"""Session token minting and verification.

Sessions are HS256 JWTs signed with JWT_SECRET:
- sub: user id (UUID string)
- username, is_admin: display claims
- iat / exp: issued-at and expiry (exp checked with clock skew)

How a session is obtained (login form, SSO, operator script) is outside
this module; scripts/create_user.py mints tokens for local use.
"""

import time
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from chatrelay.errors import UnauthorizedError
from chatrelay.logging import get_logger

logger = get_logger(__name__)

SESSION_ALGORITHM = "HS256"

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60


class TokenVerifier(Protocol):
    """Protocol for token verification.

    Implementations must verify JWT tokens and return decoded claims.
    """

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            UnauthorizedError: Token is invalid, expired, or malformed.
        """
        ...


class SessionTokenVerifier:
    """Verifier for HS256 session tokens.

    Validates:
    - Signature with the shared secret, HS256 only
    - exp with ±60s clock skew
    - sub is present and a valid UUID
    """

    def __init__(self, secret: str):
        self._secret = secret

    def verify(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError:
            logger.info("auth_failure", reason="token_expired")
            raise UnauthorizedError("Session expired, please log in again") from None
        except InvalidTokenError as e:
            logger.info("auth_failure", reason="token_invalid", error_type=type(e).__name__)
            raise UnauthorizedError("Invalid session") from None

        try:
            UUID(str(claims["sub"]))
        except ValueError:
            logger.info("auth_failure", reason="invalid_sub")
            raise UnauthorizedError("Invalid session") from None

        return claims


def mint_session_token(
    secret: str,
    user_id: UUID,
    *,
    username: str,
    is_admin: bool = False,
    expires_in: int = 7 * 24 * 3600,
) -> str:
    """Mint a signed session token.

    Args:
        secret: HS256 signing secret (JWT_SECRET).
        user_id: The user the session belongs to.
        username: Display name claim.
        is_admin: Admin flag claim.
        expires_in: Validity in seconds from now.

    Returns:
        Encoded JWT string.
    """
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "username": username,
        "is_admin": is_admin,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=SESSION_ALGORITHM)
