"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
An ApiError is the tagged error carried through the service layer:
its code is the kind, plus status_code, message and optional details.
"""

from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    These are the codes surfaced to clients in {"error": {"code": ...}}.
    """

    # Validation errors (400)
    BAD_REQUEST = "BAD_REQUEST"
    NO_CONTINUE_FILE = "NO_CONTINUE_FILE"

    # Authentication errors (401)
    UNAUTHORIZED = "UNAUTHORIZED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Size ceilings (413)
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"

    # Upstream provider errors
    OPENROUTER_ERROR = "OPENROUTER_ERROR"  # upstream status, 502 if unknown
    OPENROUTER_KEY_MISSING = "OPENROUTER_KEY_MISSING"  # 500
    PROXY_ERROR = "PROXY_ERROR"  # 500
    TIMEOUT = "TIMEOUT"  # 504
    STREAM_ERROR = "STREAM_ERROR"  # only ever sent inside an open stream

    # Server errors
    INTERNAL_ERROR = "INTERNAL_ERROR"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.BAD_REQUEST: 400,
    ApiErrorCode.NO_CONTINUE_FILE: 400,
    ApiErrorCode.UNAUTHORIZED: 401,
    ApiErrorCode.NOT_FOUND: 404,
    ApiErrorCode.IMAGE_TOO_LARGE: 413,
    ApiErrorCode.FILE_TOO_LARGE: 413,
    ApiErrorCode.OPENROUTER_ERROR: 502,
    ApiErrorCode.OPENROUTER_KEY_MISSING: 500,
    ApiErrorCode.PROXY_ERROR: 500,
    ApiErrorCode.TIMEOUT: 504,
    ApiErrorCode.STREAM_ERROR: 500,
    ApiErrorCode.INTERNAL_ERROR: 500,
}

GENERIC_INTERNAL_MESSAGE = "Internal server error"


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value (the error kind)
        message: Human-readable error message
        status_code: HTTP status code (derived from code unless overridden)
        details: Optional structured details, never shown to clients
    """

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code or ERROR_CODE_TO_STATUS.get(code, 500)
        self.details = details
        super().__init__(message)

    @property
    def kind(self) -> str:
        """The error kind, i.e. the public code string."""
        return self.code.value

    def to_body(self) -> dict[str, Any]:
        """Return the client-visible {"code", "message"} pair."""
        return {"code": self.code.value, "message": self.message}


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.BAD_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class UnauthorizedError(ApiError):
    """Missing, invalid or stale session."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ApiErrorCode.UNAUTHORIZED, message)


def upstream_error(status_code: int, message: str | None = None) -> ApiError:
    """Build the error for a non-2xx provider response.

    The upstream status is kept when it is an error status; anything else
    (e.g. a 2xx with a malformed body) is reported as 502.
    """
    status = status_code if 400 <= status_code <= 599 else 502
    return ApiError(
        ApiErrorCode.OPENROUTER_ERROR,
        message or f"Upstream request failed ({status_code})",
        status_code=status,
        details={"upstream_status": status_code},
    )


def to_public_error(exc: BaseException) -> ApiError:
    """Map any exception to the ApiError that may be shown to a client.

    ApiErrors pass through unchanged. Everything else collapses to
    INTERNAL_ERROR with a generic message so internals never leak.
    """
    if isinstance(exc, ApiError):
        return exc
    return ApiError(ApiErrorCode.INTERNAL_ERROR, GENERIC_INTERNAL_MESSAGE)
