"""LLM error classification and normalization.

The provider client raises LLMError for every failure it can see before
or while talking to the provider; callers translate it to an ApiError
with to_api_error().

Error classes:
- KEY_MISSING: No provider key configured
- TIMEOUT: Request or idle window elapsed
- UPSTREAM_STATUS: Provider answered with a non-2xx status
- BAD_RESPONSE: Provider answered 2xx with an unusable body
- NETWORK: Connection failure or read error
"""

from enum import Enum

import httpx

from chatrelay.errors import ApiError, ApiErrorCode, upstream_error


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    KEY_MISSING = "KEY_MISSING"
    TIMEOUT = "TIMEOUT"
    UPSTREAM_STATUS = "UPSTREAM_STATUS"
    BAD_RESPONSE = "BAD_RESPONSE"
    NETWORK = "NETWORK"


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        status_code: Upstream HTTP status, when the provider answered
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        status_code: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_api_error(self) -> ApiError:
        """Translate into the client-facing error."""
        if self.error_class == LLMErrorClass.KEY_MISSING:
            return ApiError(ApiErrorCode.OPENROUTER_KEY_MISSING, self.message)
        if self.error_class == LLMErrorClass.TIMEOUT:
            return ApiError(ApiErrorCode.TIMEOUT, "Request timed out")
        if self.error_class == LLMErrorClass.NETWORK:
            return ApiError(
                ApiErrorCode.OPENROUTER_ERROR,
                "Upstream provider unreachable",
                status_code=502,
            )
        return upstream_error(self.status_code or 502, self.message)


def classify_httpx_error(exc: Exception) -> LLMError:
    """Map an httpx exception (or an expired deadline) raised while calling the provider."""
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return LLMError(LLMErrorClass.TIMEOUT, "Request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        return LLMError(
            LLMErrorClass.UPSTREAM_STATUS,
            f"Provider returned HTTP {exc.response.status_code}",
            status_code=exc.response.status_code,
        )
    return LLMError(LLMErrorClass.NETWORK, f"Network error: {type(exc).__name__}")


def extract_error_message(body: object, status_code: int) -> str:
    """Best-effort human message from a provider error body.

    Chat-completions providers return {"error": {"message": ...}}; anything
    else falls back to a generic message with the status code.
    """
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"][:500]
        if isinstance(error, str):
            return error[:500]
    return f"Upstream request failed ({status_code})"
