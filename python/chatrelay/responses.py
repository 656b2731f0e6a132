"""Response envelopes and the exception handlers that produce them.

    success: {"data": ...}
    error:   {"error": {"code": "...", "message": "...", "request_id": "..."}}

request_id is filled in from the logging context when one is set. The
chat endpoints answer with their own shapes (a JSON object or an NDJSON
stream) but their errors use the same error envelope.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatrelay.errors import GENERIC_INTERNAL_MESSAGE, ApiError, ApiErrorCode
from chatrelay.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised statuses (unknown route, wrong method, oversized body)
_HTTP_STATUS_CODES = {
    400: ApiErrorCode.BAD_REQUEST,
    401: ApiErrorCode.UNAUTHORIZED,
    404: ApiErrorCode.NOT_FOUND,
    405: ApiErrorCode.BAD_REQUEST,
    413: ApiErrorCode.FILE_TOO_LARGE,
    422: ApiErrorCode.BAD_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Error envelope; request_id defaults to the current request's id."""
    error: dict[str, Any] = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def error_json(code: ApiErrorCode, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    # Client errors are expected traffic; only 5xx is worth a warning
    if exc.status_code >= 500:
        logger.warning(
            "api_error",
            code=exc.code.value,
            status_code=exc.status_code,
            details=exc.details,
        )
    return error_json(exc.code, exc.message, exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.INTERNAL_ERROR)
    return error_json(code, str(exc.detail) if exc.detail else "An error occurred", exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with a generic message; the traceback only goes to the log."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return error_json(ApiErrorCode.INTERNAL_ERROR, GENERIC_INTERNAL_MESSAGE, 500)
