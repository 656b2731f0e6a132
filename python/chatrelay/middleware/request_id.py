"""X-Request-ID correlation for every request.

A client-supplied id is kept when it is a short token of letters, digits,
dots, hyphens and underscores (UUIDs are lowercased); anything else is
replaced by a fresh UUID4. The id is stored on request.state and in the
logging context, echoed in the response header, and copied into error
bodies by chatrelay.responses.

The middleware has to wrap the auth middleware so that 401 responses
still carry the header: register it after auth (see
app.add_request_id_middleware).

Streaming responses are logged when their headers go out; the relay logs
its own terminal event when the body ends.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from chatrelay.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

# ASCII only, so the 128 character limit is also a byte limit
_TOKEN_RE = re.compile(r"[A-Za-z0-9._-]{1,128}")
_UUID_RE = re.compile(r"[0-9a-fA-F]{8}(?:-[0-9a-fA-F]{4}){3}-[0-9a-fA-F]{12}")

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    return _TOKEN_RE.fullmatch(value) is not None


def normalize_request_id(value: str) -> str:
    return value.lower() if _UUID_RE.fullmatch(value) else value


def resolve_request_id(incoming: str | None) -> str:
    """The id to use for a request given its X-Request-ID header value."""
    if incoming and is_valid_request_id(incoming):
        return normalize_request_id(incoming)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            # unhandled_exception_handler renders the 500
            logger.exception("request_failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                viewer = getattr(request.state, "viewer", None)
                content_type = response.headers.get("content-type", "")
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                    user_id=str(viewer.user_id) if viewer else None,
                    streaming=content_type.startswith("application/x-ndjson"),
                )
            return response
        finally:
            clear_request_context()
