"""Structured logging configuration using structlog.

Every event is a JSON object (console rendering is available for local
work) carrying the request-scoped fields that are set:
- request_id: Correlation ID (X-Request-ID)
- user_id: Authenticated user
- path / method: Raw request path (no query string) and HTTP method
- conversation_id: Conversation a chat turn belongs to

Event names are snake_case verbs (`chat_stream_finalized`); payload keys
must pass services.redact.safe_kv wherever text could leak into them.

Usage:
    from chatrelay.logging import get_logger

    logger = get_logger(__name__)
    logger.info("conversation_created", conversation_id=str(conversation.id))
"""

import logging
import sys
from contextvars import ContextVar

import structlog

_CONTEXT_FIELDS = ("request_id", "user_id", "path", "method", "conversation_id")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in _CONTEXT_FIELDS
}

# Third-party loggers that are only interesting when something is wrong
QUIET_LOGGERS = ("httpx", "httpcore", "pdfminer", "uvicorn.access", "multipart")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy set context fields into the event.

    Keys passed explicitly at the call site win over the context.
    """
    for name, var in _context.items():
        value = var.get()
        if value and name not in event_dict:
            event_dict[name] = value
    return event_dict


def configure_logging(json_format: bool = True, level: str | int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Safe to call more than once; the root handlers are replaced each time.

    Args:
        json_format: JSON lines if True, human-readable console output otherwise.
        level: Root log level name or number.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper() if isinstance(level, str) else level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Start the logging context of a request."""
    _context["request_id"].set(request_id)
    if path is not None:
        _context["path"].set(path)
    if method is not None:
        _context["method"].set(method)


def set_user_id(user_id: str | None) -> None:
    """Set the authenticated user once the session has been verified."""
    _context["user_id"].set(user_id)


def set_conversation_id(conversation_id: str | None) -> None:
    """Set the conversation a chat turn writes to."""
    _context["conversation_id"].set(conversation_id)


def clear_request_context() -> None:
    """Reset every context field at the end of a request."""
    for var in _context.values():
        var.set(None)


def get_request_id() -> str | None:
    return _context["request_id"].get()
