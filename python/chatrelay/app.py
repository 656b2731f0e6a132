"""Application factory for the chat relay API.

create_app() wires settings, logging, error handlers, routes and the
auth/CORS middleware; the shared provider client, price cache and blob
store live on app.state for the lifetime of the process (see lifespan).

Starlette runs middleware in reverse registration order, so the stack is
built inside out:

    RequestIDMiddleware   registered last by add_request_id_middleware()
    CORSMiddleware        only when CORS_ORIGIN is set; answers preflights
    AuthMiddleware        session cookie or bearer token
    routes

Keeping request-id outermost gives auth failures an X-Request-ID too.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatrelay.api.routes import create_api_router
from chatrelay.auth.middleware import AuthMiddleware
from chatrelay.auth.verifier import SessionTokenVerifier, TokenVerifier
from chatrelay.config import Settings, get_settings
from chatrelay.errors import ApiError, ApiErrorCode
from chatrelay.logging import configure_logging, get_logger
from chatrelay.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from chatrelay.responses import (
    api_error_handler,
    error_json,
    http_exception_handler,
    unhandled_exception_handler,
)
from chatrelay.services.llm import OpenRouterClient
from chatrelay.services.pricing import PriceCache
from chatrelay.storage import LocalBlobStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pooled provider connection and the process-wide caches."""
    settings = get_settings()

    # OpenRouterClient sets per-call timeouts; this one only covers other calls
    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=settings.upstream_connect_timeout_s),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.openrouter_client = OpenRouterClient.from_settings(app.state.httpx_client, settings)
    app.state.price_cache = PriceCache(
        ttl_s=settings.pricing_cache_ttl_s,
        retry_after_s=settings.pricing_retry_after_s,
    )
    app.state.blob_store = LocalBlobStore(settings.upload_dir)
    logger.info(
        "relay_started",
        base_url=settings.normalized_base_url,
        api_key_configured=bool(settings.openrouter_api_key),
        default_model=settings.default_model,
        upload_dir=settings.upload_dir,
    )

    try:
        yield
    finally:
        await app.state.httpx_client.aclose()
        logger.info("relay_stopped")


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed JSON and schema violations are both plain 400s."""
    return error_json(ApiErrorCode.BAD_REQUEST, "Invalid request body", 400)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def add_session_middleware(
    app: FastAPI, settings: Settings, token_verifier: TokenVerifier | None = None
) -> None:
    """Auth first, then CORS around it so preflights skip the session check."""
    app.add_middleware(
        AuthMiddleware,
        verifier=token_verifier or SessionTokenVerifier(settings.effective_jwt_secret),
        cookie_name=settings.session_cookie_name,
    )

    origins = settings.cors_origin_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER],
        )
    logger.info(
        "session_middleware_enabled",
        env=settings.chatrelay_env.value,
        cors_origins=origins or None,
    )


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        skip_auth_middleware: Leave out auth and CORS (tests that override
            the viewer dependency directly).
        token_verifier: Verifier to use instead of the JWT_SECRET one.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json, level=settings.log_level)

    app = FastAPI(
        title="Chat Relay API",
        description="Chat backend relaying an OpenRouter-compatible completion API",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(create_api_router())

    if not skip_auth_middleware:
        add_session_middleware(app, settings, token_verifier)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Register RequestIDMiddleware; call after every other middleware.

    Args:
        log_requests: Write a `request_completed` entry per request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
