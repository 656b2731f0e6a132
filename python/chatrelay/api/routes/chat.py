"""Chat API routes.

- POST /chat: one provider call, JSON answer
- POST /chat/stream: provider event-stream relayed as NDJSON

Both take the same body (ChatRequest) and require an authenticated user
whose row still exists. Errors raised before the stream starts are plain
JSON error envelopes; once the NDJSON response has begun, failures are
reported in-band as an `error` event followed by `done`.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from chatrelay.api.deps import (
    get_app_settings,
    get_blob_store,
    get_db,
    get_openrouter_client,
    get_price_cache,
    get_session_factory,
)
from chatrelay.auth.middleware import Viewer, get_current_user
from chatrelay.config import Settings
from chatrelay.schemas.chat import ChatRequest
from chatrelay.services import chat as chat_service
from chatrelay.services import chat_stream
from chatrelay.services.llm import LLMRequest, OpenRouterClient
from chatrelay.services.pricing import PriceCache
from chatrelay.storage import BlobStoreBase

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
async def chat(
    body: ChatRequest,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    blob_store: Annotated[BlobStoreBase, Depends(get_blob_store)],
    client: Annotated[OpenRouterClient, Depends(get_openrouter_client)],
    price_cache: Annotated[PriceCache, Depends(get_price_cache)],
) -> dict:
    """Send a message and wait for the whole answer.

    Returns:
        {"conversationId": ..., "message": {...assistant message}}
    """
    prepared = await run_in_threadpool(
        chat_service.prepare_chat_turn,
        db,
        blob_store,
        settings,
        viewer.user_id,
        body,
        create_placeholder=False,
    )
    result = await chat_service.complete_chat(db, prepared, client, price_cache, settings)
    return result.to_json_dict()


@router.post("/stream")
async def chat_stream_route(
    body: ChatRequest,
    request: Request,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    db_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    blob_store: Annotated[BlobStoreBase, Depends(get_blob_store)],
    client: Annotated[OpenRouterClient, Depends(get_openrouter_client)],
    price_cache: Annotated[PriceCache, Depends(get_price_cache)],
) -> StreamingResponse:
    """Send a message and stream the answer as NDJSON.

    The assistant placeholder is created before the provider is called; a
    non-2xx provider answer finalizes it as `error` and returns a JSON error
    with the provider's status instead of a stream.
    """
    prepared = await run_in_threadpool(
        chat_service.prepare_chat_turn,
        db,
        blob_store,
        settings,
        viewer.user_id,
        body,
        create_placeholder=True,
    )
    ctx = chat_stream.RelayContext.from_prepared(
        prepared,
        idle_timeout_s=settings.chat_timeout_s,
        is_disconnected=request.is_disconnected,
    )
    upstream = await chat_stream.open_relay(
        ctx,
        client,
        LLMRequest(model_name=prepared.model, messages=prepared.messages),
        db_factory=db_factory,
        price_cache=price_cache,
    )

    return StreamingResponse(
        chat_stream.relay_events(
            ctx,
            upstream,
            db_factory=db_factory,
            price_cache=price_cache,
            fetch_catalog=client.list_models,
        ),
        media_type=chat_stream.NDJSON_MEDIA_TYPE,
        headers=chat_stream.NDJSON_HEADERS,
    )
