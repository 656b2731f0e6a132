"""Streaming chat relay: provider event-stream in, NDJSON events out.

Lifecycle of one request (RelayState):
    opening -> connected -> streaming -> completed | stopped | error

- opening: the assistant placeholder exists (status `streaming`); the
  provider request is being sent. A non-2xx answer ends here: the message
  is finalized as `error` and the route answers with a plain JSON error,
  no NDJSON stream is ever started.
- connected: status line checked, the NDJSON response begins.
- streaming: upstream bytes are being relayed.

NDJSON events (one JSON object per line):
- meta:  {"type": "meta", "conversationId": ..., "assistantMessageId": ...}
- delta: {"type": "delta", "text": "..."}
- error: {"type": "error", "error": {"code": ..., "message": ...}}
- done:  {"type": "done"}

Ordering: meta first, deltas in upstream order, at most one error, done
last, nothing after done.

Termination (decided in this priority order):
- client disconnected (generator closed/cancelled, or the request reports a
  disconnect) -> `stopped`, no error event
- idle window elapsed with no upstream bytes -> `error` / TIMEOUT
- upstream read failure -> `error` / STREAM_ERROR
- otherwise ([DONE] or end of body) -> `completed` with estimated usage/cost

The assistant message is finalized exactly once per request: the relay
context remembers that it finalized, and the UPDATE only matches rows still
in `streaming`. Finalize is best-effort: a failed write is logged and the
stream still ends with `done`.

DB work runs in the threadpool on a session of its own; the request-scoped
session is not used after the response has started.
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

import anyio
import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from chatrelay.db.models import Message, MessageStatus, utcnow
from chatrelay.errors import ApiError, ApiErrorCode, to_public_error
from chatrelay.logging import get_logger
from chatrelay.services.chat import PreparedTurn
from chatrelay.services.conversations import bump_conversation
from chatrelay.services.llm import (
    LineReader,
    LLMError,
    LLMRequest,
    OpenRouterClient,
    parse_sse_line,
)
from chatrelay.services.pricing import CatalogFetcher, PriceCache, get_model_cost
from chatrelay.services.usage import HistoryEntry, UsageEstimate, estimate_chat_usage

logger = get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson; charset=utf-8"
NDJSON_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

TIMEOUT_MESSAGE = "Request timed out, please try again"
STREAM_ERROR_MESSAGE = "Generation was interrupted, please try again"


class RelayState(str, Enum):
    """Relay lifecycle states."""

    opening = "opening"
    connected = "connected"
    streaming = "streaming"
    completed = "completed"
    stopped = "stopped"
    error = "error"


class TerminationReason(str, Enum):
    """Why the relay stopped reading upstream."""

    done_sentinel = "done_sentinel"
    end_of_body = "end_of_body"
    client_disconnect = "client_disconnect"
    idle_timeout = "idle_timeout"
    upstream_status = "upstream_status"
    stream_error = "stream_error"


@dataclass
class RelayContext:
    """Per-request relay state passed through every stage.

    Attributes:
        conversation_id: Conversation of the turn.
        assistant_message_id: The placeholder to finalize.
        model: Provider model id (used for pricing).
        history: Prior turns, for usage estimation.
        user_text: Text of the new user turn, for usage estimation.
        idle_timeout_s: Longest allowed gap between upstream byte chunks.
        is_disconnected: Optional check for a dropped client connection.
        cancel: Set once the client is known to be gone.
        state: Current RelayState.
        reason: Why reading stopped, once it has.
        error: Client-facing error for the `error` outcome.
        parts: Delta texts received so far.
        finalized: Whether the finalizer already ran for this request.
    """

    conversation_id: UUID
    assistant_message_id: UUID
    model: str
    history: list[HistoryEntry]
    user_text: str
    idle_timeout_s: float
    is_disconnected: Callable[[], Awaitable[bool]] | None = None
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    state: RelayState = RelayState.opening
    reason: TerminationReason | None = None
    error: ApiError | None = None
    parts: list[str] = field(default_factory=list)
    finalized: bool = False
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_prepared(
        cls,
        prepared: PreparedTurn,
        *,
        idle_timeout_s: float,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> "RelayContext":
        if prepared.assistant_message_id is None:
            raise ValueError("Streaming turns need an assistant placeholder")
        return cls(
            conversation_id=prepared.conversation_id,
            assistant_message_id=prepared.assistant_message_id,
            model=prepared.model,
            history=prepared.history,
            user_text=prepared.text_for_model,
            idle_timeout_s=idle_timeout_s,
            is_disconnected=is_disconnected,
        )

    @property
    def answer(self) -> str:
        return "".join(self.parts)

    def stop(self, reason: TerminationReason) -> None:
        """Record the first termination reason; later ones are ignored."""
        if self.reason is None:
            self.reason = reason
        if reason == TerminationReason.client_disconnect:
            self.cancel.set()

    def fail(self, error: ApiError, reason: TerminationReason) -> None:
        """Record an error outcome (kept only if no error was recorded yet)."""
        if self.error is None:
            self.error = error
        self.stop(reason)

    def terminal_state(self) -> RelayState:
        """stopped beats error beats completed."""
        if self.cancel.is_set():
            return RelayState.stopped
        if self.error is not None:
            return RelayState.error
        return RelayState.completed


# =============================================================================
# NDJSON formatting
# =============================================================================


def format_ndjson_event(event: dict[str, Any]) -> str:
    """One JSON object terminated by a newline (non-ASCII kept as is)."""
    return json.dumps(event, ensure_ascii=False) + "\n"


def meta_event(ctx: RelayContext) -> str:
    return format_ndjson_event(
        {
            "type": "meta",
            "conversationId": str(ctx.conversation_id),
            "assistantMessageId": str(ctx.assistant_message_id),
        }
    )


def delta_event(text: str) -> str:
    return format_ndjson_event({"type": "delta", "text": text})


def error_event(error: ApiError) -> str:
    return format_ndjson_event({"type": "error", "error": error.to_body()})


def done_event() -> str:
    return format_ndjson_event({"type": "done"})


# =============================================================================
# Finalizer
# =============================================================================


def finalize_assistant_message(
    db_factory: sessionmaker[Session],
    *,
    assistant_message_id: UUID,
    conversation_id: UUID,
    status: str,
    content: str,
    error: str | None,
    usage: UsageEstimate | None,
    cost: float | None,
) -> bool:
    """Write the terminal state of an assistant message (exactly-once).

    Uses WHERE status='streaming' so a message that already reached a
    terminal state is never written again. Never raises.

    Returns:
        True if this call finalized the row, False otherwise.
    """
    try:
        with db_factory() as db:
            result = db.execute(
                update(Message)
                .where(
                    Message.id == assistant_message_id,
                    Message.status == MessageStatus.streaming.value,
                )
                .values(
                    content=content,
                    status=status,
                    error=error,
                    prompt_tokens=usage.prompt_tokens if usage else None,
                    completion_tokens=usage.completion_tokens if usage else None,
                    total_tokens=usage.total_tokens if usage else None,
                    cost=cost,
                    estimated=usage.estimated if usage else None,
                    updated_at=utcnow(),
                )
            )

            if result.rowcount == 0:
                logger.info(
                    "finalize_skipped_already_done",
                    assistant_message_id=str(assistant_message_id),
                )
                db.rollback()
                return False

            bump_conversation(db, conversation_id)
            db.commit()
            return True
    except Exception as e:
        logger.error(
            "finalize_failed",
            assistant_message_id=str(assistant_message_id),
            status=status,
            error_type=type(e).__name__,
        )
        return False


async def finalize_relay(
    ctx: RelayContext,
    *,
    db_factory: sessionmaker[Session],
    price_cache: PriceCache,
    fetch_catalog: CatalogFetcher,
) -> None:
    """Decide the terminal outcome and persist it, once per context."""
    if ctx.finalized:
        return
    ctx.finalized = True
    ctx.state = ctx.terminal_state()

    answer = ctx.answer
    usage: UsageEstimate | None = None
    cost: float | None = None
    error_message: str | None = None

    if ctx.state == RelayState.completed:
        usage = estimate_chat_usage(ctx.history, ctx.user_text, answer)
        cost = await get_model_cost(
            price_cache,
            fetch_catalog,
            ctx.model,
            usage.prompt_tokens,
            usage.completion_tokens,
        )
    elif ctx.state == RelayState.error:
        error_message = ctx.error.message if ctx.error else STREAM_ERROR_MESSAGE

    finalized = await run_in_threadpool(
        finalize_assistant_message,
        db_factory,
        assistant_message_id=ctx.assistant_message_id,
        conversation_id=ctx.conversation_id,
        status=ctx.state.value,
        content=answer,
        error=error_message,
        usage=usage,
        cost=cost,
    )

    logger.info(
        "chat_stream_finalized",
        assistant_message_id=str(ctx.assistant_message_id),
        conversation_id=str(ctx.conversation_id),
        status=ctx.state.value,
        reason=ctx.reason.value if ctx.reason else None,
        error_code=ctx.error.kind if ctx.error and ctx.state == RelayState.error else None,
        answer_chars=len(answer),
        prompt_tokens=usage.prompt_tokens if usage else None,
        completion_tokens=usage.completion_tokens if usage else None,
        cost=cost,
        persisted=finalized,
        total_ms=int((time.monotonic() - ctx.started_at) * 1000),
    )


async def _finalize_shielded(ctx: RelayContext, **deps: Any) -> None:
    """Finalize even while the surrounding task is being cancelled."""
    with anyio.CancelScope(shield=True):
        try:
            await finalize_relay(ctx, **deps)
        except Exception as e:
            logger.error(
                "chat_stream_finalize_crashed",
                assistant_message_id=str(ctx.assistant_message_id),
                error_type=type(e).__name__,
            )


# =============================================================================
# Relay
# =============================================================================


async def open_relay(
    ctx: RelayContext,
    client: OpenRouterClient,
    request: LLMRequest,
    *,
    db_factory: sessionmaker[Session],
    price_cache: PriceCache,
) -> httpx.Response:
    """Send the streaming provider request and check its status.

    Returns:
        The live upstream response; relay_events() consumes and closes it.

    Raises:
        ApiError: After the placeholder was finalized as `error` (or `stopped`
            when the caller went away); the route turns it into a JSON error.
    """
    deps = {
        "db_factory": db_factory,
        "price_cache": price_cache,
        "fetch_catalog": client.list_models,
    }
    try:
        response = await client.open_stream(request)
    except LLMError as e:
        ctx.fail(e.to_api_error(), TerminationReason.upstream_status)
        await _finalize_shielded(ctx, **deps)
        raise ctx.error from e
    except asyncio.CancelledError:
        ctx.stop(TerminationReason.client_disconnect)
        await _finalize_shielded(ctx, **deps)
        raise
    except Exception as e:
        ctx.fail(to_public_error(e), TerminationReason.stream_error)
        await _finalize_shielded(ctx, **deps)
        raise

    ctx.state = RelayState.connected
    return response


async def _client_gone(ctx: RelayContext) -> bool:
    if ctx.cancel.is_set() or (
        ctx.is_disconnected is not None and await ctx.is_disconnected()
    ):
        ctx.stop(TerminationReason.client_disconnect)
        return True
    return False


async def relay_events(
    ctx: RelayContext,
    upstream: httpx.Response,
    *,
    db_factory: sessionmaker[Session],
    price_cache: PriceCache,
    fetch_catalog: CatalogFetcher,
) -> AsyncIterator[str]:
    """Relay an open upstream event-stream as NDJSON lines.

    Always closes the upstream response and finalizes the assistant message,
    however the generator ends (exhausted, closed, or cancelled).
    """
    deps = {
        "db_factory": db_factory,
        "price_cache": price_cache,
        "fetch_catalog": fetch_catalog,
    }
    reader = LineReader()
    # Content-decoded (gzip, br) chunks; line framing is left to LineReader
    chunks = upstream.aiter_bytes()
    saw_done = False

    try:
        yield meta_event(ctx)
        ctx.state = RelayState.streaming

        while not saw_done:
            if await _client_gone(ctx):
                break
            try:
                chunk = await asyncio.wait_for(anext(chunks), timeout=ctx.idle_timeout_s)
            except StopAsyncIteration:
                lines = reader.flush()
                ctx.stop(TerminationReason.end_of_body)
            except TimeoutError:
                ctx.fail(
                    ApiError(ApiErrorCode.TIMEOUT, TIMEOUT_MESSAGE),
                    TerminationReason.idle_timeout,
                )
                break
            else:
                lines = reader.feed(chunk)

            for line in lines:
                event = parse_sse_line(line)
                if event is None:
                    continue
                if event.done:
                    saw_done = True
                    ctx.stop(TerminationReason.done_sentinel)
                    break
                if event.delta_text:
                    ctx.parts.append(event.delta_text)
                    yield delta_event(event.delta_text)

            if ctx.reason == TerminationReason.end_of_body:
                break

    except (asyncio.CancelledError, GeneratorExit):
        ctx.stop(TerminationReason.client_disconnect)
        raise
    except httpx.HTTPError as e:
        logger.warning(
            "chat_stream_read_failed",
            assistant_message_id=str(ctx.assistant_message_id),
            error_type=type(e).__name__,
        )
        ctx.fail(
            ApiError(ApiErrorCode.STREAM_ERROR, STREAM_ERROR_MESSAGE),
            TerminationReason.stream_error,
        )
    except Exception as e:
        logger.error(
            "chat_stream_unexpected_error",
            assistant_message_id=str(ctx.assistant_message_id),
            error_type=type(e).__name__,
        )
        ctx.fail(
            ApiError(ApiErrorCode.STREAM_ERROR, STREAM_ERROR_MESSAGE),
            TerminationReason.stream_error,
        )
    finally:
        with anyio.CancelScope(shield=True):
            await upstream.aclose()
        await _finalize_shielded(ctx, **deps)

    if ctx.state == RelayState.stopped:
        return
    if ctx.state == RelayState.error and ctx.error is not None:
        yield error_event(ctx.error)
    yield done_event()
