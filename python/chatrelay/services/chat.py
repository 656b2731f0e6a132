"""Chat turn preparation and the non-streaming chat path.

A chat turn has two text fields:
- `message`: what the user typed, stored verbatim (trimmed) as the user
  message and shown in the conversation
- `prompt`: what the model sees; defaults to `message`, file-link lines
  are always stripped from it

prepare_chat_turn() does everything that happens before the provider is
called, in ONE transaction:
1. Validate "continue" (needs an existing conversation)
2. Resolve the conversation (owned by the viewer) or create a new one
3. Assemble attachments (image parts, summary line, extracted text)
4. Load history (before the new rows exist)
5. Insert the user message and, for streaming, the assistant placeholder

If any step fails the transaction is rolled back: no conversation, no
message and no cursor is left behind.

complete_chat() is the non-streaming path: one provider call bounded by the
chat timeout, then the assistant message is written in its final state.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chatrelay.config import Settings
from chatrelay.db.models import Conversation, Message, MessageRole, MessageStatus
from chatrelay.db.session import transaction
from chatrelay.errors import ApiErrorCode, InvalidRequestError
from chatrelay.logging import get_logger, set_conversation_id
from chatrelay.schemas.chat import ChatRequest, ChatResponse
from chatrelay.services.attachments import (
    TextAttachmentLimits,
    build_title,
    extract_file_ids,
    is_continue_request,
    load_attachment_summary,
    load_image_parts,
    load_text_attachment_block,
    strip_file_markdown_lines,
    summarize_history_user_turn,
)
from chatrelay.services.conversations import (
    bump_conversation,
    get_conversation_for_viewer_or_404,
    message_to_out,
)
from chatrelay.services.files import get_user_files
from chatrelay.services.llm import LLMError, LLMRequest, OpenRouterClient, Turn, render_prompt
from chatrelay.services.pricing import PriceCache, get_model_cost
from chatrelay.services.seq import assign_next_message_seq
from chatrelay.services.usage import (
    HistoryEntry,
    UsageEstimate,
    estimate_conversation_tokens,
    usage_from_provider,
)
from chatrelay.storage import BlobStoreBase

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedTurn:
    """Everything the provider call and the finalizer need for one turn.

    Attributes:
        conversation_id: Resolved or newly created conversation.
        user_message_id: The stored user message.
        assistant_message_id: Streaming placeholder, None for non-streaming turns.
        model: Provider model id.
        messages: Full prompt (system turn, history, new user turn).
        history: Prior turns as plain text, for usage estimation.
        text_for_model: Text part of the new user turn.
    """

    conversation_id: UUID
    user_message_id: UUID
    assistant_message_id: UUID | None
    model: str
    messages: list[Turn]
    history: list[HistoryEntry]
    text_for_model: str


def _build_history(db: Session, user_id: UUID, conversation_id: UUID) -> list[Turn]:
    """Prior turns in seq order, as the model should see them.

    User turns lose their link-only lines (or become the attached-file
    summary); assistant turns with no content are skipped.
    """
    rows = db.scalars(
        select(Message).where(Message.conversation_id == conversation_id).order_by(Message.seq)
    ).all()

    linked_ids = [
        file_id
        for row in rows
        if row.role == MessageRole.user.value
        for file_id in extract_file_ids(row.content)
    ]
    files_by_id = {f.id: f for f in get_user_files(db, user_id, linked_ids)}

    turns: list[Turn] = []
    for row in rows:
        if row.role == MessageRole.user.value:
            content = summarize_history_user_turn(row.content, files_by_id)
            turns.append(Turn(role="user", content=content))
        elif row.role == MessageRole.assistant.value:
            if row.content:
                turns.append(Turn(role="assistant", content=row.content))
    return turns


def prepare_chat_turn(
    db: Session,
    blob_store: BlobStoreBase,
    settings: Settings,
    user_id: UUID,
    request: ChatRequest,
    *,
    create_placeholder: bool,
) -> PreparedTurn:
    """Validate the request, assemble the prompt and store the user message.

    Args:
        db: Database session (committed on success, rolled back on failure).
        blob_store: Store holding uploaded file bytes.
        settings: Limits and default model.
        user_id: Authenticated user.
        request: The chat request body.
        create_placeholder: Also insert an empty `streaming` assistant message.

    Raises:
        InvalidRequestError(BAD_REQUEST): "continue" without a conversation, or
            nothing to send after attachments are assembled.
        InvalidRequestError(NO_CONTINUE_FILE): "continue" with nothing to continue.
        NotFoundError: Conversation missing or owned by someone else.
        ApiError(IMAGE_TOO_LARGE): Image attachments over the byte ceiling.
    """
    display_text = request.message.strip()
    prompt_text = strip_file_markdown_lines(
        request.prompt if request.prompt is not None else display_text
    )
    model = (request.model or "").strip() or settings.default_model
    continue_mode = is_continue_request(prompt_text)

    if continue_mode and request.conversation_id is None:
        raise InvalidRequestError(
            ApiErrorCode.BAD_REQUEST,
            '"Continue" only works inside an existing conversation',
        )

    with transaction(db):
        if request.conversation_id is None:
            conversation = Conversation(
                owner_user_id=user_id,
                title=build_title(prompt_text or display_text),
            )
            db.add(conversation)
            db.flush()
        else:
            conversation = get_conversation_for_viewer_or_404(
                db, user_id, request.conversation_id
            )
        set_conversation_id(str(conversation.id))

        image_parts = load_image_parts(
            db,
            blob_store,
            user_id=user_id,
            file_ids=request.file_ids,
            max_bytes=settings.max_image_bytes,
        )
        summary = load_attachment_summary(db, user_id, request.file_ids)
        attachment_text = load_text_attachment_block(
            db,
            blob_store,
            user_id=user_id,
            conversation_id=conversation.id,
            file_ids=request.file_ids,
            continue_mode=continue_mode,
            limits=TextAttachmentLimits.from_settings(settings),
        )

        text_for_model = "\n\n".join(
            part for part in (prompt_text, summary, attachment_text) if part
        )
        if not text_for_model and not image_parts:
            raise InvalidRequestError(ApiErrorCode.BAD_REQUEST, "Message cannot be empty")

        history = _build_history(db, user_id, conversation.id)

        user_message = Message(
            conversation_id=conversation.id,
            seq=assign_next_message_seq(db, conversation.id),
            role=MessageRole.user.value,
            content=display_text,
            status=MessageStatus.completed.value,
        )
        db.add(user_message)

        assistant_message = None
        if create_placeholder:
            assistant_message = Message(
                conversation_id=conversation.id,
                seq=assign_next_message_seq(db, conversation.id),
                role=MessageRole.assistant.value,
                content="",
                status=MessageStatus.streaming.value,
            )
            db.add(assistant_message)

    user_content = (
        [{"type": "text", "text": text_for_model}, *image_parts] if image_parts else text_for_model
    )
    history_entries = [HistoryEntry(role=turn.role, content=turn.text) for turn in history]

    logger.info(
        "chat_turn_prepared",
        conversation_id=str(conversation.id),
        continue_mode=continue_mode,
        history_turns=len(history),
        image_count=len(image_parts),
        text_for_model_chars=len(text_for_model),
        attachment_chars=len(attachment_text),
        estimated_prompt_tokens=estimate_conversation_tokens(history_entries, text_for_model),
    )

    return PreparedTurn(
        conversation_id=conversation.id,
        user_message_id=user_message.id,
        assistant_message_id=assistant_message.id if assistant_message else None,
        model=model,
        messages=render_prompt(Turn(role="user", content=user_content), history),
        history=history_entries,
        text_for_model=text_for_model,
    )


def _store_assistant_reply(
    db: Session,
    conversation_id: UUID,
    content: str,
    usage: UsageEstimate,
    cost: float,
) -> Message:
    """Insert the completed assistant message and bump the conversation."""
    with transaction(db):
        message = Message(
            conversation_id=conversation_id,
            seq=assign_next_message_seq(db, conversation_id),
            role=MessageRole.assistant.value,
            content=content,
            status=MessageStatus.completed.value,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost=cost,
            estimated=usage.estimated,
        )
        db.add(message)
        bump_conversation(db, conversation_id)
    db.refresh(message)
    return message


async def complete_chat(
    db: Session,
    prepared: PreparedTurn,
    client: OpenRouterClient,
    price_cache: PriceCache,
    settings: Settings,
) -> ChatResponse:
    """Run a prepared turn without streaming and store the answer.

    Raises:
        ApiError: TIMEOUT (504) when the chat timeout elapses, OPENROUTER_ERROR
            with the upstream status, or OPENROUTER_KEY_MISSING.
    """
    request = LLMRequest(model_name=prepared.model, messages=prepared.messages)
    try:
        response = await client.complete(request, timeout_s=settings.chat_timeout_s)
    except LLMError as e:
        logger.warning(
            "chat_completion_failed",
            conversation_id=str(prepared.conversation_id),
            error_class=e.error_class.value,
            status_code=e.status_code,
        )
        raise e.to_api_error() from e

    usage = usage_from_provider(
        response.usage, prepared.history, prepared.text_for_model, response.text
    )
    cost = await get_model_cost(
        price_cache,
        client.list_models,
        prepared.model,
        usage.prompt_tokens,
        usage.completion_tokens,
    )

    message = await run_in_threadpool(
        _store_assistant_reply, db, prepared.conversation_id, response.text, usage, cost
    )

    logger.info(
        "chat_completed",
        conversation_id=str(prepared.conversation_id),
        assistant_message_id=str(message.id),
        answer_chars=len(response.text),
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        estimated=usage.estimated,
        cost=cost,
    )
    return ChatResponse(conversation_id=prepared.conversation_id, message=message_to_out(message))
