"""Attachment handling for chat turns (the context assembler helpers).

Users reference uploaded files in two ways:
- `fileIds` on the chat request (the files attached to this turn)
- markdown links inside message text, e.g. `[report.pdf](/api/files/<id>/download)`

Images are inlined as base64 data URLs. Everything else goes through text
extraction and is read in chunks: each (conversation, file) pair has a
FileReadCursor holding the character offset reached so far, so a user can
send "continue" to get the next chunk of a long document.

Per-turn budgets (see TextAttachmentLimits):
- at most `max_files` text files are read
- each file contributes at most `max_chars_per_file` characters
- all files together contribute at most `max_total_chars` characters;
  the per-file cap is applied first, then the remaining total

Extraction problems never fail the turn; the file is replaced by a
placeholder block telling the model (and so the user) what went wrong.

All functions here are blocking (DB, blob store, parsers).
"""

import base64
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from chatrelay.config import Settings
from chatrelay.db.models import FileReadCursor, Message, MessageRole, UploadedFile, utcnow
from chatrelay.errors import ApiError, ApiErrorCode, InvalidRequestError
from chatrelay.logging import get_logger
from chatrelay.services.extract_text import extract_text
from chatrelay.services.files import get_user_files
from chatrelay.services.llm.prompt import ATTACHMENT_BLOCK_HEADER
from chatrelay.services.llm.types import ContentPart
from chatrelay.storage import BlobStoreBase

logger = get_logger(__name__)

# At most this many referenced files are looked at per request
MAX_ATTACHMENTS_PER_REQUEST = 8

# Names listed in an attachment summary
MAX_SUMMARY_NAMES = 8

# User messages scanned for file links when resolving a "continue" target
CONTINUE_LOOKBACK_MESSAGES = 20

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 40

CONTINUE_PHRASES = frozenset(
    {
        "继续",
        "继续阅读",
        "继续看",
        "下一段",
        "下一页",
        "下页",
        "后面",
        "往后",
        "next",
        "continue",
        "go on",
        "keep going",
        "keep reading",
        "next page",
    }
)

_FILE_ID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
FILE_LINK_PATTERN = re.compile(rf"/api/files/({_FILE_ID})/(?:raw|download)")
_IMAGE_LINK_LINE = re.compile(rf"^!\[[^\]]*\]\(/api/files/{_FILE_ID}/(?:raw|download)\)$")
_FILE_LINK_LINE = re.compile(rf"^\[[^\]]+\]\(/api/files/{_FILE_ID}/(?:raw|download)\)$")
_WHITESPACE = re.compile(r"\s+")

TRUNCATION_NOTICE = "[Content truncated. Send \"continue\" to read the next part.]"
FULLY_READ_NOTICE = "[End of file: there is no more content to continue reading.]"
UNREADABLE_NOTICE = (
    "[No readable text could be extracted from this attachment. It may be a scanned "
    "(image-only) PDF, an encrypted or protected document, or an unsupported format.]"
)
PARSE_FAILED_NOTICE = (
    "[Failed to read this attachment. Try a PDF or DOCX with selectable text, "
    "or paste the relevant passages.]"
)


@dataclass(frozen=True)
class TextAttachmentLimits:
    """Budgets for text extracted from attachments in one turn."""

    max_files: int
    max_total_chars: int
    max_chars_per_file: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextAttachmentLimits":
        return cls(
            max_files=settings.max_text_attachments,
            max_total_chars=settings.max_text_attachment_chars,
            max_chars_per_file=settings.max_text_attachment_chars_per_file,
        )


# =============================================================================
# Text helpers
# =============================================================================


def is_continue_request(text: str | None) -> bool:
    """True iff the trimmed text is exactly one of the continue phrases (any case)."""
    cleaned = _WHITESPACE.sub(" ", (text or "").strip()).lower()
    return bool(cleaned) and cleaned in CONTINUE_PHRASES


def extract_file_ids(text: str | None) -> list[UUID]:
    """File ids linked from message text, first occurrence order, no duplicates."""
    ids: list[UUID] = []
    for match in FILE_LINK_PATTERN.finditer(text or ""):
        file_id = UUID(match.group(1))
        if file_id not in ids:
            ids.append(file_id)
    return ids


def strip_file_markdown_lines(text: str | None) -> str:
    """Drop lines that are nothing but an image or file link; trim the rest."""
    kept = [
        line
        for line in (text or "").split("\n")
        if not (_IMAGE_LINK_LINE.match(line.strip()) or _FILE_LINK_LINE.match(line.strip()))
    ]
    return "\n".join(kept).strip()


def build_attachment_summary(files: Iterable[UploadedFile]) -> str:
    """One-line "User attached: a, b" summary of non-empty file names."""
    names = [name for name in (f.original_name.strip() for f in files) if name]
    names = names[:MAX_SUMMARY_NAMES]
    if not names:
        return ""
    return "User attached: " + ", ".join(names)


def build_title(text: str | None) -> str:
    """Conversation title from the first user text.

    Whitespace runs collapse to single spaces; longer than 40 characters is
    cut to 40 plus an ellipsis; empty text gives the default title.
    """
    cleaned = _WHITESPACE.sub(" ", (text or "").strip())
    if not cleaned:
        return DEFAULT_TITLE
    if len(cleaned) > TITLE_MAX_CHARS:
        return cleaned[:TITLE_MAX_CHARS] + "…"
    return cleaned


def _format_block(name: str, body: str) -> str:
    return f"{ATTACHMENT_BLOCK_HEADER.format(name=name)}\n{body}"


# =============================================================================
# Loaders
# =============================================================================


def _limited(file_ids: Sequence[UUID] | None) -> list[UUID]:
    return list(dict.fromkeys(file_ids or []))[:MAX_ATTACHMENTS_PER_REQUEST]


def load_attachment_summary(db: Session, user_id: UUID, file_ids: Sequence[UUID] | None) -> str:
    """Summary line for the user's non-image files among `file_ids`."""
    files = get_user_files(db, user_id, _limited(file_ids))
    return build_attachment_summary(f for f in files if not f.is_image)


def load_image_parts(
    db: Session,
    blob_store: BlobStoreBase,
    *,
    user_id: UUID,
    file_ids: Sequence[UUID] | None,
    max_bytes: int,
) -> list[ContentPart]:
    """Inline the user's image attachments as data-URL content parts.

    Raises:
        ApiError(IMAGE_TOO_LARGE): If the images together exceed max_bytes.
    """
    images = [f for f in get_user_files(db, user_id, _limited(file_ids)) if f.is_image]
    if not images:
        return []

    total_bytes = sum(f.size for f in images)
    if total_bytes > max_bytes:
        raise ApiError(
            ApiErrorCode.IMAGE_TOO_LARGE,
            "Images are too large in total; attach fewer or compress them",
            details={"total_bytes": total_bytes, "max_bytes": max_bytes},
        )

    parts: list[ContentPart] = []
    for image in images:
        encoded = base64.b64encode(blob_store.read(image.stored_name)).decode("ascii")
        parts.append(
            {"type": "image_url", "image_url": {"url": f"data:{image.mime};base64,{encoded}"}}
        )
    return parts


def upsert_file_cursor(
    db: Session,
    *,
    conversation_id: UUID,
    file_id: UUID,
    user_id: UUID,
    offset: int,
) -> None:
    """Insert or overwrite the read cursor for (conversation, file).

    Last write wins: on conflict the offset, owner and updated_at are replaced.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise RuntimeError(f"Cursor upsert is not supported on {dialect}")

    now = utcnow()
    stmt = insert(FileReadCursor).values(
        conversation_id=conversation_id,
        file_id=file_id,
        user_id=user_id,
        offset=offset,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[FileReadCursor.conversation_id, FileReadCursor.file_id],
        set_={
            "offset": stmt.excluded["offset"],
            "user_id": stmt.excluded["user_id"],
            "updated_at": stmt.excluded["updated_at"],
        },
    )
    db.execute(stmt)


def _save_cursor(
    db: Session, *, conversation_id: UUID, file_id: UUID, user_id: UUID, offset: int
) -> None:
    """Best-effort cursor upsert inside a savepoint; failures are logged only."""
    try:
        with db.begin_nested():
            upsert_file_cursor(
                db,
                conversation_id=conversation_id,
                file_id=file_id,
                user_id=user_id,
                offset=offset,
            )
    except Exception as e:
        logger.warning(
            "file_cursor_upsert_failed",
            conversation_id=str(conversation_id),
            file_id=str(file_id),
            error_type=type(e).__name__,
        )


def get_cursor_offset(db: Session, *, conversation_id: UUID, file_id: UUID, user_id: UUID) -> int:
    """Stored offset for (conversation, file, user), 0 when there is none."""
    offset = db.scalar(
        select(FileReadCursor.offset).where(
            FileReadCursor.conversation_id == conversation_id,
            FileReadCursor.file_id == file_id,
            FileReadCursor.user_id == user_id,
        )
    )
    return offset or 0


def resolve_continue_file_ids(
    db: Session,
    *,
    user_id: UUID,
    conversation_id: UUID,
    explicit_file_ids: Sequence[UUID] | None,
) -> list[UUID]:
    """Pick the files a "continue" request should keep reading.

    Priority: explicit ids, then the most recently updated cursor of the
    conversation, then the links in the latest of the last 20 user messages
    that has any. Empty list when nothing resolves.
    """
    if explicit_file_ids:
        return list(dict.fromkeys(explicit_file_ids))

    latest_file_id = db.scalar(
        select(FileReadCursor.file_id)
        .where(
            FileReadCursor.conversation_id == conversation_id,
            FileReadCursor.user_id == user_id,
        )
        .order_by(FileReadCursor.updated_at.desc())
        .limit(1)
    )
    if latest_file_id is not None:
        return [latest_file_id]

    recent_contents = db.scalars(
        select(Message.content)
        .where(
            Message.conversation_id == conversation_id,
            Message.role == MessageRole.user.value,
        )
        .order_by(Message.seq.desc())
        .limit(CONTINUE_LOOKBACK_MESSAGES)
    ).all()
    for content in recent_contents:
        found = extract_file_ids(content)
        if found:
            return found
    return []


def load_text_attachment_block(
    db: Session,
    blob_store: BlobStoreBase,
    *,
    user_id: UUID,
    conversation_id: UUID,
    file_ids: Sequence[UUID] | None,
    continue_mode: bool,
    limits: TextAttachmentLimits,
) -> str:
    """Extract the next chunk of each text attachment as prompt blocks.

    In continue mode every file starts at its stored cursor; otherwise at 0.
    The cursor is always written afterwards: to the end of the chunk read,
    to the text length when nothing was left, or unchanged when the file
    could not be read.

    Returns:
        Blocks joined by blank lines, "" when there is nothing to read.

    Raises:
        InvalidRequestError(NO_CONTINUE_FILE): continue mode with no resolvable file.
    """
    if continue_mode:
        target_ids = resolve_continue_file_ids(
            db,
            user_id=user_id,
            conversation_id=conversation_id,
            explicit_file_ids=file_ids,
        )
        if not target_ids:
            raise InvalidRequestError(
                ApiErrorCode.NO_CONTINUE_FILE,
                "Nothing to continue: send a message with a PDF, DOCX or text file first, "
                "or attach the file again.",
            )
    else:
        target_ids = list(file_ids or [])

    if not target_ids:
        return ""

    candidates = [f for f in get_user_files(db, user_id, _limited(target_ids)) if not f.is_image]
    candidates = candidates[: limits.max_files]

    remaining = limits.max_total_chars
    blocks: list[str] = []
    for file in candidates:
        if remaining <= 0:
            break

        start = (
            get_cursor_offset(db, conversation_id=conversation_id, file_id=file.id, user_id=user_id)
            if continue_mode
            else 0
        )
        cursor_key = {"conversation_id": conversation_id, "file_id": file.id, "user_id": user_id}

        try:
            text = extract_text(blob_store.read(file.stored_name), file.mime, file.original_name)
        except Exception as e:
            logger.warning(
                "attachment_extract_failed",
                file_id=str(file.id),
                mime=file.mime,
                error_type=type(e).__name__,
            )
            blocks.append(_format_block(file.original_name, PARSE_FAILED_NOTICE))
            _save_cursor(db, offset=start, **cursor_key)
            continue

        if not text:
            blocks.append(_format_block(file.original_name, UNREADABLE_NOTICE))
            _save_cursor(db, offset=start, **cursor_key)
            continue

        chunk_len = min(limits.max_chars_per_file, remaining)
        end = min(len(text), start + chunk_len)
        chunk = text[start:end]

        if not chunk:
            blocks.append(_format_block(file.original_name, FULLY_READ_NOTICE))
            _save_cursor(db, offset=len(text), **cursor_key)
            continue

        _save_cursor(db, offset=end, **cursor_key)
        chunk_out = f"{chunk}\n\n{TRUNCATION_NOTICE}" if end < len(text) else chunk
        remaining -= len(chunk_out)
        blocks.append(_format_block(file.original_name, chunk_out))

        logger.debug(
            "attachment_chunk_read",
            file_id=str(file.id),
            start=start,
            end=end,
            text_chars=len(text),
        )

    return "\n\n".join(blocks)


def summarize_history_user_turn(content: str, files_by_id: dict[UUID, UploadedFile]) -> str:
    """Model-facing text of a stored user message.

    Link-only lines are stripped; a message that was nothing but links is
    replaced by the summary of the files it linked.
    """
    stripped = strip_file_markdown_lines(content)
    if stripped:
        return stripped
    linked = [files_by_id[i] for i in extract_file_ids(content) if i in files_by_id]
    return build_attachment_summary(linked)
