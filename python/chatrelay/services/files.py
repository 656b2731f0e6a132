"""Uploaded file service layer.

Files are owned by exactly one user; every lookup is owner-scoped and a
file owned by someone else is indistinguishable from a missing one.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatrelay.db.models import UploadedFile
from chatrelay.errors import ApiError, ApiErrorCode, NotFoundError
from chatrelay.logging import get_logger
from chatrelay.storage import BlobStoreBase, generate_stored_name, safe_base_name

logger = get_logger(__name__)

DEFAULT_MIME = "application/octet-stream"


def raw_url(file_id: UUID) -> str:
    return f"/api/files/{file_id}/raw"


def download_url(file_id: UUID) -> str:
    return f"/api/files/{file_id}/download"


def file_to_dict(row: UploadedFile) -> dict:
    """Public representation of an uploaded file."""
    return {
        "id": str(row.id),
        "originalName": row.original_name,
        "mime": row.mime,
        "size": row.size,
        "createdAt": row.created_at.isoformat(),
        "kind": "image" if row.is_image else "file",
        "rawUrl": raw_url(row.id),
        "downloadUrl": download_url(row.id),
    }


def store_uploaded_file(
    db: Session,
    blob_store: BlobStoreBase,
    *,
    user_id: UUID,
    original_name: str | None,
    mime: str | None,
    data: bytes,
    max_bytes: int,
) -> UploadedFile:
    """Write a blob and its metadata row.

    The blob is written before the row; if the row cannot be committed the
    blob is removed again.

    Raises:
        ApiError(FILE_TOO_LARGE): If data exceeds max_bytes.
    """
    if len(data) > max_bytes:
        raise ApiError(ApiErrorCode.FILE_TOO_LARGE, "File is too large")

    safe_name = safe_base_name(original_name)
    stored_name = generate_stored_name(safe_name)
    size = blob_store.write(stored_name, data)

    row = UploadedFile(
        user_id=user_id,
        stored_name=stored_name,
        original_name=safe_name,
        mime=(mime or DEFAULT_MIME).strip() or DEFAULT_MIME,
        size=size,
    )
    try:
        db.add(row)
        db.commit()
    except Exception:
        db.rollback()
        blob_store.delete(stored_name)
        raise

    logger.info("file_stored", file_id=str(row.id), size=size, mime=row.mime)
    return row


def get_file_for_user_or_404(db: Session, user_id: UUID, file_id: UUID) -> UploadedFile:
    """Load a file and verify ownership.

    Raises:
        NotFoundError: If the file doesn't exist OR belongs to another user.
    """
    row = db.get(UploadedFile, file_id)
    if row is None or row.user_id != user_id:
        raise NotFoundError(message="File not found")
    return row


def get_user_files(db: Session, user_id: UUID, file_ids: Iterable[UUID]) -> list[UploadedFile]:
    """Load the subset of `file_ids` owned by the user, in the given id order."""
    ids = list(dict.fromkeys(file_ids))
    if not ids:
        return []
    rows = db.scalars(
        select(UploadedFile).where(UploadedFile.user_id == user_id, UploadedFile.id.in_(ids))
    ).all()
    by_id = {row.id: row for row in rows}
    return [by_id[file_id] for file_id in ids if file_id in by_id]
