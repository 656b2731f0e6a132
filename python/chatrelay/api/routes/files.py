"""Uploaded file download routes.

- GET /files/{id}/raw: inline, served with the stored MIME type
- GET /files/{id}/download: as an attachment with the original file name

Both are owner-only (another user's file is a 404) and never cached.
"""

from typing import Annotated
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from chatrelay.api.deps import get_blob_store, get_db
from chatrelay.auth.middleware import Viewer, get_current_user
from chatrelay.db.models import UploadedFile
from chatrelay.errors import NotFoundError
from chatrelay.logging import get_logger
from chatrelay.services.files import get_file_for_user_or_404
from chatrelay.storage import BlobStoreBase, StorageError

logger = get_logger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

NO_STORE = "private, max-age=0, no-store"


def content_disposition(disposition: str, filename: str) -> str:
    """Content-Disposition with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in filename)
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _file_response(blob_store: BlobStoreBase, row: UploadedFile, disposition: str) -> Response:
    try:
        data = blob_store.read(row.stored_name)
    except StorageError as e:
        logger.warning("file_blob_missing", file_id=str(row.id), error=e.message)
        raise NotFoundError(message="File not found") from e

    return Response(
        content=data,
        media_type=row.mime,
        headers={
            "Cache-Control": NO_STORE,
            "Content-Disposition": content_disposition(disposition, row.original_name),
        },
    )


@router.get("/{file_id}/raw")
def get_file_raw(
    file_id: UUID,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    blob_store: Annotated[BlobStoreBase, Depends(get_blob_store)],
) -> Response:
    """Serve a file inline."""
    row = get_file_for_user_or_404(db, viewer.user_id, file_id)
    return _file_response(blob_store, row, "inline")


@router.get("/{file_id}/download")
def download_file(
    file_id: UUID,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    blob_store: Annotated[BlobStoreBase, Depends(get_blob_store)],
) -> Response:
    """Serve a file as a download."""
    row = get_file_for_user_or_404(db, viewer.user_id, file_id)
    return _file_response(blob_store, row, "attachment")
