"""Blob store abstraction for uploaded files.

Blobs are keyed by an opaque stored name ("<uuid>-<safe original name>")
and are written once, read many times. The production implementation is a
local directory; FakeBlobStore keeps bytes in memory for tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from chatrelay.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Blob store operation failed."""

    def __init__(self, message: str, stored_name: str | None = None):
        self.message = message
        self.stored_name = stored_name
        super().__init__(message)


def _check_stored_name(stored_name: str) -> None:
    """Reject names that could escape the store's root."""
    if (
        not stored_name
        or stored_name in (".", "..")
        or "/" in stored_name
        or "\\" in stored_name
        or "\0" in stored_name
    ):
        raise StorageError("Invalid stored name", stored_name=stored_name)


class BlobStoreBase(ABC):
    """Abstract base class for blob store implementations."""

    @abstractmethod
    def write(self, stored_name: str, data: bytes) -> int:
        """Write a blob and return its size in bytes.

        Raises:
            StorageError: If the name is invalid or the write fails.
        """
        ...

    @abstractmethod
    def read(self, stored_name: str) -> bytes:
        """Read a whole blob.

        Raises:
            StorageError: If the blob does not exist or cannot be read.
        """
        ...

    @abstractmethod
    def delete(self, stored_name: str) -> None:
        """Delete a blob. Missing blobs are ignored."""
        ...


class LocalBlobStore(BlobStoreBase):
    """Blob store backed by a local upload directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, stored_name: str) -> Path:
        """Path of a stored blob under the upload directory."""
        _check_stored_name(stored_name)
        return self.root / stored_name

    def write(self, stored_name: str, data: bytes) -> int:
        path = self.path_for(stored_name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write blob: {e.strerror}", stored_name) from e
        return len(data)

    def read(self, stored_name: str) -> bytes:
        path = self.path_for(stored_name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StorageError("Blob not found", stored_name) from e
        except OSError as e:
            raise StorageError(f"Failed to read blob: {e.strerror}", stored_name) from e

    def delete(self, stored_name: str) -> None:
        path = self.path_for(stored_name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("blob_delete_failed", stored_name=stored_name, error=str(e))


class FakeBlobStore(BlobStoreBase):
    """In-memory blob store for tests."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    def write(self, stored_name: str, data: bytes) -> int:
        _check_stored_name(stored_name)
        self._blobs[stored_name] = bytes(data)
        return len(data)

    def read(self, stored_name: str) -> bytes:
        _check_stored_name(stored_name)
        if stored_name not in self._blobs:
            raise StorageError("Blob not found", stored_name)
        return self._blobs[stored_name]

    def delete(self, stored_name: str) -> None:
        self._blobs.pop(stored_name, None)

    def exists(self, stored_name: str) -> bool:
        return stored_name in self._blobs
