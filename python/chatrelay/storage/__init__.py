"""Storage module for uploaded file blobs.

Provides:
- LocalBlobStore for the on-disk upload directory
- FakeBlobStore for tests
- Stored-name helpers
"""

from chatrelay.storage.client import (
    BlobStoreBase,
    FakeBlobStore,
    LocalBlobStore,
    StorageError,
)
from chatrelay.storage.paths import generate_stored_name, safe_base_name

__all__ = [
    "BlobStoreBase",
    "LocalBlobStore",
    "FakeBlobStore",
    "StorageError",
    "generate_stored_name",
    "safe_base_name",
]
