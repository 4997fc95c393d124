"""Persistence backends: content-addressed blob storage and the history index."""

from fluxgen.storage.blob_store import (
    BlobStore,
    FilesystemBlobStore,
    S3BlobStore,
    StoredBlob,
    build_blob_store,
)
from fluxgen.storage.index_store import IndexStore, SqliteIndexStore
from fluxgen.storage.keys import HISTORY_PREFIX, history_key, image_key

__all__ = [
    "BlobStore",
    "FilesystemBlobStore",
    "S3BlobStore",
    "StoredBlob",
    "build_blob_store",
    "IndexStore",
    "SqliteIndexStore",
    "HISTORY_PREFIX",
    "history_key",
    "image_key",
]
