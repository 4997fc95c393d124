"""Retrieval of stored images by blob key."""

from __future__ import annotations

from fluxgen.core.errors import BlobNotFound
from fluxgen.storage.blob_store import BlobStore, StoredBlob


async def fetch_image(blobs: BlobStore, key: str) -> StoredBlob:
    """Return the blob stored under *key*.

    Raises:
        BlobNotFound: Nothing is stored under *key*.
    """
    blob = await blobs.get(key) if key else None
    if blob is None:
        raise BlobNotFound(key)
    return blob
