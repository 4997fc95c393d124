"""Key-addressed blob storage for generated images.

A blob is an opaque byte payload plus two kinds of metadata:

- HTTP metadata (``content_type``, ``cache_control``) replayed when the blob
  is served
- custom metadata (a flat ``str -> str`` mapping) kept for auditability

Backends
--------
FilesystemBlobStore
    Writes ``{root}/{key}`` and a ``{root}/{key}.meta.json`` sidecar.  Used for
    local development and tests.
S3BlobStore
    Any S3-compatible bucket through boto3 — AWS S3 or Cloudflare R2 via
    ``endpoint_url``.

All methods are coroutines; blocking file and boto3 calls run in a worker
thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import ClientError

from fluxgen.core.config import FluxgenConfig

logger = logging.getLogger(__name__)

_SIDECAR_SUFFIX = ".meta.json"


@dataclass(frozen=True)
class StoredBlob:
    """A blob read back from the store."""

    key: str
    data: bytes
    content_type: str = "application/octet-stream"
    cache_control: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class BlobStore(ABC):
    """Abstract key-addressed binary store."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Store *data* under *key*, overwriting any blob already stored there."""

    @abstractmethod
    async def get(self, key: str) -> StoredBlob | None:
        """Return the blob stored under *key*, or ``None`` if absent."""


class FilesystemBlobStore(BlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path | None:
        """Resolve *key* under the root, or ``None`` if it escapes the root."""
        if not key or key.endswith(_SIDECAR_SUFFIX):
            return None
        candidate = (self.root / key).resolve()
        if candidate == self.root or self.root not in candidate.parents:
            return None
        return candidate

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        path = self._path_for(key)
        if path is None:
            raise ValueError(f"Invalid blob key: {key!r}")

        sidecar = {
            "content_type": content_type,
            "cache_control": cache_control,
            "metadata": dict(metadata or {}),
        }
        await asyncio.to_thread(self._write, path, data, sidecar)
        logger.debug("Stored blob %s (%d bytes).", key, len(data))

    @staticmethod
    def _write(path: Path, data: bytes, sidecar: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        sidecar_path = path.with_name(path.name + _SIDECAR_SUFFIX)
        with open(sidecar_path, "w", encoding="utf-8") as handle:
            json.dump(sidecar, handle, indent=2, ensure_ascii=False)

    async def get(self, key: str) -> StoredBlob | None:
        path = self._path_for(key)
        if path is None:
            return None
        return await asyncio.to_thread(self._read, key, path)

    @staticmethod
    def _read(key: str, path: Path) -> StoredBlob | None:
        if not path.is_file():
            return None

        sidecar: dict = {}
        sidecar_path = path.with_name(path.name + _SIDECAR_SUFFIX)
        if sidecar_path.exists():
            try:
                with open(sidecar_path, encoding="utf-8") as handle:
                    sidecar = json.load(handle)
            except (OSError, ValueError):
                logger.warning("Ignoring unreadable metadata sidecar for %s.", key)

        return StoredBlob(
            key=key,
            data=path.read_bytes(),
            content_type=sidecar.get("content_type") or "application/octet-stream",
            cache_control=sidecar.get("cache_control"),
            metadata=sidecar.get("metadata") or {},
        )


class S3BlobStore(BlobStore):
    """Blob store backed by an S3-compatible bucket (AWS S3, Cloudflare R2).

    Custom metadata travels as ``x-amz-meta-*`` headers, which botocore
    restricts to ASCII.  Values are percent-encoded on write and decoded on
    read so prompts in any script (and with newlines) round-trip.
    """

    def __init__(self, bucket: str, client) -> None:
        self.bucket = bucket
        self._client = client

    @classmethod
    def from_config(cls, config: FluxgenConfig) -> S3BlobStore:
        if not config.s3_bucket:
            raise ValueError("FLUXGEN_S3_BUCKET is required for the s3 blob backend")
        client = boto3.client(
            "s3",
            endpoint_url=config.s3_endpoint_url,
            region_name=config.s3_region,
            aws_access_key_id=config.s3_access_key_id,
            aws_secret_access_key=config.s3_secret_access_key,
        )
        logger.info("S3 blob store initialised (bucket=%s).", config.s3_bucket)
        return cls(config.s3_bucket, client)

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        encoded = {name: quote(value, safe="") for name, value in (metadata or {}).items()}
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "Metadata": encoded,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        await asyncio.to_thread(self._client.put_object, **params)
        logger.debug("Uploaded blob s3://%s/%s (%d bytes).", self.bucket, key, len(data))

    async def get(self, key: str) -> StoredBlob | None:
        return await asyncio.to_thread(self._get_sync, key)

    def _get_sync(self, key: str) -> StoredBlob | None:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                return None
            raise

        body = response["Body"]
        try:
            data = body.read()
        finally:
            body.close()

        metadata = response.get("Metadata") or {}
        return StoredBlob(
            key=key,
            data=data,
            content_type=response.get("ContentType") or "application/octet-stream",
            cache_control=response.get("CacheControl"),
            metadata={name: unquote(value) for name, value in metadata.items()},
        )


def build_blob_store(config: FluxgenConfig) -> BlobStore:
    """Create the blob store selected by ``config.blob_backend``."""
    if config.blob_backend == "s3":
        return S3BlobStore.from_config(config)
    logger.info("Filesystem blob store at %s.", config.blob_dir)
    return FilesystemBlobStore(config.blob_dir)
