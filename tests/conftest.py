"""Shared pytest fixtures for fluxgen tests."""

from __future__ import annotations

import base64
import io
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from fluxgen.core.config import FluxgenConfig
from fluxgen.core.inference import InferenceClient
from fluxgen.storage.blob_store import FilesystemBlobStore
from fluxgen.storage.index_store import SqliteIndexStore


class FakeInference(InferenceClient):
    """Scripted inference client.

    Each call pops the next entry from ``outcomes``; once exhausted it
    returns ``default``.  Exception instances are raised instead of returned.
    """

    def __init__(self, default=None, outcomes=None):
        self.default = default
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, int]] = []
        self.closed = False

    async def run(self, prompt, steps):
        self.calls.append((prompt, steps))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self):
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> FluxgenConfig:
    """Configuration pointing every store at the temporary directory."""
    return FluxgenConfig(
        _env_file=None,
        inference_backend="workers-ai",
        cloudflare_account_id="test-account",
        cloudflare_api_token="test-token",
        blob_backend="filesystem",
        blob_dir=temp_dir / "blobs",
        index_db=temp_dir / "index.sqlite3",
        attempt_timeout=5.0,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A real 8x8 PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_base64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def fake_inference(png_base64: str) -> FakeInference:
    """Inference client that succeeds with a Workers AI-shaped result."""
    return FakeInference(default={"image": png_base64})


@pytest.fixture
def blob_store(temp_dir: Path) -> FilesystemBlobStore:
    return FilesystemBlobStore(temp_dir / "blobs")


@pytest.fixture
def index_store(temp_dir: Path) -> SqliteIndexStore:
    return SqliteIndexStore(temp_dir / "index.sqlite3")


@pytest.fixture
def test_client(
    test_config: FluxgenConfig,
    fake_inference: FakeInference,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to temporary stores and the fake inference client."""
    import fluxgen.api.main as main_module

    monkeypatch.setattr(main_module, "config", test_config)
    monkeypatch.setattr(main_module, "build_inference_client", lambda cfg: fake_inference)

    with TestClient(main_module.app) as client:
        yield client


@pytest.fixture
def make_inference(png_base64: str):
    """Factory for scripted inference clients.

    Usage::

        client = make_inference(outcomes=[RuntimeError("boom"), None])
    """

    def _make(outcomes=None, default=None) -> FakeInference:
        return FakeInference(
            default=default if default is not None else {"image": png_base64},
            outcomes=outcomes,
        )

    return _make
