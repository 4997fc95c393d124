"""Clients for the text-to-image inference capability.

Every client exposes one coroutine, :meth:`InferenceClient.run`, taking
``(prompt, steps)`` and returning the *raw* model output.  Shape handling is
left to :mod:`fluxgen.core.payload` so that clients stay thin.

Backends
--------
workers-ai
    Cloudflare Workers AI REST endpoint
    (``POST /accounts/{account}/ai/run/{model}``) via ``httpx``.
local
    In-process diffusers pipeline managed by
    :class:`~fluxgen.core.model_manager.ModelManager`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from fluxgen.core.config import FluxgenConfig
from fluxgen.core.errors import InferenceError
from fluxgen.core.model_manager import ModelManager

logger = logging.getLogger(__name__)


class InferenceClient(ABC):
    """Abstract text-to-image model invocation."""

    @abstractmethod
    async def run(self, prompt: str, steps: int) -> Any:
        """Invoke the model once and return its raw output."""

    async def aclose(self) -> None:
        """Release any held resources.  Default is a no-op."""


class WorkersAIClient(InferenceClient):
    """Calls a Workers AI model over the Cloudflare REST API.

    The REST API wraps model output in an envelope::

        {"success": true, "result": {"image": "<base64>"}, "errors": []}

    :meth:`run` returns ``result`` (normally a mapping with an ``image``
    entry).  Non-2xx responses and ``success: false`` raise
    :class:`~fluxgen.core.errors.InferenceError`.
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        model_name: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model_name = model_name
        self._url = f"{base_url.rstrip('/')}/accounts/{account_id}/ai/run/{model_name}"
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: FluxgenConfig) -> WorkersAIClient:
        if not config.cloudflare_account_id or not config.cloudflare_api_token:
            raise ValueError(
                "FLUXGEN_CLOUDFLARE_ACCOUNT_ID and FLUXGEN_CLOUDFLARE_API_TOKEN "
                "are required for the workers-ai backend"
            )
        return cls(
            account_id=config.cloudflare_account_id,
            api_token=config.cloudflare_api_token,
            model_name=config.model_name,
            base_url=config.workers_ai_base_url,
            timeout=config.attempt_timeout,
        )

    async def run(self, prompt: str, steps: int) -> Any:
        try:
            response = await self._client.post(self._url, json={"prompt": prompt, "steps": steps})
        except httpx.HTTPError as exc:
            raise InferenceError(f"Workers AI request failed: {exc}") from exc

        if response.status_code != 200:
            raise InferenceError(
                f"Workers AI returned HTTP {response.status_code}: {response.text[:200]}"
            )

        # Binary responses (some models stream PNG bytes directly).
        if response.headers.get("content-type", "").startswith("image/"):
            return response.content

        try:
            body = response.json()
        except ValueError as exc:
            raise InferenceError("Workers AI returned a non-JSON body") from exc

        if isinstance(body, dict) and body.get("success") is False:
            errors = body.get("errors") or []
            raise InferenceError(f"Workers AI reported failure: {errors}")

        if isinstance(body, dict) and "result" in body:
            return body["result"]
        return body

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalPipelineClient(InferenceClient):
    """Runs the diffusers pipeline in a worker thread.

    The pipeline call is blocking and GPU-bound; ``asyncio.to_thread`` keeps
    the event loop responsive.  A lock serialises access because one
    pipeline cannot run two generations at once.
    """

    def __init__(self, manager: ModelManager) -> None:
        self._manager = manager
        self._lock = asyncio.Lock()

    async def run(self, prompt: str, steps: int) -> Any:
        async with self._lock:
            return await asyncio.to_thread(self._manager.generate, prompt, steps)

    async def aclose(self) -> None:
        self._manager.unload()


def build_inference_client(config: FluxgenConfig) -> InferenceClient:
    """Create the inference client selected by ``config.inference_backend``."""
    if config.inference_backend == "local":
        logger.info("Using local diffusers backend (%s).", config.local_model_id)
        return LocalPipelineClient(ModelManager(config))

    logger.info("Using Workers AI backend (%s).", config.model_name)
    return WorkersAIClient.from_config(config)
