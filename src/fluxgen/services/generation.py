"""Batch generation: N inference attempts, blob writes, one history record.

:class:`GenerationService` is the heart of ``POST /api/generate``.  For a
validated :class:`~fluxgen.api.models.GenerationRequest` it:

1. captures **one** timestamp for the whole batch;
2. runs ``num_images`` independent attempts — each calls the inference
   capability, normalises the output to PNG bytes plus a data URI, and writes
   the bytes to ``images/{timestamp}-{index}.png``;
3. skips (and logs) any attempt that fails, for whatever reason;
4. raises :class:`~fluxgen.core.errors.BatchFailure` if nothing succeeded,
   otherwise writes a single ``history:{timestamp}`` record listing the
   stored keys in index order.

Attempts run sequentially by default.  With ``parallel_attempts`` enabled
they are gathered concurrently; indices are assigned before any attempt
starts, so the recorded key order is index order either way.

The blob writes and the history write are not atomic with respect to each
other.  A crash between them leaves orphaned blobs, which is acceptable
because history is a convenience index, not the source of truth.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from fluxgen.api.models import GeneratedImage, GenerateResponse, GenerationRequest, HistoryRecord
from fluxgen.core.config import FluxgenConfig
from fluxgen.core.errors import AttemptFailure, BatchFailure
from fluxgen.core.inference import InferenceClient
from fluxgen.core.payload import PNG_MIME, classify_image_output, normalize
from fluxgen.storage.blob_store import BlobStore
from fluxgen.storage.index_store import IndexStore
from fluxgen.storage.keys import current_timestamp, history_key, image_key

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Outcome of one batch with at least one stored image."""

    request: GenerationRequest
    timestamp: int
    images: list[GeneratedImage] = field(default_factory=list)

    @property
    def generated_count(self) -> int:
        return len(self.images)

    @property
    def r2_keys(self) -> list[str]:
        return [image.r2_key for image in self.images]

    @property
    def is_partial(self) -> bool:
        return self.generated_count < self.request.num_images

    def to_history_record(self) -> HistoryRecord:
        return HistoryRecord(
            prompt=self.request.prompt,
            steps=self.request.steps,
            num_images=self.request.num_images,
            timestamp=self.timestamp,
            r2_keys=self.r2_keys,
            generated_count=self.generated_count,
        )

    def to_response(self) -> GenerateResponse:
        return GenerateResponse(
            images=self.images,
            timestamp=self.timestamp,
            prompt=self.request.prompt,
            steps=self.request.steps,
            num_images=self.request.num_images,
            generated_count=self.generated_count,
            r2_keys=self.r2_keys,
        )


class GenerationService:
    """Runs generation batches against the configured collaborators.

    Holds no per-request state; one instance serves every request.
    """

    def __init__(
        self,
        inference: InferenceClient,
        blobs: BlobStore,
        index: IndexStore,
        config: FluxgenConfig,
        clock: Callable[[], int] = current_timestamp,
    ) -> None:
        self._inference = inference
        self._blobs = blobs
        self._index = index
        self._config = config
        self._clock = clock

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run one batch for *request*.

        Returns:
            The stored images (index order) and the batch timestamp.

        Raises:
            BatchFailure: No attempt produced a stored image.  No history
                record is written.
        """
        timestamp = self._clock()
        indices = range(1, request.num_images + 1)

        logger.info(
            "Batch %d: generating %d image(s), %d steps.",
            timestamp,
            request.num_images,
            request.steps,
        )

        if self._config.parallel_attempts:
            outcomes = await asyncio.gather(
                *(self._attempt(request, timestamp, index) for index in indices)
            )
        else:
            outcomes = []
            for index in indices:
                outcomes.append(await self._attempt(request, timestamp, index))

        result = GenerationResult(
            request=request,
            timestamp=timestamp,
            images=[image for image in outcomes if image is not None],
        )

        if not result.images:
            logger.error("Batch %d: all %d attempt(s) failed.", timestamp, request.num_images)
            raise BatchFailure(request.num_images)

        await self._index.put(
            history_key(timestamp),
            result.to_history_record().model_dump_json(by_alias=True),
            ttl_seconds=self._config.history_ttl_seconds,
        )

        if result.is_partial:
            logger.warning(
                "Batch %d: partial success, %d of %d image(s) stored.",
                timestamp,
                result.generated_count,
                request.num_images,
            )
        else:
            logger.info("Batch %d: %d image(s) stored.", timestamp, result.generated_count)
        return result

    async def _attempt(
        self, request: GenerationRequest, timestamp: int, index: int
    ) -> GeneratedImage | None:
        """Run attempt *index*; return ``None`` if any step of it fails."""
        try:
            return await self._generate_one(request, timestamp, index)
        except asyncio.TimeoutError:
            logger.warning(
                "Batch %d: image %d timed out after %.1fs.",
                timestamp,
                index,
                self._config.attempt_timeout,
            )
        except AttemptFailure as exc:
            logger.warning("Batch %d: image %d failed: %s", timestamp, index, exc)
        except Exception:
            logger.exception("Batch %d: image %d failed unexpectedly.", timestamp, index)
        return None

    async def _generate_one(
        self, request: GenerationRequest, timestamp: int, index: int
    ) -> GeneratedImage:
        raw = await asyncio.wait_for(
            self._inference.run(request.prompt, request.steps),
            timeout=self._config.attempt_timeout,
        )
        payload = await normalize(classify_image_output(raw))

        key = image_key(timestamp, index)
        await self._blobs.put(
            key,
            payload.binary,
            content_type=PNG_MIME,
            cache_control=self._config.cache_control,
            metadata={
                "prompt": request.prompt,
                "steps": str(request.steps),
                "timestamp": str(timestamp),
                "imageIndex": str(index),
                "totalImages": str(request.num_images),
            },
        )

        return GeneratedImage(
            index=index,
            base64=payload.display_encoding,
            r2_key=key,
            binary_payload=payload.binary,
        )
