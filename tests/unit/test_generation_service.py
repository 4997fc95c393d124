"""Tests for fluxgen.services.generation — batch orchestration.

Tests cover:
- Full success: one timestamp, keys in index order, blob metadata, history.
- Partial success: failed attempts are skipped and the record lists only
  the stored keys.
- Total failure: BatchFailure and no history record.
- Per-attempt timeout and blob write failures.
- Concurrent attempts keep index order regardless of completion order.
"""

from __future__ import annotations

import asyncio
import json

import boto3
import pytest
from botocore.stub import ANY, Stubber

from fluxgen.api.models import GenerationRequest
from fluxgen.core.errors import BatchFailure, InferenceError
from fluxgen.services.generation import GenerationService
from fluxgen.storage.blob_store import FilesystemBlobStore, S3BlobStore
from fluxgen.storage.keys import history_key

TIMESTAMP = 1700000000000


def _service(inference, blob_store, index_store, config, timestamp=TIMESTAMP):
    return GenerationService(inference, blob_store, index_store, config, clock=lambda: timestamp)


def _history(index_store, timestamp=TIMESTAMP):
    raw = asyncio.run(index_store.get(history_key(timestamp)))
    return json.loads(raw) if raw is not None else None


class _FailingBlobStore(FilesystemBlobStore):
    """Filesystem store whose put() fails for the listed keys."""

    def __init__(self, root, failing_keys):
        super().__init__(root)
        self.failing_keys = set(failing_keys)

    async def put(self, key, data, **kwargs):
        if key in self.failing_keys:
            raise OSError(f"disk full writing {key}")
        await super().put(key, data, **kwargs)


class TestFullSuccess:
    def test_scenario_two_images(
        self, fake_inference, blob_store, index_store, test_config, png_bytes
    ):
        service = _service(fake_inference, blob_store, index_store, test_config)
        request = GenerationRequest(prompt="a red cube", steps=4, num_images=2)

        result = asyncio.run(service.generate(request))

        assert result.timestamp == TIMESTAMP
        assert result.generated_count == 2
        assert result.is_partial is False
        assert result.r2_keys == [
            f"images/{TIMESTAMP}-1.png",
            f"images/{TIMESTAMP}-2.png",
        ]
        assert [image.index for image in result.images] == [1, 2]
        assert all(image.base64.startswith("data:image/png;base64,") for image in result.images)
        assert fake_inference.calls == [("a red cube", 4), ("a red cube", 4)]

        stored = asyncio.run(blob_store.get(f"images/{TIMESTAMP}-2.png"))
        assert stored.data == png_bytes

    def test_blob_metadata(self, fake_inference, blob_store, index_store, test_config):
        service = _service(fake_inference, blob_store, index_store, test_config)
        asyncio.run(service.generate(GenerationRequest(prompt="p", steps=3, num_images=2)))

        blob = asyncio.run(blob_store.get(f"images/{TIMESTAMP}-2.png"))
        assert blob.content_type == "image/png"
        assert blob.cache_control == "public, max-age=31536000"
        assert blob.metadata == {
            "prompt": "p",
            "steps": "3",
            "timestamp": str(TIMESTAMP),
            "imageIndex": "2",
            "totalImages": "2",
        }

    def test_history_record_written(self, fake_inference, blob_store, index_store, test_config):
        service = _service(fake_inference, blob_store, index_store, test_config)
        asyncio.run(service.generate(GenerationRequest(prompt="p", steps=4, num_images=2)))

        assert _history(index_store) == {
            "prompt": "p",
            "steps": 4,
            "numImages": 2,
            "timestamp": TIMESTAMP,
            "r2Keys": [f"images/{TIMESTAMP}-1.png", f"images/{TIMESTAMP}-2.png"],
            "generatedCount": 2,
        }

    def test_response_shape(self, fake_inference, blob_store, index_store, test_config):
        service = _service(fake_inference, blob_store, index_store, test_config)
        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=1)))
        body = result.to_response().model_dump(by_alias=True)

        assert body["success"] is True
        assert body["generatedCount"] == 1
        assert body["numImages"] == 1
        assert set(body["images"][0]) == {"index", "base64", "r2Key"}


class TestPartialFailure:
    @pytest.mark.parametrize(
        "failing, expected_indices",
        [([1], [2, 3]), ([2], [1, 3]), ([1, 3], [2])],
    )
    def test_k_of_n(
        self, make_inference, blob_store, index_store, test_config, failing, expected_indices
    ):
        inference = make_inference()
        inference.outcomes = [
            InferenceError("model overloaded") if index in failing else inference.default
            for index in range(1, 4)
        ]
        service = _service(inference, blob_store, index_store, test_config)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=3)))

        expected_keys = [f"images/{TIMESTAMP}-{i}.png" for i in expected_indices]
        assert result.generated_count == len(expected_indices)
        assert result.is_partial is True
        assert result.r2_keys == expected_keys
        assert len(inference.calls) == 3

        record = _history(index_store)
        assert record["generatedCount"] == len(expected_indices)
        assert record["numImages"] == 3
        assert record["r2Keys"] == expected_keys

    def test_unsupported_shape_is_skipped(self, make_inference, blob_store, index_store, test_config):
        inference = make_inference(outcomes=[{"image": 12345}, {"result": "nothing"}])
        service = _service(inference, blob_store, index_store, test_config)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=3)))

        assert [image.index for image in result.images] == [3]

    def test_blob_write_failure_is_skipped(self, fake_inference, index_store, test_config, temp_dir):
        blobs = _FailingBlobStore(temp_dir / "blobs", {f"images/{TIMESTAMP}-1.png"})
        service = _service(fake_inference, blobs, index_store, test_config)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=2)))

        assert result.r2_keys == [f"images/{TIMESTAMP}-2.png"]
        assert _history(index_store)["r2Keys"] == [f"images/{TIMESTAMP}-2.png"]

    def test_timeout_is_skipped(self, png_base64, blob_store, index_store, test_config):
        class SlowFirstCall:
            def __init__(self):
                self.calls = 0

            async def run(self, prompt, steps):
                self.calls += 1
                if self.calls == 1:
                    await asyncio.sleep(5)
                return {"image": png_base64}

        cfg = test_config.model_copy(update={"attempt_timeout": 0.05})
        service = _service(SlowFirstCall(), blob_store, index_store, cfg)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=2)))

        assert result.r2_keys == [f"images/{TIMESTAMP}-2.png"]


class TestTotalFailure:
    def test_batch_failure_and_no_history(
        self, make_inference, blob_store, index_store, test_config
    ):
        inference = make_inference(default=RuntimeError("inference unavailable"))
        service = _service(inference, blob_store, index_store, test_config)

        with pytest.raises(BatchFailure) as excinfo:
            asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=3)))

        assert excinfo.value.attempted == 3
        assert len(inference.calls) == 3
        assert _history(index_store) is None
        assert asyncio.run(index_store.list_keys("history:")) == []


class TestParallelAttempts:
    def test_key_order_follows_index_not_completion(
        self, png_base64, blob_store, index_store, test_config
    ):
        completion_order: list[int] = []

        class ReverseCompletion:
            def __init__(self):
                self.started = 0

            async def run(self, prompt, steps):
                self.started += 1
                index = self.started
                # Later attempts finish first.
                await asyncio.sleep(0.01 * (5 - index))
                completion_order.append(index)
                return {"image": png_base64}

        cfg = test_config.model_copy(update={"parallel_attempts": True})
        service = _service(ReverseCompletion(), blob_store, index_store, cfg)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=4)))

        assert completion_order == [4, 3, 2, 1]
        expected = [f"images/{TIMESTAMP}-{i}.png" for i in range(1, 5)]
        assert result.r2_keys == expected
        assert _history(index_store)["r2Keys"] == expected

    def test_parallel_failures_are_independent(
        self, make_inference, blob_store, index_store, test_config
    ):
        inference = make_inference()
        inference.outcomes = [inference.default, InferenceError("x"), inference.default]
        cfg = test_config.model_copy(update={"parallel_attempts": True})
        service = _service(inference, blob_store, index_store, cfg)

        result = asyncio.run(service.generate(GenerationRequest(prompt="p", num_images=3)))

        assert [image.index for image in result.images] == [1, 3]


class TestS3Backend:
    """Batches stored through a real botocore client, stubbed at the wire."""

    def test_non_ascii_prompt_is_stored(self, fake_inference, index_store, test_config):
        client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        store = S3BlobStore("flux-images", client)
        service = _service(fake_inference, store, index_store, test_config)
        prompt = "一只红色的立方体"

        with Stubber(client) as stubber:
            stubber.add_response(
                "put_object",
                {},
                expected_params={
                    "Bucket": "flux-images",
                    "Key": f"images/{TIMESTAMP}-1.png",
                    "Body": ANY,
                    "ContentType": "image/png",
                    "CacheControl": "public, max-age=31536000",
                    "Metadata": ANY,
                },
            )
            result = asyncio.run(service.generate(GenerationRequest(prompt=prompt, num_images=1)))
            stubber.assert_no_pending_responses()

        assert result.r2_keys == [f"images/{TIMESTAMP}-1.png"]
        assert _history(index_store)["prompt"] == prompt
