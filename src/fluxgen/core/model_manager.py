"""Local diffusers pipeline lifecycle for the ``local`` inference backend.

This module provides :class:`ModelManager`, used by
:class:`~fluxgen.core.inference.LocalPipelineClient` when fluxgen runs the
FLUX.1 [schnell] weights in-process instead of calling Workers AI.

Key Responsibilities
--------------------
- **Lazy model loading** — the pipeline is only loaded when ``generate()`` is
  first called (or ``load_model()`` is called explicitly).
- **Distilled-model enforcement** — models whose HuggingFace ID contains
  ``"schnell"`` or ``"turbo"`` have their ``guidance_scale`` forced to 0.0.
- **CUDA memory management** — on unload, the pipeline reference is deleted,
  garbage-collected, and ``torch.cuda.empty_cache()`` is called.

``torch`` and ``diffusers`` are imported inside the methods that need them,
so the hosted backend works without either installed.

Usage
-----
::

    from fluxgen.core.config import config
    from fluxgen.core.model_manager import ModelManager

    mgr = ModelManager(config)
    image = mgr.generate(prompt="a red cube", steps=4)
    mgr.unload()
"""

from __future__ import annotations

import gc
import logging

from PIL import Image

from fluxgen.core.config import FluxgenConfig

logger = logging.getLogger(__name__)

_DISTILLED_MARKERS = ("schnell", "turbo")


def _resolve_dtype(name: str):
    """Map a config dtype string onto the ``torch.dtype`` it names."""
    import torch

    return {
        "bfloat16": torch.bfloat16,
        "float16": torch.float16,
        "float32": torch.float32,
    }.get(name, torch.bfloat16)


class ModelManager:
    """Manages the lifecycle of a single diffusers text-to-image pipeline.

    Attributes:
        _config (FluxgenConfig):
            Application configuration — device, dtype, model ID and cache dir.
        _pipeline:
            The loaded diffusers pipeline, or ``None`` when no model is loaded.
        _current_model_id (str | None):
            HuggingFace identifier of the loaded model, or ``None``.
    """

    def __init__(self, config: FluxgenConfig) -> None:
        self._config = config
        self._pipeline = None
        self._current_model_id: str | None = None

    def load_model(self, hf_id: str | None = None) -> None:
        """Load a diffusers pipeline by HuggingFace model identifier.

        If the requested model is already loaded this method is a no-op.
        If a *different* model is loaded it is unloaded first.

        Args:
            hf_id: HuggingFace model identifier.  Defaults to
                ``config.local_model_id``.

        Raises:
            RuntimeError: If the model cannot be loaded.
        """
        hf_id = hf_id or self._config.local_model_id

        if self._current_model_id == hf_id and self._pipeline is not None:
            logger.info("Model '%s' is already loaded — skipping.", hf_id)
            return

        if self._pipeline is not None:
            logger.info(
                "Switching from '%s' to '%s' — unloading current model.",
                self._current_model_id,
                hf_id,
            )
            self.unload()

        from diffusers import AutoPipelineForText2Image

        logger.info(
            "Loading model '%s' (dtype=%s, device=%s, cache=%s).",
            hf_id,
            self._config.torch_dtype,
            self._config.device,
            self._config.models_dir,
        )

        try:
            pipeline = AutoPipelineForText2Image.from_pretrained(
                hf_id,
                torch_dtype=_resolve_dtype(self._config.torch_dtype),
                cache_dir=str(self._config.models_dir),
            )
            self._pipeline = pipeline.to(self._config.device)
            self._current_model_id = hf_id
            logger.info("Model '%s' loaded successfully.", hf_id)
        except Exception:
            # Leave the manager in a clean state so a later generate() call
            # retries the load instead of using a half-built pipeline.
            self._pipeline = None
            self._current_model_id = None
            logger.exception("Failed to load model '%s'.", hf_id)
            raise

    def generate(self, prompt: str, steps: int) -> Image.Image:
        """Generate a single image, loading the configured model on first use.

        Args:
            prompt: Text prompt describing the desired image.
            steps: Number of diffusion inference steps.

        Returns:
            A PIL :class:`~PIL.Image.Image` of the generated result.
        """
        if self._pipeline is None:
            self.load_model()

        guidance_scale = 3.5
        model_id = (self._current_model_id or "").lower()
        if any(marker in model_id for marker in _DISTILLED_MARKERS):
            guidance_scale = 0.0

        logger.info(
            "Generating image: %dx%d, %d steps, guidance=%.1f.",
            self._config.image_width,
            self._config.image_height,
            steps,
            guidance_scale,
        )

        output = self._pipeline(
            prompt=prompt,
            width=self._config.image_width,
            height=self._config.image_height,
            num_inference_steps=steps,
            guidance_scale=guidance_scale,
        )
        return output.images[0]

    def unload(self) -> None:
        """Unload the current model and free GPU memory.

        Safe to call when no model is loaded (no-op).
        """
        if self._pipeline is None:
            return

        model_id = self._current_model_id
        logger.info("Unloading model '%s'.", model_id)

        del self._pipeline
        self._pipeline = None
        self._current_model_id = None
        gc.collect()

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
                logger.info("CUDA cache cleared after unloading '%s'.", model_id)
        except ImportError:
            pass

    @property
    def is_loaded(self) -> bool:
        """Whether a model pipeline is currently loaded in memory."""
        return self._pipeline is not None

    @property
    def current_model_id(self) -> str | None:
        """HuggingFace ID of the currently loaded model, or ``None``."""
        return self._current_model_id
