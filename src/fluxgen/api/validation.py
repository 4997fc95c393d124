"""Validation of ``POST /api/generate`` payloads.

Checks run in a fixed order — prompt, then steps, then image count — and the
first violation is raised.  Nothing here performs I/O, so a rejected request
has no side effects.
"""

from __future__ import annotations

from typing import Any

from fluxgen.api.models import GenerationRequest
from fluxgen.core.config import FluxgenConfig
from fluxgen.core.errors import InvalidImageCount, InvalidPrompt, InvalidSteps


def _as_int(value: Any) -> int | None:
    """Coerce *value* to an int, accepting integral floats and digit strings.

    Booleans are rejected even though ``bool`` subclasses ``int``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _prompt_length(prompt: str) -> int:
    """Length in UTF-16 code units, the unit browsers use for ``maxlength``.

    Characters outside the Basic Multilingual Plane (most emoji) count as two.
    """
    return len(prompt.encode("utf-16-le", errors="surrogatepass")) // 2


def validate_generation_request(payload: Any, config: FluxgenConfig) -> GenerationRequest:
    """Validate a decoded JSON body and build a :class:`GenerationRequest`.

    Args:
        payload: The decoded request body.
        config: Supplies the bounds and defaults.

    Returns:
        The normalised request.

    Raises:
        InvalidPrompt: Prompt missing, not a string, empty, or too long.
        InvalidSteps: Steps not an integer within ``[1, max_steps]``.
        InvalidImageCount: numImages not an integer within ``[1, max_images]``.
    """
    if not isinstance(payload, dict):
        payload = {}

    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not 1 <= _prompt_length(prompt) <= config.max_prompt_length:
        raise InvalidPrompt(f"Prompt must be between 1 and {config.max_prompt_length} characters")

    raw_steps = payload.get("steps")
    steps = config.default_steps if raw_steps is None else _as_int(raw_steps)
    if steps is None or not 1 <= steps <= config.max_steps:
        raise InvalidSteps(f"Steps must be between 1 and {config.max_steps}")

    raw_count = payload.get("numImages")
    num_images = config.default_images if raw_count is None else _as_int(raw_count)
    if num_images is None or not 1 <= num_images <= config.max_images:
        raise InvalidImageCount(f"Number of images must be between 1 and {config.max_images}")

    return GenerationRequest(prompt=prompt, steps=steps, num_images=num_images)
