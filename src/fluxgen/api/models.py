"""Pydantic request and response models for the Fluxgen API.

Attributes are snake_case in Python and camelCase on the wire
(``num_images`` ↔ ``numImages``, ``r2_keys`` ↔ ``r2Keys``).  Serialise with
``model_dump(by_alias=True)`` when building responses or index records.

Models
------
GenerationRequest
    A validated ``POST /api/generate`` payload.  Built by
    :func:`fluxgen.api.validation.validate_generation_request` rather than
    by FastAPI's body parsing, so bound violations are 400s in a fixed order.
GeneratedImage
    One stored image of a batch, as returned to the client.
GenerateResponse
    Body of a successful ``POST /api/generate``.
HistoryRecord
    One ``history:{timestamp}`` index entry.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationRequest(_CamelModel):
    """Normalised generation request.

    Attributes:
        prompt: Text prompt, 1–2048 characters.
        steps: Diffusion steps, 1–8.
        num_images: Number of independent generation attempts, 1–4.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prompt: str = Field(..., min_length=1)
    steps: int = Field(default=4, ge=1)
    num_images: int = Field(default=1, ge=1)


class GeneratedImage(_CamelModel):
    """One successfully generated and stored image.

    ``binary_payload`` never leaves the process; only the data URI and the
    storage key are serialised.
    """

    index: int = Field(..., ge=1, description="1-based position within the batch.")
    base64: str = Field(..., description="data:image/png;base64,... display encoding.")
    r2_key: str = Field(..., description="Blob store key images/{timestamp}-{index}.png.")
    binary_payload: bytes = Field(default=b"", exclude=True, repr=False)


class GenerateResponse(_CamelModel):
    """Body of a successful ``POST /api/generate``.

    ``generated_count < num_images`` signals a partial batch.
    """

    success: bool = True
    images: list[GeneratedImage]
    timestamp: int
    prompt: str
    steps: int
    num_images: int
    generated_count: int
    r2_keys: list[str]


class HistoryRecord(_CamelModel):
    """Index entry summarising one batch with at least one stored image."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prompt: str
    steps: int
    num_images: int
    timestamp: int
    r2_keys: list[str]
    generated_count: int
