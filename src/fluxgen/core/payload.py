"""Normalisation of inference responses into PNG bytes plus a data URI.

The inference capability can hand back its image in several shapes depending
on the backend and transport:

- ``EncodedText`` — a base64 string (the usual Workers AI response)
- ``RawBytes`` — a ``bytes``/``bytearray``/``memoryview`` buffer
- ``ByteStream`` — a stream-like object exposing ``read()``/``aread()``
  (sync or async) or ``array_buffer()``
- ``RenderedImage`` — a PIL image (the local diffusers backend)

:func:`classify_image_output` maps a raw response onto exactly one of these
variants at the boundary, and :func:`normalize` turns any variant into an
:class:`ImagePayload`, so the orchestrator only ever handles one type.
"""

from __future__ import annotations

import base64
import binascii
import inspect
import io
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from PIL import Image

from fluxgen.core.errors import UnsupportedImageFormat

PNG_MIME = "image/png"
_DATA_URI_MARKER = ";base64,"
_STREAM_READERS = ("aread", "read", "array_buffer", "arrayBuffer")


@dataclass(frozen=True)
class EncodedText:
    text: str


@dataclass(frozen=True)
class RawBytes:
    data: bytes


@dataclass(frozen=True)
class ByteStream:
    handle: Any


@dataclass(frozen=True)
class RenderedImage:
    image: Image.Image


ImageOutput = Union[EncodedText, RawBytes, ByteStream, RenderedImage]


@dataclass(frozen=True)
class ImagePayload:
    """One generated image in both of its forms.

    Attributes:
        binary: Raw image bytes, written to the blob store.
        display_encoding: ``data:image/png;base64,...`` string for inline display.
    """

    binary: bytes
    display_encoding: str

    @classmethod
    def from_bytes(cls, data: bytes) -> ImagePayload:
        encoded = base64.b64encode(data).decode("ascii")
        return cls(binary=data, display_encoding=f"data:{PNG_MIME};base64,{encoded}")


def classify_image_output(response: Any) -> ImageOutput:
    """Identify which shape an inference response carries.

    Args:
        response: Either a mapping with an ``image`` entry (the Workers AI
            result object) or the image value itself.

    Returns:
        The matching :data:`ImageOutput` variant.

    Raises:
        UnsupportedImageFormat: No image data, or a shape none of the
            variants cover.
    """
    if isinstance(response, Mapping):
        value = response.get("image")
    else:
        value = response

    if value is None or (isinstance(value, (str, bytes, bytearray)) and not value):
        raise UnsupportedImageFormat("No image data received from AI model")

    if isinstance(value, str):
        return EncodedText(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return RawBytes(bytes(value))
    if isinstance(value, Image.Image):
        return RenderedImage(value)
    if any(callable(getattr(value, name, None)) for name in _STREAM_READERS):
        return ByteStream(value)

    raise UnsupportedImageFormat(f"Unsupported image format from AI model: {type(value).__name__}")


async def normalize(output: ImageOutput) -> ImagePayload:
    """Convert any :data:`ImageOutput` variant into an :class:`ImagePayload`.

    Raises:
        UnsupportedImageFormat: The payload is not valid base64, is empty, or
            the stream yields something other than bytes.
    """
    if isinstance(output, EncodedText):
        data = _decode_base64(output.text)
    elif isinstance(output, RawBytes):
        data = output.data
    elif isinstance(output, ByteStream):
        data = await _read_stream(output.handle)
    elif isinstance(output, RenderedImage):
        buffer = io.BytesIO()
        output.image.save(buffer, format="PNG")
        data = buffer.getvalue()
    else:
        raise UnsupportedImageFormat(f"Unknown image output variant: {type(output).__name__}")

    if not data:
        raise UnsupportedImageFormat("AI model returned an empty image")
    return ImagePayload.from_bytes(data)


def _decode_base64(text: str) -> bytes:
    # Tolerate a data URI prefix and line-wrapped base64.
    if text.startswith("data:") and _DATA_URI_MARKER in text:
        text = text.split(_DATA_URI_MARKER, 1)[1]
    compact = "".join(text.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedImageFormat("Image data is not valid base64") from exc


async def _read_stream(handle: Any) -> bytes:
    for name in _STREAM_READERS:
        reader = getattr(handle, name, None)
        if not callable(reader):
            continue
        result = reader()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, (bytes, bytearray, memoryview)):
            return bytes(result)
        raise UnsupportedImageFormat(
            f"Image stream returned {type(result).__name__} instead of bytes"
        )
    raise UnsupportedImageFormat("Image stream exposes no readable method")
