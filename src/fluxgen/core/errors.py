"""Exception taxonomy for the generation service.

Route handlers in :mod:`fluxgen.api.main` translate these into HTTP
responses:

========================  ======  =========================================
Exception                 Status  Raised by
========================  ======  =========================================
``InvalidPrompt``         400     :func:`fluxgen.api.validation.validate_generation_request`
``InvalidSteps``          400     same
``InvalidImageCount``     400     same
``AttemptFailure``        —       one attempt in a batch; never leaves the loop
``BatchFailure``          500     every attempt in a batch failed
``BlobNotFound``          404     image retrieval for an unknown key
========================  ======  =========================================

Anything else escaping a handler is an unexpected failure and becomes a 500.
"""

from __future__ import annotations


class FluxgenError(Exception):
    """Base class for all domain errors raised by fluxgen."""


class RequestValidationError(FluxgenError):
    """Client input violates a bound.

    The message is intended to be returned to the client verbatim.
    """


class InvalidPrompt(RequestValidationError):
    """Prompt is missing, empty, not text, or too long."""


class InvalidSteps(RequestValidationError):
    """Step count is not an integer in the allowed range."""


class InvalidImageCount(RequestValidationError):
    """Requested image count is not an integer in the allowed range."""


class AttemptFailure(FluxgenError):
    """A single generation attempt failed.

    Attributes:
        index: 1-based position of the attempt within its batch, when known.
    """

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class InferenceError(AttemptFailure):
    """The inference capability returned an error or could not be reached."""


class UnsupportedImageFormat(AttemptFailure):
    """The inference response carried no image data or an unrecognised shape."""


class BatchFailure(FluxgenError):
    """No attempt in a batch produced a stored image.

    Attributes:
        attempted: Number of attempts that were made.
    """

    def __init__(self, attempted: int) -> None:
        super().__init__(f"0 of {attempted} generation attempts succeeded")
        self.attempted = attempted


class BlobNotFound(FluxgenError):
    """No blob is stored under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Image not found: {key}")
        self.key = key
