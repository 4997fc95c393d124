"""Core functionality for the Fluxgen image service.

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with FLUXGEN_ in .env files

2. **Inference Layer** (inference.py, model_manager.py):
   - Workers AI REST client (httpx) or a local diffusers pipeline
   - Both return the raw model output

3. **Payload Layer** (payload.py):
   - Classifies raw output into a tagged union of shapes
   - Normalises every shape into PNG bytes plus a data URI

4. **Errors** (errors.py):
   - Validation, attempt, batch and not-found exceptions
"""

from fluxgen.core.config import FluxgenConfig, config
from fluxgen.core.errors import (
    AttemptFailure,
    BatchFailure,
    BlobNotFound,
    FluxgenError,
    InvalidImageCount,
    InvalidPrompt,
    InvalidSteps,
    RequestValidationError,
)
from fluxgen.core.inference import InferenceClient, build_inference_client
from fluxgen.core.payload import ImagePayload, classify_image_output, normalize

__all__ = [
    "FluxgenConfig",
    "config",
    "AttemptFailure",
    "BatchFailure",
    "BlobNotFound",
    "FluxgenError",
    "InvalidImageCount",
    "InvalidPrompt",
    "InvalidSteps",
    "RequestValidationError",
    "InferenceClient",
    "build_inference_client",
    "ImagePayload",
    "classify_image_output",
    "normalize",
]
