"""Fluxgen - FLUX.1 [schnell] text-to-image service with blob-backed history."""

__version__ = "0.1.0"

from fluxgen.core.config import FluxgenConfig, config

__all__ = [
    "FluxgenConfig",
    "config",
]
