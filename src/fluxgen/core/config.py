"""Configuration management for the Fluxgen image service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the FLUXGEN_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (FLUXGEN_* prefix)
2. .env file in the project root
3. Default values defined in FluxgenConfig

Example .env file:
    FLUXGEN_INFERENCE_BACKEND=workers-ai
    FLUXGEN_CLOUDFLARE_ACCOUNT_ID=0123456789abcdef
    FLUXGEN_CLOUDFLARE_API_TOKEN=...
    FLUXGEN_BLOB_BACKEND=s3
    FLUXGEN_S3_BUCKET=flux-images
    FLUXGEN_S3_ENDPOINT_URL=https://<account>.r2.cloudflarestorage.com

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The API lifespan reads it to build the inference client and the two stores.

Usage Example
-------------
    from fluxgen.core.config import config

    print(config.model_name)
    print(config.history_ttl_seconds)

Storage Layout
--------------
Two stores are configured independently:
- the blob store holds PNG bytes under ``images/{timestamp}-{index}.png``
  (local directory or any S3-compatible bucket such as Cloudflare R2)
- the index store is a SQLite file holding ``history:{timestamp}`` records
  with a 30-day expiry
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

THIRTY_DAYS = 60 * 60 * 24 * 30
ONE_YEAR = 60 * 60 * 24 * 365


class FluxgenConfig(BaseSettings):
    """Main configuration for the Fluxgen image service.

    Attributes
    ----------
    Inference Settings:
        inference_backend : Literal["workers-ai", "local"]
            Hosted Workers AI REST endpoint or an in-process diffusers pipeline
        cloudflare_account_id / cloudflare_api_token : str | None
            Credentials for the Workers AI REST endpoint
        model_name : str
            Workers AI model identifier
        attempt_timeout : float
            Upper bound in seconds for one inference call
        parallel_attempts : bool
            Run the attempts of a batch concurrently instead of one by one

    Storage Settings:
        blob_backend : Literal["filesystem", "s3"]
            Where PNG bytes are written
        index_db : Path
            SQLite file backing the history index

    Request Limits:
        max_prompt_length, max_steps, max_images, default_steps,
        default_images, history_limit, history_ttl_seconds

    Notes
    -----
    - Directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLUXGEN_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Inference backend selection
    inference_backend: Literal["workers-ai", "local"] = Field(
        default="workers-ai",
        description="Inference backend: hosted Workers AI or a local diffusers pipeline",
    )

    # Workers AI settings
    cloudflare_account_id: str | None = Field(
        default=None,
        description="Cloudflare account ID used in the Workers AI run URL",
    )
    cloudflare_api_token: str | None = Field(
        default=None,
        description="API token with Workers AI read permission",
    )
    workers_ai_base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Base URL of the Cloudflare REST API",
    )
    model_name: str = Field(
        default="@cf/black-forest-labs/flux-1-schnell",
        description="Workers AI text-to-image model identifier",
    )
    attempt_timeout: float = Field(
        default=60.0,
        description="Seconds allowed for a single inference call",
        gt=0,
    )
    parallel_attempts: bool = Field(
        default=False,
        description="Run the attempts of one batch concurrently",
    )

    # Local diffusers settings (only used with inference_backend="local")
    local_model_id: str = Field(
        default="black-forest-labs/FLUX.1-schnell",
        description="HuggingFace model ID for the local pipeline",
    )
    torch_dtype: Literal["bfloat16", "float16", "float32"] = Field(
        default="bfloat16",
        description="Torch dtype for local inference",
    )
    device: str = Field(
        default="cuda",
        description="Device to run local inference on (cuda/mps/cpu)",
    )
    models_dir: Path = Field(
        default=Path("models"),
        description="Directory to cache downloaded models",
    )
    image_width: int = Field(default=1024, ge=256, le=2048)
    image_height: int = Field(default=1024, ge=256, le=2048)

    # Blob store
    blob_backend: Literal["filesystem", "s3"] = Field(
        default="filesystem",
        description="Blob backend for generated PNGs",
    )
    blob_dir: Path = Field(
        default=Path("data/blobs"),
        description="Root directory of the filesystem blob store",
    )
    s3_bucket: str | None = Field(
        default=None,
        description="Bucket name for the S3-compatible blob store",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint (e.g. Cloudflare R2); None means AWS S3",
    )
    s3_region: str = Field(
        default="auto",
        description="Region name passed to boto3 ('auto' for R2)",
    )
    s3_access_key_id: str | None = Field(default=None)
    s3_secret_access_key: str | None = Field(default=None)

    # Index store
    index_db: Path = Field(
        default=Path("data/index.sqlite3"),
        description="SQLite file backing the history index",
    )

    # Request limits
    max_prompt_length: int = Field(default=2048, ge=1)
    max_steps: int = Field(default=8, ge=1)
    max_images: int = Field(default=4, ge=1)
    default_steps: int = Field(default=4, ge=1)
    default_images: int = Field(default=1, ge=1)
    history_limit: int = Field(
        default=20,
        description="Maximum number of records returned by GET /api/history",
        ge=1,
    )
    history_ttl_seconds: int = Field(
        default=THIRTY_DAYS,
        description="Expiry applied to every history record",
        ge=60,
    )
    image_cache_max_age: int = Field(
        default=ONE_YEAR,
        description="max-age (seconds) of the Cache-Control directive on images",
        ge=0,
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8787,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level configured by the CLI entry point",
    )
    templates_dir: Path = Field(
        default=Path(__file__).resolve().parent.parent / "templates",
        description="Directory holding index.html",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.blob_dir.mkdir(parents=True, exist_ok=True)
        self.index_db.parent.mkdir(parents=True, exist_ok=True)
        if self.inference_backend == "local":
            self.models_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_control(self) -> str:
        """Cache-Control directive attached to stored and served images."""
        return f"public, max-age={self.image_cache_max_age}"


# Global configuration instance
# Loads values from environment variables (FLUXGEN_* prefix) and .env file.
config = FluxgenConfig()
