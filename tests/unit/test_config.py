"""Tests for fluxgen.core.config — configuration management.

Tests cover:
- Default values for limits and storage settings.
- Environment variable overrides via the FLUXGEN_ prefix.
- Automatic directory creation on initialisation.
- Pydantic validation constraints.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fluxgen.core.config import ONE_YEAR, THIRTY_DAYS, FluxgenConfig


def _config(temp_dir: Path, **overrides) -> FluxgenConfig:
    return FluxgenConfig(
        _env_file=None,
        blob_dir=temp_dir / "blobs",
        index_db=temp_dir / "db" / "index.sqlite3",
        **overrides,
    )


class TestConfigDefaults:
    """Verify that FluxgenConfig provides the documented defaults."""

    def test_request_limits(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.max_prompt_length == 2048
        assert cfg.max_steps == 8
        assert cfg.max_images == 4
        assert cfg.default_steps == 4
        assert cfg.default_images == 1

    def test_history_defaults(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.history_limit == 20
        assert cfg.history_ttl_seconds == THIRTY_DAYS == 2592000

    def test_default_model_is_flux_schnell(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.model_name == "@cf/black-forest-labs/flux-1-schnell"
        assert cfg.inference_backend == "workers-ai"

    def test_attempts_sequential_by_default(self, temp_dir: Path):
        assert _config(temp_dir).parallel_attempts is False

    def test_cache_control_is_one_year(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.image_cache_max_age == ONE_YEAR
        assert cfg.cache_control == "public, max-age=31536000"

    def test_templates_dir_ships_index(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert (cfg.templates_dir / "index.html").exists()


class TestConfigEnvironment:
    """Environment variables with the FLUXGEN_ prefix override defaults."""

    def test_env_override(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("FLUXGEN_HISTORY_LIMIT", "5")
        monkeypatch.setenv("FLUXGEN_PARALLEL_ATTEMPTS", "true")
        cfg = _config(temp_dir)
        assert cfg.history_limit == 5
        assert cfg.parallel_attempts is True

    def test_env_is_case_insensitive(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("fluxgen_model_name", "@cf/custom/model")
        assert _config(temp_dir).model_name == "@cf/custom/model"


class TestConfigDirectoryCreation:
    """Verify that FluxgenConfig creates required directories."""

    def test_blob_dir_created(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.blob_dir.is_dir()

    def test_index_parent_created(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.index_db.parent.is_dir()

    def test_models_dir_only_for_local_backend(self, temp_dir: Path):
        _config(temp_dir, models_dir=temp_dir / "models")
        assert not (temp_dir / "models").exists()
        _config(temp_dir, models_dir=temp_dir / "models", inference_backend="local")
        assert (temp_dir / "models").is_dir()


class TestConfigValidation:
    """Pydantic constraints reject out-of-range values."""

    def test_invalid_backend(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, inference_backend="openai")

    def test_invalid_port(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=80)

    def test_timeout_must_be_positive(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, attempt_timeout=0)
