"""Tests for region_eraser.core.config: configuration management.

Tests cover:
- Default values for limits, encoding and retry settings.
- Environment variable overrides via the REGION_ERASER_ prefix.
- The bare GEMINI_API_KEY fallback for the credential.
- Automatic directory creation on initialisation.
- Pydantic validation constraints (port range, log level literal, etc.).
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from region_eraser.core.config import EraserConfig


def _config(temp_dir: Path, **overrides) -> EraserConfig:
    return EraserConfig(
        _env_file=None,
        uploads_dir=str(temp_dir / "uploads"),
        processed_dir=str(temp_dir / "processed"),
        **overrides,
    )


class TestConfigDefaults:
    """Verify that EraserConfig provides the documented defaults."""

    def test_upload_limits(self, temp_dir: Path):
        """Uploads are capped at 20 MB and 4096 px, regions at 5 px."""
        cfg = _config(temp_dir)
        assert cfg.max_file_size_mb == 20
        assert cfg.max_file_size_bytes == 20 * 1024 * 1024
        assert cfg.max_dimension == 4096
        assert cfg.min_region_size == 5

    def test_retry_policy(self, temp_dir: Path):
        """Three attempts with a one second base delay."""
        cfg = _config(temp_dir)
        assert cfg.max_attempts == 3
        assert cfg.retry_delay_seconds == 1.0

    def test_encoding(self, temp_dir: Path):
        """JPEG quality 95, PNG level 9, previews 800 px at quality 80."""
        cfg = _config(temp_dir)
        assert cfg.jpeg_quality == 95
        assert cfg.png_compress_level == 9
        assert cfg.preview_max_width == 800
        assert cfg.preview_quality == 80
        assert cfg.keep_png_lossless is True

    def test_cleanup_age_is_one_hour(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.cleanup_max_age_seconds == 3600

    def test_supported_formats(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert set(cfg.supported_formats) == {"png", "jpeg", "jpg", "webp", "gif"}

    def test_api_key_defaults_to_none(self, monkeypatch, temp_dir: Path):
        """Without any variable set there is no credential."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("REGION_ERASER_GEMINI_API_KEY", raising=False)
        assert _config(temp_dir).gemini_api_key is None


class TestEnvironmentOverrides:
    """Values are read from REGION_ERASER_* variables."""

    def test_prefixed_variable(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("REGION_ERASER_MAX_FILE_SIZE_MB", "5")
        assert _config(temp_dir).max_file_size_mb == 5

    def test_bare_gemini_key(self, monkeypatch, temp_dir: Path):
        """GEMINI_API_KEY is honoured without the prefix."""
        monkeypatch.delenv("REGION_ERASER_GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        assert _config(temp_dir).gemini_api_key == "from-env"

    def test_boolean_flag(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("REGION_ERASER_KEEP_PNG_LOSSLESS", "false")
        assert _config(temp_dir).keep_png_lossless is False

    def test_keyword_beats_environment(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("REGION_ERASER_MAX_ATTEMPTS", "7")
        assert _config(temp_dir, max_attempts=2).max_attempts == 2


class TestDirectoryCreation:
    """Blob directories are created on initialisation."""

    def test_directories_exist(self, temp_dir: Path):
        cfg = _config(temp_dir)
        assert cfg.uploads_dir.is_dir()
        assert cfg.processed_dir.is_dir()

    def test_nested_directories(self, temp_dir: Path):
        cfg = EraserConfig(
            _env_file=None,
            uploads_dir=str(temp_dir / "a" / "b" / "uploads"),
            processed_dir=str(temp_dir / "a" / "b" / "processed"),
        )
        assert cfg.uploads_dir.is_dir()
        assert cfg.processed_dir.is_dir()


class TestValidation:
    """Pydantic constraints reject out-of-range values."""

    def test_port_out_of_range(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=70000)

    def test_unknown_log_level(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, log_level="TRACE")

    def test_zero_attempts(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, max_attempts=0)

    def test_jpeg_quality_above_100(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            _config(temp_dir, jpeg_quality=101)
