"""Configuration management for Region Eraser.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the REGION_ERASER_
prefix, allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (REGION_ERASER_* prefix)
2. .env file in the project root
3. Default values defined in EraserConfig

The Gemini API key is the one exception to the prefix rule: it is also read
from the bare ``GEMINI_API_KEY`` variable so existing deployments keep
working.

Example .env file:
    GEMINI_API_KEY=your-key
    REGION_ERASER_MAX_FILE_SIZE_MB=20
    REGION_ERASER_UPLOADS_DIR=/var/lib/region-eraser/uploads
    REGION_ERASER_PROCESSED_DIR=/var/lib/region-eraser/processed

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Route handlers and the CLI read from it; tests build their own instances
pointing at temporary directories.

Directory Management
--------------------
The configuration creates the two blob directories on initialization:
- uploads_dir: raw uploads, deleted when a job fails, swept by age otherwise
- processed_dir: finished images, kept until deleted or swept by age

Remote Model Constraints
------------------------
- Gemini rejects images larger than 4096px on either side, so uploads are
  downscaled to ``max_dimension`` before the remote call.
- Retries use linear backoff: ``retry_delay_seconds * (attempt - 1)``.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EraserConfig(BaseSettings):
    """Main configuration for Region Eraser.

    Values are loaded from environment variables with the REGION_ERASER_
    prefix, with fallback to defaults defined here.

    Attributes
    ----------
    Remote Model Settings:
        gemini_api_key : str | None
            Default credential; a per-request override takes priority
        gemini_api_base : str
            Base URL of the Generative Language REST API
        gemini_model : str
            Image-capable model used for inpainting
        max_attempts : int
            Total attempts per remote call (first try included)
        retry_delay_seconds : float
            Base delay for linear backoff between attempts
        request_timeout_seconds : float
            Transport timeout for a single HTTP request

    Upload Limits:
        max_file_size_mb : int
            Largest accepted upload
        max_dimension : int
            Uploads wider or taller than this are downscaled
        min_region_size : int
            Smallest accepted region side, in pixels
        supported_formats : list[str]
            Accepted MIME subtypes

    Encoding:
        keep_png_lossless : bool
            Re-encode PNG originals as PNG even when lossless is not requested
        jpeg_quality : int
            Quality of lossy output
        png_compress_level : int
            zlib level for lossless output
        preview_max_width : int
            Width of generated previews
        preview_quality : int
            JPEG quality of previews

    Storage:
        uploads_dir : Path
        processed_dir : Path
        cleanup_max_age_seconds : int
            Blobs older than this are removed by the sweep
        cleanup_interval_seconds : int
            Period of the background sweep (0 disables it)

    Server:
        server_host, server_port, cors_origins, log_level

    Examples
    --------
        >>> from region_eraser.core.config import config
        >>> config.max_file_size_bytes
        20971520

        >>> custom = EraserConfig(max_dimension=2048, keep_png_lossless=False)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REGION_ERASER_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Remote model settings
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REGION_ERASER_GEMINI_API_KEY", "GEMINI_API_KEY"),
        description="Default Gemini API key (overridable per request)",
    )
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the Generative Language REST API",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Image-capable Gemini model used for inpainting",
    )
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay for linear backoff between attempts",
    )
    request_timeout_seconds: float = Field(default=120.0, gt=0.0)

    # Upload limits
    max_file_size_mb: int = Field(default=20, ge=1, le=200)
    max_dimension: int = Field(
        default=4096,
        ge=64,
        description="Maximum side length sent to the remote model",
    )
    min_region_size: int = Field(default=5, ge=1)
    supported_formats: list[str] = Field(
        default_factory=lambda: ["png", "jpeg", "jpg", "webp", "gif"],
    )

    # Encoding
    keep_png_lossless: bool = Field(
        default=True,
        description="Re-encode PNG originals as PNG even without the lossless flag",
    )
    jpeg_quality: int = Field(default=95, ge=1, le=100)
    png_compress_level: int = Field(default=9, ge=0, le=9)
    preview_max_width: int = Field(default=800, ge=16)
    preview_quality: int = Field(default=80, ge=1, le=100)

    # Storage
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Directory holding raw uploads",
    )
    processed_dir: Path = Field(
        default=Path("processed"),
        description="Directory holding processed images",
    )
    cleanup_max_age_seconds: int = Field(default=3600, ge=0)
    cleanup_interval_seconds: int = Field(
        default=3600,
        ge=0,
        description="Period of the background sweep (0 disables it)",
    )

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000, ge=1, le=65535)
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:4173",
            "http://127.0.0.1:5173",
        ],
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the blob directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.processed_dir.mkdir(parents=True, exist_ok=True)

    @property
    def max_file_size_bytes(self) -> int:
        """Upload size limit in bytes."""
        return self.max_file_size_mb * 1024 * 1024


# Global configuration instance, loaded from REGION_ERASER_* variables and .env.
config = EraserConfig()
