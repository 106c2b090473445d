"""Shared pytest fixtures for Region Eraser tests."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import httpx
import pytest

# The global config is built at import time and creates its directories, so
# point it at a scratch location before any region_eraser import happens.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="region-eraser-tests-"))
os.environ.setdefault("REGION_ERASER_UPLOADS_DIR", str(_SESSION_DIR / "uploads"))
os.environ.setdefault("REGION_ERASER_PROCESSED_DIR", str(_SESSION_DIR / "processed"))
os.environ.setdefault("REGION_ERASER_CLEANUP_INTERVAL_SECONDS", "0")

from region_eraser.core.blob_store import BlobStore  # noqa: E402
from region_eraser.core.config import EraserConfig  # noqa: E402
from region_eraser.core.gemini_client import GeminiClient  # noqa: E402
from region_eraser.core.pipeline import EraserPipeline  # noqa: E402
from support import FakeGemini, encode_image, gradient_image  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> EraserConfig:
    """Create a test configuration with temporary blob directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        EraserConfig instance for testing
    """
    return EraserConfig(
        _env_file=None,
        gemini_api_key="test-key",
        uploads_dir=str(temp_dir / "uploads"),
        processed_dir=str(temp_dir / "processed"),
        retry_delay_seconds=1.0,
        max_attempts=3,
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the client between attempts."""
    return []


@pytest.fixture
def gemini_client(
    test_config: EraserConfig, fake_gemini: FakeGemini, sleeps: list[float]
) -> Generator[GeminiClient, None, None]:
    http = httpx.Client(transport=httpx.MockTransport(fake_gemini.handler))
    client = GeminiClient(test_config, http_client=http, sleep=sleeps.append)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def pipeline(test_config: EraserConfig, gemini_client: GeminiClient) -> EraserPipeline:
    return EraserPipeline(
        test_config,
        client=gemini_client,
        uploads=BlobStore(test_config.uploads_dir),
        processed=BlobStore(test_config.processed_dir),
    )


@pytest.fixture
def png_800x600() -> bytes:
    return encode_image(gradient_image(800, 600), "PNG")
