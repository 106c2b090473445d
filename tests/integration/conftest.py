"""Fixtures for API integration tests.

The app's lifespan is not run: the pipeline built from the global config is
replaced through ``dependency_overrides`` with the test pipeline, whose
remote model is a ``FakeGemini``.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from region_eraser.api.main import app, get_pipeline
from region_eraser.core.pipeline import EraserPipeline


@pytest.fixture
def test_client(pipeline: EraserPipeline) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
