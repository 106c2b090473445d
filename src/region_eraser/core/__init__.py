"""Core functionality for region erasing.

- **imaging**: Pillow-backed primitives on encoded byte buffers
- **GeminiClient**: remote inpainting with retry and refusal detection
- **BlobStore**: flat-file storage for uploads and results
- **EraserPipeline**: the end-to-end erase job
- **EraserConfig** / **config**: settings loaded from REGION_ERASER_* variables

Usage Example
-------------
    from region_eraser.core import EraserPipeline, Region, config

    pipeline = EraserPipeline(config)
    result = pipeline.process(
        data,
        "photo.jpg",
        "image/jpeg",
        Region(x=100, y=100, width=200, height=150),
    )
    print(result.processed_url)
"""

from region_eraser.core import imaging
from region_eraser.core.blob_store import BlobStore
from region_eraser.core.config import EraserConfig, config
from region_eraser.core.errors import EraserError, ErrorKind
from region_eraser.core.gemini_client import GeminiClient
from region_eraser.core.models import ImageInfo, PreprocessResult, ProcessResult, Region
from region_eraser.core.pipeline import EraserPipeline

__all__ = [
    "BlobStore",
    "EraserConfig",
    "EraserError",
    "EraserPipeline",
    "ErrorKind",
    "GeminiClient",
    "ImageInfo",
    "PreprocessResult",
    "ProcessResult",
    "Region",
    "config",
    "imaging",
]
