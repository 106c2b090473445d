"""Region Eraser - remove a marked region from an image with a remote inpainting model."""

__version__ = "0.1.0"

from region_eraser.core.config import EraserConfig, config
from region_eraser.core.errors import EraserError, ErrorKind
from region_eraser.core.models import ProcessResult, Region

__all__ = [
    "EraserConfig",
    "EraserError",
    "ErrorKind",
    "ProcessResult",
    "Region",
    "config",
]
