"""Data types passed between the pipeline stages."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Region:
    """Rectangle selected by the user, in integer pixel coordinates.

    No validation happens here: the pipeline checks a region against the
    buffer it applies to, which may be a resized copy of the upload.
    """

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def as_box(self) -> tuple[int, int, int, int]:
        """Return the ``(left, upper, right, lower)`` box Pillow expects."""
        return (self.x, self.y, self.right, self.bottom)

    def scaled(self, scale_x: float, scale_y: float) -> Region:
        """Scale every coordinate, rounding half up to the nearest pixel."""
        return Region(
            x=round_half_up(self.x * scale_x),
            y=round_half_up(self.y * scale_y),
            width=round_half_up(self.width * scale_x),
            height=round_half_up(self.height * scale_y),
        )

    def __str__(self) -> str:
        return f"({self.x},{self.y},{self.width},{self.height})"


@dataclass(frozen=True)
class ImageInfo:
    """Metadata snapshot of an encoded image buffer."""

    width: int
    height: int
    format: str
    size: int

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "size": self.size,
        }


@dataclass(frozen=True)
class PreprocessResult:
    """An upload normalized for the remote call.

    Attributes:
        buffer: Encoded image sent to the remote model.
        mime_type: MIME type of ``buffer``, detected from its leading bytes.
            Differs from the upload's when preprocessing re-encoded it.
        original_format: Format of the upload itself (``"png"``, ``"jpeg"``
            and so on), which decides the output encoding.
        original_width: Width of the upload before any resize.
        original_height: Height of the upload before any resize.
        resized: True when ``buffer`` was downscaled and regions must be
            scaled to match.
    """

    buffer: bytes
    mime_type: str
    original_width: int
    original_height: int
    resized: bool
    original_format: str = "png"


@dataclass(frozen=True)
class ProcessResult:
    """Record of one completed erase job."""

    id: str
    original_filename: str
    processed_url: str
    preview_url: str
    original_size: int
    processed_size: int
    processing_time_ms: int

    def to_dict(self) -> dict:
        """Return the descriptor with the camelCase keys the frontend reads."""
        return {
            "id": self.id,
            "originalFilename": self.original_filename,
            "processedUrl": self.processed_url,
            "previewUrl": self.preview_url,
            "originalSize": self.original_size,
            "processedSize": self.processed_size,
            "processingTimeMs": self.processing_time_ms,
        }


@dataclass(frozen=True)
class StorageUsage:
    """Bytes currently held by the blob stores."""

    uploads: int
    processed: int

    @property
    def total(self) -> int:
        return self.uploads + self.processed


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up.

    ``round()`` uses banker's rounding, which would move 2.5 to 2.
    """
    return math.floor(value + 0.5)
