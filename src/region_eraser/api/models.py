"""Pydantic request and response models for the Region Eraser API.

Response field names are camelCase on the wire because the browser client
reads them that way; the Python attributes stay snake_case.

Models
------
RegionForm
    The four ``region[...]`` multipart fields of ``POST /watermark/remove``.
ProcessResultResponse
    Result descriptor of a finished erase job.
ImageInfoResponse
    Metadata returned by ``POST /watermark/info``.
ErrorResponse
    Body of every error answer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from region_eraser.core.models import ImageInfo, ProcessResult, Region, StorageUsage


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegionForm(BaseModel):
    """Rectangle to erase, as submitted by the client.

    Only types are checked here.  Bounds and minimum size depend on the
    image and are checked by the pipeline.
    """

    x: int = Field(..., description="Left edge in pixels.")
    y: int = Field(..., description="Top edge in pixels.")
    width: int = Field(..., description="Width in pixels.")
    height: int = Field(..., description="Height in pixels.")

    def to_region(self) -> Region:
        return Region(x=self.x, y=self.y, width=self.width, height=self.height)


class ProcessResultResponse(_CamelModel):
    """Descriptor of a finished erase job.

    Attributes:
        id: Identifier of the processed image (file name without extension).
        original_filename: Name of the uploaded file.
        processed_url: Download path of the processed image.
        preview_url: Path of the JPEG preview.
        original_size: Upload size in bytes.
        processed_size: Stored result size in bytes.
        processing_time_ms: Wall-clock duration of the job.
    """

    id: str
    original_filename: str
    processed_url: str
    preview_url: str
    original_size: int
    processed_size: int
    processing_time_ms: int

    @classmethod
    def from_result(cls, result: ProcessResult) -> ProcessResultResponse:
        return cls.model_validate(result.to_dict())


class ImageInfoResponse(BaseModel):
    width: int
    height: int
    format: str
    size: int

    @classmethod
    def from_info(cls, info: ImageInfo) -> ImageInfoResponse:
        return cls(**info.to_dict())


class StorageUsageResponse(BaseModel):
    uploads: int = Field(..., description="Bytes held by raw uploads.")
    processed: int = Field(..., description="Bytes held by processed images.")
    total: int

    @classmethod
    def from_usage(cls, usage: StorageUsage) -> StorageUsageResponse:
        return cls(uploads=usage.uploads, processed=usage.processed, total=usage.total)


class ConnectionStatus(BaseModel):
    connected: bool


class ModelList(BaseModel):
    models: list[str]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    timestamp: str


class ErrorResponse(_CamelModel):
    """Body of every error answer.

    Attributes:
        status_code: HTTP status, repeated in the body.
        message: Human-readable description.
        timestamp: ISO-8601 UTC time of the failure.
        path: Request path that failed.
    """

    status_code: int
    message: str
    timestamp: str
    path: str
