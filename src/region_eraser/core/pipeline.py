"""End-to-end erase pipeline.

:class:`EraserPipeline` turns an upload and a user-drawn rectangle into a
stored, processed image:

1. validate size and declared format
2. preprocess (downscale past ``max_dimension``, flatten alpha for JPEG)
3. scale the region if the image was downscaled
4. validate the region against the preprocessed image
5. persist the raw upload
6. send the image to the remote model
7. force the model's output back to the preprocessed dimensions
8. crop the region (no padding) out of the model's output
9. paste that crop onto the preprocessed image
10. encode and persist the result

Steps 1-4 fail without side effects.  From step 5 on, any failure deletes
the stored upload before the error propagates unchanged.  Nothing is retried
here; retries live inside :class:`~region_eraser.core.gemini_client.GeminiClient`.

Each call is independent and runs its stages strictly in order.  Concurrent
calls share nothing but the blob directories, whose names are random.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from . import imaging
from .blob_store import BlobStore
from .config import EraserConfig, config as default_config
from .errors import file_too_large, region_invalid
from .gemini_client import GeminiClient
from .models import ImageInfo, PreprocessResult, ProcessResult, Region, StorageUsage

logger = logging.getLogger(__name__)

DOWNLOAD_URL = "/watermark/download/{}"
PREVIEW_URL = "/watermark/preview/{}"

# Per-axis scale factors further apart than this are logged.
SCALE_DIVERGENCE_TOLERANCE = 0.01


def scale_region(region: Region, original: tuple[int, int], resized: tuple[int, int]) -> Region:
    """Map *region* from the original image size onto the resized one.

    Each axis is scaled by its own ratio.  ``resize_to_fit`` keeps the aspect
    ratio, so the ratios only differ by rounding; a larger gap is logged and
    accepted.
    """
    scale_x = resized[0] / original[0]
    scale_y = resized[1] / original[1]
    if abs(scale_x - scale_y) > SCALE_DIVERGENCE_TOLERANCE * max(scale_x, scale_y):
        logger.warning(
            "Scale factors diverge (x=%.4f, y=%.4f); region will be slightly distorted",
            scale_x,
            scale_y,
        )
    return region.scaled(scale_x, scale_y)


def validate_region(region: Region, info: ImageInfo, min_size: int = 5) -> None:
    """Check that *region* is a usable rectangle inside *info*'s bounds."""
    if region.x < 0 or region.y < 0:
        raise region_invalid("Region coordinates cannot be negative")
    if region.width < min_size or region.height < min_size:
        raise region_invalid(f"Region must be at least {min_size}x{min_size} pixels")
    if region.right > info.width or region.bottom > info.height:
        raise region_invalid("Region exceeds image boundaries")


class EraserPipeline:
    """Runs erase jobs and serves their stored results.

    Attributes:
        config: Application configuration.
        client: Remote inpainting client.
        uploads: Store for raw uploads.
        processed: Store for finished images.
    """

    def __init__(
        self,
        config: EraserConfig | None = None,
        client: GeminiClient | None = None,
        uploads: BlobStore | None = None,
        processed: BlobStore | None = None,
    ) -> None:
        self.config = config or default_config
        self.client = client or GeminiClient(self.config)
        self.uploads = uploads or BlobStore(self.config.uploads_dir)
        self.processed = processed or BlobStore(self.config.processed_dir)

    # -- Erase job ----------------------------------------------------------

    def preprocess(self, buffer: bytes) -> PreprocessResult:
        """Normalize an upload for the remote call."""
        info = imaging.metadata(buffer)
        upload_mime = imaging.detect_mime_type(buffer, info.format)

        processed = buffer
        resized = False
        if info.width > self.config.max_dimension or info.height > self.config.max_dimension:
            processed = imaging.resize_to_fit(buffer, self.config.max_dimension)
            resized = True

        processed = imaging.normalize_channels_for_format(processed, upload_mime)

        return PreprocessResult(
            buffer=processed,
            mime_type=imaging.detect_mime_type(processed, info.format),
            original_width=info.width,
            original_height=info.height,
            resized=resized,
            original_format=info.format,
        )

    def process(
        self,
        data: bytes,
        filename: str,
        content_type: str | None,
        region: Region,
        *,
        lossless: bool = False,
        api_key: str | None = None,
    ) -> ProcessResult:
        """Erase *region* from the uploaded image and store the result.

        Args:
            data: Raw upload bytes.
            filename: Client-side file name (kept for the result and the
                upload's extension).
            content_type: Declared MIME type of the upload.
            region: Rectangle to erase, in the upload's coordinates.
            lossless: Store the result as PNG regardless of input format.
            api_key: Credential overriding the configured one.

        Returns:
            Descriptor of the stored result.

        Raises:
            EraserError: see :class:`~region_eraser.core.errors.ErrorKind`.
        """
        started = time.perf_counter()

        if len(data) > self.config.max_file_size_bytes:
            raise file_too_large(len(data), self.config.max_file_size_mb)
        imaging.validate_format(content_type, self.config.supported_formats)

        prepared = self.preprocess(data)
        info = imaging.metadata(prepared.buffer)
        if prepared.resized:
            logger.info(
                "Image was resized from %dx%d to %dx%d",
                prepared.original_width,
                prepared.original_height,
                info.width,
                info.height,
            )

        target = region
        if prepared.resized:
            target = scale_region(
                region,
                (prepared.original_width, prepared.original_height),
                (info.width, info.height),
            )
            logger.info("Region adjusted from %s to %s", region, target)

        validate_region(target, info, self.config.min_region_size)

        suffix = Path(filename).suffix
        upload_id = self.uploads.save(data, suffix if suffix[1:].isalnum() else "")
        try:
            result = self._erase(prepared, info, target, lossless=lossless, api_key=api_key)
            processed_id = self.processed.save(*result)
        except Exception:
            self.uploads.delete(upload_id)
            raise
        self.uploads.delete(upload_id)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Processed %s -> %s in %d ms", filename, processed_id, elapsed_ms)

        return ProcessResult(
            id=Path(processed_id).stem,
            original_filename=filename,
            processed_url=DOWNLOAD_URL.format(processed_id),
            preview_url=PREVIEW_URL.format(processed_id),
            original_size=len(data),
            processed_size=len(result[0]),
            processing_time_ms=elapsed_ms,
        )

    def _erase(
        self,
        prepared: PreprocessResult,
        info: ImageInfo,
        region: Region,
        *,
        lossless: bool,
        api_key: str | None,
    ) -> tuple[bytes, str]:
        """Steps 6-10 minus persistence: returns ``(encoded, extension)``."""
        logger.info("Sending image to Gemini with region %s", region)
        edited = self.client.remove_watermark(prepared.buffer, prepared.mime_type, region, api_key)
        logger.info("Gemini returned image: %d bytes", len(edited))

        edited_info = imaging.metadata(edited)
        if (edited_info.width, edited_info.height) != (info.width, info.height):
            logger.info(
                "Resizing Gemini output from %dx%d to %dx%d",
                edited_info.width,
                edited_info.height,
                info.width,
                info.height,
            )
            edited = imaging.resize_to_exact(edited, info.width, info.height)

        patch, _ = imaging.crop_region(edited, region, padding=0)
        composited = imaging.composite_region(prepared.buffer, patch, (region.x, region.y))
        logger.debug("Composited final image: %d bytes", len(composited))

        return imaging.encode(
            composited,
            lossless=lossless,
            original_format=prepared.original_format,
            keep_png_lossless=self.config.keep_png_lossless,
            jpeg_quality=self.config.jpeg_quality,
            png_compress_level=self.config.png_compress_level,
        )

    # -- Inspection and stored results --------------------------------------

    def image_info(self, data: bytes, content_type: str | None) -> ImageInfo:
        imaging.validate_format(content_type, self.config.supported_formats)
        return imaging.metadata(data)

    def get_processed(self, blob_id: str) -> bytes:
        return self.processed.read(blob_id)

    def get_preview(self, blob_id: str) -> bytes:
        return imaging.generate_preview(
            self.processed.read(blob_id),
            max_width=self.config.preview_max_width,
            quality=self.config.preview_quality,
        )

    def delete_processed(self, blob_id: str) -> bool:
        return self.processed.delete(blob_id)

    # -- Maintenance --------------------------------------------------------

    def cleanup(self, max_age_seconds: float | None = None) -> int:
        """Remove uploads and results older than *max_age_seconds*.

        Returns:
            Number of blobs removed across both stores.
        """
        if max_age_seconds is None:
            max_age_seconds = self.config.cleanup_max_age_seconds
        removed = 0
        for store in (self.uploads, self.processed):
            removed += store.sweep(max_age_seconds)
        return removed

    def storage_usage(self) -> StorageUsage:
        return StorageUsage(
            uploads=self.uploads.total_size(),
            processed=self.processed.total_size(),
        )

    # -- Remote passthroughs ------------------------------------------------

    def test_connection(self, api_key: str | None = None) -> bool:
        return self.client.test_connection(api_key)

    def list_models(self, api_key: str | None = None) -> list[str]:
        return self.client.list_models(api_key)

    def close(self) -> None:
        self.client.close()
