"""Image primitives on encoded byte buffers.

Every function here takes encoded image bytes and returns new encoded bytes
(or a metadata struct).  Nothing is cached and no buffer is modified in
place, so a failed pipeline run can always fall back to the buffers it
started with.

Intermediate results are always PNG, whatever the input format, so pixels
outside an edited region survive every stage untouched.  Only :func:`encode`
and :func:`generate_preview` choose a lossy output format.

Coordinates are integer pixels.  Scale factors that produce fractional
sizes are rounded half up.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from .errors import image_processing, invalid_format
from .models import ImageInfo, Region, round_half_up

logger = logging.getLogger(__name__)

# Leading-byte signatures, checked in order.
MIME_SIGNATURES: list[tuple[str, bytes]] = [
    ("image/png", b"\x89PNG\r\n\x1a\n"),
    ("image/jpeg", b"\xff\xd8\xff"),
    ("image/gif", b"GIF8"),
    ("image/webp", b"RIFF"),
]

FORMAT_TO_MIME: dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}

DEFAULT_SUPPORTED_FORMATS = ("png", "jpeg", "jpg", "webp", "gif")

LOSSY_MIME_TYPES = frozenset({"image/jpeg"})

# Modes PNG stores natively; anything else is converted before writing.
PNG_MODES = frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"})

# Intermediates favour speed; the final encode compresses harder.
INTERMEDIATE_PNG_COMPRESS_LEVEL = 1

WHITE = (255, 255, 255)


# ---------------------------------------------------------------------------
# Decoding helpers.
# ---------------------------------------------------------------------------


def _open(buffer: bytes) -> Image.Image:
    """Decode *buffer* fully, raising an image-processing error on failure."""
    try:
        image = Image.open(io.BytesIO(buffer))
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise image_processing(f"Failed to read image metadata: {e}") from e
    return image


def _encode_intermediate(image: Image.Image) -> bytes:
    """Encode a working image as PNG so no stage adds compression loss."""
    if image.mode not in PNG_MODES:
        image = image.convert("RGBA" if has_alpha(image) else "RGB")
    buf = io.BytesIO()
    image.save(buf, format="PNG", compress_level=INTERMEDIATE_PNG_COMPRESS_LEVEL)
    return buf.getvalue()


def _rgb_for_jpeg(image: Image.Image) -> Image.Image:
    if has_alpha(image):
        return flatten_alpha(image)
    if image.mode not in ("RGB", "L"):
        return image.convert("RGB")
    return image


# ---------------------------------------------------------------------------
# Metadata and format detection.
# ---------------------------------------------------------------------------


def metadata(buffer: bytes) -> ImageInfo:
    """Read width, height and format of an encoded image.

    Raises:
        EraserError: ``IMAGE_PROCESSING`` when the dimensions cannot be read.
    """
    image = _open(buffer)
    width, height = image.size
    if not width or not height:
        raise image_processing("Unable to read image dimensions")
    return ImageInfo(
        width=width,
        height=height,
        format=(image.format or "unknown").lower(),
        size=len(buffer),
    )


def detect_mime_type(buffer: bytes, format_hint: str | None = None) -> str:
    """Detect the MIME type of *buffer* from its leading bytes.

    WebP files share the RIFF container with other formats, so a RIFF
    prefix only counts when bytes 8-11 read ``WEBP``; otherwise detection
    falls through to *format_hint*.  Unknown hints default to JPEG.
    """
    for mime_type, signature in MIME_SIGNATURES:
        if not buffer.startswith(signature):
            continue
        if mime_type == "image/webp" and buffer[8:12] != b"WEBP":
            continue
        return mime_type

    if format_hint:
        return FORMAT_TO_MIME.get(format_hint.lower(), "image/jpeg")
    return "image/jpeg"


def validate_format(mime_type: str | None, supported=DEFAULT_SUPPORTED_FORMATS) -> None:
    """Reject declared MIME types outside the supported set."""
    subtype = (mime_type or "").partition("/")[2].lower()
    if not subtype or subtype not in supported:
        raise invalid_format(mime_type or "unknown")


def mime_for_extension(filename: str) -> str:
    """Content type for a stored blob, derived from its extension."""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return FORMAT_TO_MIME.get(ext, "application/octet-stream")


def has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return image.mode == "P" and "transparency" in image.info


def flatten_alpha(image: Image.Image, background=WHITE) -> Image.Image:
    """Composite *image* onto an opaque background and drop the alpha channel."""
    rgba = image.convert("RGBA")
    flat = Image.new("RGB", rgba.size, background)
    flat.paste(rgba, mask=rgba.getchannel("A"))
    return flat


# ---------------------------------------------------------------------------
# Geometry.
# ---------------------------------------------------------------------------


def resize_to_fit(buffer: bytes, max_dimension: int) -> bytes:
    """Downscale so both sides fit within *max_dimension*, keeping aspect ratio.

    Images that already fit are returned unchanged; this never upscales.
    """
    image = _open(buffer)
    width, height = image.size
    scale = min(max_dimension / width, max_dimension / height)
    if scale >= 1:
        return buffer

    new_size = (
        max(1, round_half_up(width * scale)),
        max(1, round_half_up(height * scale)),
    )
    logger.info(
        "Resizing image from %dx%d to %dx%d", width, height, new_size[0], new_size[1]
    )
    resized = image.resize(new_size, Image.Resampling.LANCZOS)
    return _encode_intermediate(resized)


def resize_to_exact(buffer: bytes, width: int, height: int) -> bytes:
    """Force the image to exactly ``width`` x ``height`` (aspect ratio not kept)."""
    image = _open(buffer)
    if image.size == (width, height):
        return buffer
    resized = image.resize((width, height), Image.Resampling.LANCZOS)
    return _encode_intermediate(resized)


def crop_region(buffer: bytes, region: Region, padding: int = 20) -> tuple[bytes, Region]:
    """Extract *region* grown by *padding* on every side, clamped to the image.

    Returns:
        Tuple of ``(cropped_bytes, region_actually_used)``.
    """
    image = _open(buffer)
    img_width, img_height = image.size

    x = max(0, region.x - padding)
    y = max(0, region.y - padding)
    used = Region(
        x=x,
        y=y,
        width=min(img_width - x, region.width + padding * 2),
        height=min(img_height - y, region.height + padding * 2),
    )
    if used.width <= 0 or used.height <= 0:
        raise image_processing(f"Region {region} lies outside the {img_width}x{img_height} image")

    logger.debug("Cropping region %s -> padded %s", region, used)
    cropped = image.crop(used.as_box())
    return _encode_intermediate(cropped), used


def composite_region(base_buffer: bytes, overlay_buffer: bytes, position: tuple[int, int]) -> bytes:
    """Paste the overlay onto the base with its top-left corner at *position*.

    The overlay replaces the pixels under it; the result has the base's
    dimensions.
    """
    base = _open(base_buffer)
    overlay = _open(overlay_buffer)

    mode = "RGBA" if has_alpha(base) else "RGB"
    canvas = base.convert(mode)
    patch = overlay.convert("RGBA")
    if mode == "RGBA":
        canvas.paste(patch, position)
    else:
        canvas.paste(patch, position, mask=patch.getchannel("A"))

    logger.debug("Composited %dx%d patch at %s", patch.width, patch.height, position)
    return _encode_intermediate(canvas)


# ---------------------------------------------------------------------------
# Channel normalization and output encoding.
# ---------------------------------------------------------------------------


def normalize_channels_for_format(buffer: bytes, mime_type: str) -> bytes:
    """Flatten transparency onto white when *mime_type* is a lossy format."""
    if mime_type not in LOSSY_MIME_TYPES:
        return buffer
    image = _open(buffer)
    if not has_alpha(image):
        return buffer
    return _encode_intermediate(flatten_alpha(image))


def encode(
    buffer: bytes,
    *,
    lossless: bool,
    original_format: str,
    keep_png_lossless: bool = True,
    jpeg_quality: int = 95,
    png_compress_level: int = 9,
) -> tuple[bytes, str]:
    """Encode the final image for storage.

    Lossless output (requested, or a PNG original when *keep_png_lossless*)
    is PNG at maximum compression; everything else is high-quality JPEG.

    Returns:
        Tuple of ``(encoded_bytes, file_extension)``.
    """
    image = _open(buffer)
    buf = io.BytesIO()
    if lossless or (keep_png_lossless and original_format == "png"):
        if image.mode == "CMYK":
            image = image.convert("RGB")
        image.save(buf, format="PNG", compress_level=png_compress_level, optimize=True)
        return buf.getvalue(), ".png"

    _rgb_for_jpeg(image).save(buf, format="JPEG", quality=jpeg_quality, optimize=True)
    return buf.getvalue(), ".jpg"


def generate_preview(buffer: bytes, max_width: int = 800, quality: int = 80) -> bytes:
    """Build a JPEG thumbnail no wider than *max_width* (never upscaled)."""
    image = _open(buffer)
    if image.width > max_width:
        height = max(1, round_half_up(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.Resampling.LANCZOS)
    buf = io.BytesIO()
    _rgb_for_jpeg(image).save(buf, format="JPEG", quality=quality)
    return buf.getvalue()
