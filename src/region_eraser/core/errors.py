"""Error kinds raised by the erasing pipeline.

Every failure the core can produce is an :class:`EraserError` tagged with an
:class:`ErrorKind`.  The kind decides two things:

- whether the remote client may retry the call (only ``REMOTE_TRANSIENT``)
- which HTTP status the API layer answers with

The messages are user-facing; the API returns them verbatim.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a pipeline failure."""

    NOT_CONFIGURED = "not_configured"
    INVALID_FORMAT = "invalid_format"
    TOO_LARGE = "too_large"
    IMAGE_PROCESSING = "image_processing"
    REGION_INVALID = "region_invalid"
    REMOTE_TRANSIENT = "remote_transient"
    REMOTE_TERMINAL = "remote_terminal"
    CONTENT_POLICY = "content_policy"
    UNEXPECTED_REMOTE_SHAPE = "unexpected_remote_shape"
    NOT_FOUND = "not_found"


_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_CONFIGURED: 503,
    ErrorKind.INVALID_FORMAT: 400,
    ErrorKind.TOO_LARGE: 413,
    ErrorKind.IMAGE_PROCESSING: 400,
    ErrorKind.REGION_INVALID: 400,
    ErrorKind.REMOTE_TRANSIENT: 502,
    ErrorKind.REMOTE_TERMINAL: 502,
    ErrorKind.CONTENT_POLICY: 403,
    ErrorKind.UNEXPECTED_REMOTE_SHAPE: 502,
    ErrorKind.NOT_FOUND: 404,
}


class EraserError(Exception):
    """A classified failure of the erasing pipeline.

    Attributes:
        kind: What went wrong.
        message: User-facing description.
        status_code: HTTP status the API layer should answer with.
        remote_status: Status code returned by the remote service, if the
            failure came from an HTTP response.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        remote_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code if status_code is not None else _DEFAULT_STATUS[kind]
        self.remote_status = remote_status

    @property
    def retryable(self) -> bool:
        """True when the remote client may try the call again."""
        return self.kind is ErrorKind.REMOTE_TRANSIENT

    def __repr__(self) -> str:
        return f"EraserError({self.kind.value!r}, {self.message!r}, status_code={self.status_code})"


# ---------------------------------------------------------------------------
# Constructors for the common cases.
# ---------------------------------------------------------------------------


def not_configured() -> EraserError:
    return EraserError(
        ErrorKind.NOT_CONFIGURED,
        "Gemini API key is not configured. Please set GEMINI_API_KEY environment variable.",
    )


def invalid_format(mime_type: str) -> EraserError:
    return EraserError(
        ErrorKind.INVALID_FORMAT,
        f"Invalid image format: {mime_type}. Supported formats: PNG, JPEG, WebP, GIF",
    )


def file_too_large(size: int, max_size_mb: int) -> EraserError:
    return EraserError(
        ErrorKind.TOO_LARGE,
        f"File size {size / 1024 / 1024:.2f}MB exceeds maximum allowed size of {max_size_mb}MB",
    )


def image_processing(message: str) -> EraserError:
    return EraserError(ErrorKind.IMAGE_PROCESSING, f"Image processing failed: {message}")


def region_invalid(message: str) -> EraserError:
    return EraserError(ErrorKind.REGION_INVALID, f"Image processing failed: {message}")


def remote_error(
    message: str,
    *,
    kind: ErrorKind = ErrorKind.REMOTE_TERMINAL,
    remote_status: int | None = None,
) -> EraserError:
    """Build an error describing a failed remote call.

    A remote 4xx answer is the caller's fault, so it maps to 400 rather than
    the 502 used for everything else the remote side gets wrong.
    """
    status_code = None
    if remote_status is not None and 400 <= remote_status < 500:
        status_code = 400
    return EraserError(
        kind,
        f"Gemini API error: {message}",
        status_code=status_code,
        remote_status=remote_status,
    )


def content_policy(
    message: str = "The AI model declined this request due to content policy restrictions",
) -> EraserError:
    return EraserError(ErrorKind.CONTENT_POLICY, message)


def not_found(blob_id: str) -> EraserError:
    return EraserError(ErrorKind.NOT_FOUND, f"File not found: {blob_id}")
