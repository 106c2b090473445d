"""Remote inpainting through the Gemini ``generateContent`` REST endpoint.

The client sends the whole image together with a plain-language instruction
naming the region to clear, and expects an image back.

Retry Policy
------------
A call makes up to ``max_attempts`` attempts.  Before attempt *n* (n > 1)
the client waits ``retry_delay_seconds * (n - 1)``.  Only transport
failures and remote 5xx answers are retried; every other outcome, including
a content-policy refusal and a remote 4xx, ends the call immediately.  When
all attempts fail the last error is raised.

Response Classification
-----------------------
Each attempt's JSON answer is first normalized by :func:`parse_response`
into a :class:`GeminiReply` (the API spells inline image data either
``inline_data`` or ``inlineData``), then :func:`extract_image` decides:

1. remote error payload          -> terminal error with the remote message
2. finish reason other than STOP -> SAFETY is a content-policy refusal,
                                    anything else is terminal
3. no parts                      -> prompt block is a refusal, else terminal
4. image part                    -> decoded bytes (success)
5. text part only                -> refusal phrases mean content policy,
                                    otherwise terminal "text instead of image"
6. nothing usable                -> unexpected format
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from .config import EraserConfig
from .errors import (
    EraserError,
    ErrorKind,
    content_policy,
    not_configured,
    remote_error,
)
from .models import Region

logger = logging.getLogger(__name__)

# Lower-cased phrases that mark a text-only answer as a policy refusal.
POLICY_REFUSAL_PATTERNS = (
    "cannot fulfill",
    "cannot complete",
    "unable to process",
    "violates",
    "policy",
    "copyright",
    "intellectual property",
    "watermark removal",
    "not able to help",
    "cannot help with",
    "decline",
    "can't assist",
)

SAFETY_MESSAGE = (
    "The AI model blocked this request due to safety filters. "
    "Try selecting a different region or using a different image."
)
REFUSAL_MESSAGE = (
    "The AI model declined to process this request. This may be due to content "
    "policy restrictions. Try selecting a different region or using a different image."
)


def build_prompt(region: Region) -> str:
    """Instruction sent alongside the image."""
    return (
        f"Remove the watermark from this image at position x={region.x}, y={region.y} "
        f"with width={region.width} and height={region.height}. Seamlessly fill the area "
        "with appropriate background content that matches the surrounding pixels. "
        "Return only the edited image without any text response."
    )


def build_request_body(image: bytes, mime_type: str, region: Region) -> dict:
    return {
        "contents": [
            {
                "parts": [
                    {
                        "inline_data": {
                            "mime_type": mime_type,
                            "data": base64.b64encode(image).decode("ascii"),
                        }
                    },
                    {"text": build_prompt(region)},
                ]
            }
        ],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }


# ---------------------------------------------------------------------------
# Response normalization.
# ---------------------------------------------------------------------------


@dataclass
class ReplyPart:
    """One content part, with both inline-data spellings folded together."""

    image_data: str | None = None
    image_mime_type: str | None = None
    text: str | None = None


@dataclass
class GeminiReply:
    """The fields of a ``generateContent`` answer the classifier looks at."""

    error_message: str | None = None
    finish_reason: str | None = None
    block_reason: str | None = None
    parts: list[ReplyPart] = field(default_factory=list)


def _unexpected_shape() -> EraserError:
    return remote_error(
        "Unexpected response format from API. Please try again.",
        kind=ErrorKind.UNEXPECTED_REMOTE_SHAPE,
    )


def _as_dict(value) -> dict:
    """*value* as a mapping; missing becomes empty, any other type is malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _unexpected_shape()
    return value


def parse_response(data: dict) -> GeminiReply:
    """Normalize a raw ``generateContent`` JSON answer.

    Any node of the wrong JSON type raises an ``UNEXPECTED_REMOTE_SHAPE``
    error, which is terminal.
    """
    if not isinstance(data, dict):
        raise _unexpected_shape()

    reply = GeminiReply()

    error = data.get("error")
    if error:
        reply.error_message = error.get("message") if isinstance(error, dict) else str(error)
        reply.error_message = reply.error_message or "Unknown error"

    reply.block_reason = _as_dict(data.get("promptFeedback")).get("blockReason")

    candidates = data.get("candidates") or []
    if not isinstance(candidates, list):
        raise _unexpected_shape()
    if not candidates:
        return reply

    candidate = _as_dict(candidates[0])
    reply.finish_reason = candidate.get("finishReason")
    parts = _as_dict(candidate.get("content")).get("parts") or []
    if not isinstance(parts, list):
        raise _unexpected_shape()
    for raw in parts:
        raw = _as_dict(raw)
        inline = _as_dict(raw.get("inline_data") or raw.get("inlineData"))
        reply.parts.append(
            ReplyPart(
                image_data=inline.get("data"),
                image_mime_type=inline.get("mime_type") or inline.get("mimeType"),
                text=raw.get("text"),
            )
        )
    return reply

    candidate = candidates[0] or {}
    reply.finish_reason = candidate.get("finishReason")
    for raw in (candidate.get("content") or {}).get("parts") or []:
        inline = raw.get("inline_data") or raw.get("inlineData") or {}
        reply.parts.append(
            ReplyPart(
                image_data=inline.get("data"),
                image_mime_type=inline.get("mime_type") or inline.get("mimeType"),
                text=raw.get("text"),
            )
        )
    return reply


def is_policy_refusal(text: str) -> bool:
    lowered = text.lower()
    return any(pattern in lowered for pattern in POLICY_REFUSAL_PATTERNS)


def extract_image(reply: GeminiReply) -> bytes:
    """Return the decoded image of *reply* or raise the matching terminal error."""
    if reply.error_message:
        raise remote_error(reply.error_message)

    if reply.finish_reason and reply.finish_reason != "STOP":
        logger.warning("Gemini finish reason: %s", reply.finish_reason)
        if reply.finish_reason == "SAFETY":
            raise content_policy(SAFETY_MESSAGE)
        if reply.finish_reason == "RECITATION":
            raise remote_error(
                "The model detected potential copyright issues. Try a different image."
            )
        raise remote_error(f"Generation stopped early (finish reason {reply.finish_reason}).")

    if not reply.parts:
        if reply.block_reason:
            logger.warning("Prompt blocked: %s", reply.block_reason)
            raise content_policy(
                f"Request blocked: {reply.block_reason}. Try a different image or region."
            )
        raise remote_error(
            "No content in response. The API may be experiencing issues - please try again."
        )

    image_part = next((p for p in reply.parts if p.image_data), None)
    if image_part is not None:
        try:
            return base64.b64decode(image_part.image_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise remote_error(
                f"Image data in response is not valid base64: {e}",
                kind=ErrorKind.UNEXPECTED_REMOTE_SHAPE,
            ) from e

    text_part = next((p for p in reply.parts if p.text), None)
    if text_part is not None:
        if is_policy_refusal(text_part.text):
            logger.warning("Content policy refusal detected: %s", text_part.text)
            raise content_policy(REFUSAL_MESSAGE)
        logger.warning("Unexpected text-only response: %s", text_part.text)
        raise remote_error(
            f'The model returned text instead of an image: "{text_part.text[:100]}..."'
        )

    logger.error("Unexpected response format. Parts: %s", reply.parts)
    raise _unexpected_shape()


# ---------------------------------------------------------------------------
# Client.
# ---------------------------------------------------------------------------


class GeminiClient:
    """Synchronous Gemini client with retry and refusal detection.

    Args:
        config: Application configuration (credential, model, retry policy).
        http_client: Optional pre-built ``httpx.Client``; tests pass one
            backed by ``httpx.MockTransport``.
        sleep: Function used to wait between attempts.
    """

    def __init__(
        self,
        config: EraserConfig,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._http = http_client or httpx.Client(timeout=config.request_timeout_seconds)
        self._sleep = sleep

    @property
    def generate_url(self) -> str:
        return f"{self._config.gemini_api_base}/models/{self._config.gemini_model}:generateContent"

    @property
    def models_url(self) -> str:
        return f"{self._config.gemini_api_base}/models"

    def resolve_api_key(self, override: str | None = None) -> str:
        """Pick the per-request key over the configured one.

        Raises:
            EraserError: ``NOT_CONFIGURED`` when neither is set.
        """
        api_key = override or self._config.gemini_api_key
        if not api_key:
            raise not_configured()
        return api_key

    def remove_watermark(
        self,
        image: bytes,
        mime_type: str,
        region: Region,
        api_key: str | None = None,
    ) -> bytes:
        """Ask the model to inpaint *region* of *image* and return the edited image.

        Raises:
            EraserError: the terminal error of the first non-retryable
                failure, or the last error once every attempt has failed.
        """
        key = self.resolve_api_key(api_key)
        body = build_request_body(image, mime_type, region)

        last_error: EraserError | None = None
        for attempt in range(1, self._config.max_attempts + 1):
            if last_error is not None:
                delay = self._config.retry_delay_seconds * (attempt - 1)
                logger.warning(
                    "Attempt %d failed, retrying in %.1fs: %s",
                    attempt - 1,
                    delay,
                    last_error.message,
                )
                self._sleep(delay)

            try:
                return self._request_once(key, body, attempt)
            except EraserError as e:
                if not e.retryable:
                    raise
                last_error = e

        raise last_error or remote_error("All retry attempts failed")

    def _request_once(self, api_key: str, body: dict, attempt: int) -> bytes:
        try:
            response = self._http.post(self.generate_url, params={"key": api_key}, json=body)
        except httpx.HTTPError as e:
            logger.error("Gemini API request failed (attempt %d): %s", attempt, e)
            raise remote_error(str(e) or type(e).__name__, kind=ErrorKind.REMOTE_TRANSIENT) from e

        if response.is_error:
            status = response.status_code
            logger.error("Gemini API error (attempt %d): %d - %s", attempt, status, response.text)
            kind = ErrorKind.REMOTE_TRANSIENT if status >= 500 else ErrorKind.REMOTE_TERMINAL
            raise remote_error(
                f"API returned status {status}: {response.text}",
                kind=kind,
                remote_status=status,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Gemini returned a non-JSON body (attempt %d)", attempt)
            raise remote_error(
                "Unexpected response format from API. Please try again.",
                kind=ErrorKind.UNEXPECTED_REMOTE_SHAPE,
            ) from e

        reply = parse_response(data)
        logger.debug(
            "Gemini response: error=%s finish=%s parts=%s",
            bool(reply.error_message),
            reply.finish_reason,
            [
                "image" if p.image_data else "text" if p.text else "other"
                for p in reply.parts
            ],
        )
        return extract_image(reply)

    def test_connection(self, api_key: str | None = None) -> bool:
        """Check that the models endpoint answers.  Never raises; failures read as False."""
        try:
            key = self.resolve_api_key(api_key)
            response = self._http.get(self.models_url, params={"key": key})
        except EraserError as e:
            logger.info("Gemini connection test failed: %s", e)
            return False
        except Exception as e:
            logger.warning("Gemini connection test failed: %s: %s", type(e).__name__, e)
            return False
        return response.is_success

    def list_models(self, api_key: str | None = None) -> list[str]:
        """Names of the models visible to the credential, without the ``models/`` prefix."""
        key = self.resolve_api_key(api_key)
        try:
            response = self._http.get(self.models_url, params={"key": key})
        except httpx.HTTPError as e:
            raise remote_error(str(e) or type(e).__name__, kind=ErrorKind.REMOTE_TRANSIENT) from e

        if not response.is_success:
            raise remote_error("Failed to fetch models", remote_status=response.status_code)

        try:
            models = response.json().get("models") or []
        except (ValueError, AttributeError) as e:
            raise remote_error(
                "Unexpected response format from API.",
                kind=ErrorKind.UNEXPECTED_REMOTE_SHAPE,
            ) from e
        return [model["name"].removeprefix("models/") for model in models if model.get("name")]

    def close(self) -> None:
        self._http.close()
