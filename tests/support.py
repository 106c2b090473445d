"""Image factories and a scripted Gemini fake shared by the test suite."""

import base64
import io
import json
from typing import Callable

import httpx
from PIL import Image


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    """Encode a PIL image to bytes."""
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


def gradient_image(width: int, height: int, mode: str = "RGB") -> Image.Image:
    """Build a deterministic image whose pixels differ from row to row and column to column."""
    vertical = Image.linear_gradient("L").resize((width, height))
    horizontal = Image.linear_gradient("L").rotate(90).resize((width, height))
    constant = Image.new("L", (width, height), 128)
    image = Image.merge("RGB", (vertical, horizontal, constant))
    if mode == "RGBA":
        image.putalpha(Image.new("L", (width, height), 200))
    return image


def image_reply(data: bytes, mime_type: str = "image/png", key: str = "inlineData") -> dict:
    """A generateContent answer carrying one inline image."""
    mime_key = "mimeType" if key == "inlineData" else "mime_type"
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {key: {mime_key: mime_type, "data": base64.b64encode(data).decode()}}
                    ]
                },
                "finishReason": "STOP",
            }
        ]
    }


def text_reply(text: str) -> dict:
    """A generateContent answer carrying only text."""
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}


class FakeGemini:
    """Scripted stand-in for the Gemini REST API, served through httpx.MockTransport.

    Queue ``httpx.Response`` objects, exceptions (raised as transport
    errors), or callables taking the request.  When the queue is empty,
    ``default`` answers.
    """

    def __init__(self) -> None:
        self.queue: list = []
        self.requests: list[httpx.Request] = []
        self.default: Callable[[httpx.Request], httpx.Response] | None = None

    def push(self, *items) -> None:
        self.queue.extend(items)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.queue.pop(0) if self.queue else self.default
        if item is None:
            raise AssertionError(f"Unexpected request to {request.url}")
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    def request_json(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)

    def sent_image(self, index: int = -1) -> Image.Image:
        part = self.request_json(index)["contents"][0]["parts"][0]["inline_data"]
        return Image.open(io.BytesIO(base64.b64decode(part["data"])))

    def sent_prompt(self, index: int = -1) -> str:
        return self.request_json(index)["contents"][0]["parts"][1]["text"]


def fill_region_editor(
    region: tuple[int, int, int, int],
    color=(0, 0, 255),
    output_size: tuple[int, int] | None = None,
):
    """Build a FakeGemini answer that paints *region* and optionally rescales the result.

    Mimics a model that edits the requested area but returns the image at a
    size of its own choosing.
    """
    x, y, w, h = region

    def respond(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        inline = payload["contents"][0]["parts"][0]["inline_data"]
        image = Image.open(io.BytesIO(base64.b64decode(inline["data"]))).convert("RGB")
        image.paste(color, (x, y, x + w, y + h))
        if output_size is not None:
            image = image.resize(output_size, Image.Resampling.NEAREST)
        return httpx.Response(200, json=image_reply(encode_image(image)))

    return respond
