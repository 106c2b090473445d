"""Region Eraser: FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, the error handlers that
shape failure bodies, and the ``main()`` CLI function that launches the
uvicorn server.

Architecture
------------
- **Processing** is done by :class:`~region_eraser.core.pipeline.EraserPipeline`,
  created on startup and stored on ``app.state``.  Route handlers reach it
  through the :func:`get_pipeline` dependency.
- **Blocking work** (image transforms, the remote call with its retry
  delays) runs in the threadpool so the event loop stays responsive.
- **Storage** is two flat directories of blobs; a background task sweeps
  blobs older than ``cleanup_max_age_seconds``.
- **Errors** are answered as ``{statusCode, message, timestamp, path}``.

Endpoints
---------
========  ====================================  ================================
Method    Path                                  Purpose
========  ====================================  ================================
GET       ``/api/health``                       Liveness check
POST      ``/api/watermark/remove``             Erase a region from an upload
POST      ``/api/watermark/info``               Metadata of an upload
GET       ``/api/watermark/download/{id}``      Download a processed image
GET       ``/api/watermark/preview/{id}``       JPEG preview of a processed image
DELETE    ``/api/watermark/{id}``               Delete a processed image
GET       ``/api/watermark/test-connection``    Check the Gemini credential
GET       ``/api/watermark/models``             List Gemini models
POST      ``/api/watermark/cleanup``            Sweep old blobs now
GET       ``/api/watermark/storage``            Bytes held by the blob stores
========  ====================================  ================================

The Gemini credential may be supplied per request in the
``X-Gemini-Api-Key`` header; it overrides the configured key.

Usage
-----
CLI (installed entry point)::

    region-eraser

Direct invocation::

    python -m region_eraser.api.main
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from region_eraser import __version__
from region_eraser.api.models import (
    ConnectionStatus,
    ErrorResponse,
    HealthResponse,
    ImageInfoResponse,
    ModelList,
    ProcessResultResponse,
    RegionForm,
    StorageUsageResponse,
)
from region_eraser.core import imaging
from region_eraser.core.config import config
from region_eraser.core.errors import EraserError
from region_eraser.core.pipeline import EraserPipeline

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Gemini-Api-Key"


# ---------------------------------------------------------------------------
# Background sweep.
# ---------------------------------------------------------------------------


async def sweep_periodically(pipeline: EraserPipeline, interval_seconds: float) -> None:
    """Remove old blobs every *interval_seconds* until cancelled.

    A failing sweep is logged and the loop carries on with the next one.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        logger.info("Running scheduled cleanup...")
        try:
            removed = await asyncio.to_thread(pipeline.cleanup)
            usage = await asyncio.to_thread(pipeline.storage_usage)
        except OSError as e:
            logger.warning("Scheduled cleanup failed: %s", e)
            continue
        except Exception:
            logger.exception("Scheduled cleanup raised an unexpected error")
            continue
        logger.info(
            "Scheduled cleanup completed: %d removed, current temp size: %.2f MB",
            removed,
            usage.total / 1024 / 1024,
        )


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds the :class:`EraserPipeline`, sweeps blobs left over from a
        previous run, and starts the periodic sweep (unless
        ``cleanup_interval_seconds`` is 0).

    On shutdown:
        Cancels the sweep and closes the HTTP client of the remote model.
    """
    # --- Startup -----------------------------------------------------------
    pipeline = EraserPipeline(config)
    app.state.pipeline = pipeline

    logger.info("Running startup cleanup...")
    removed = await asyncio.to_thread(pipeline.cleanup)
    logger.info("Startup cleanup completed: %d removed", removed)

    sweeper: asyncio.Task | None = None
    if config.cleanup_interval_seconds > 0:
        sweeper = asyncio.create_task(
            sweep_periodically(pipeline, config.cleanup_interval_seconds)
        )

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    pipeline.close()
    logger.info("Pipeline closed on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Region Eraser",
    description="Remove a marked region from an image with a remote inpainting model.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", API_KEY_HEADER],
)


def get_pipeline(request: Request) -> EraserPipeline:
    """Dependency returning the pipeline built at startup."""
    return request.app.state.pipeline


# ---------------------------------------------------------------------------
# Error handlers.
# ---------------------------------------------------------------------------


def _error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(
        status_code=status_code,
        message=message,
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@app.exception_handler(EraserError)
async def handle_eraser_error(request: Request, exc: EraserError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return _error_response(request, 400, "; ".join(messages) or "Invalid request")


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(version=__version__, timestamp=datetime.now(timezone.utc).isoformat())


@app.post("/api/watermark/remove", response_model=ProcessResultResponse)
async def remove_watermark(
    image: UploadFile = File(..., description="Image to edit."),
    x: int = Form(..., alias="region[x]"),
    y: int = Form(..., alias="region[y]"),
    width: int = Form(..., alias="region[width]"),
    height: int = Form(..., alias="region[height]"),
    lossless: bool = Form(False),
    api_key: str | None = Header(None, alias=API_KEY_HEADER),
    pipeline: EraserPipeline = Depends(get_pipeline),
) -> ProcessResultResponse:
    """Erase a rectangle from the uploaded image.

    The upload is validated, sent to the remote model, and the edited
    rectangle is pasted back onto the untouched original.

    Returns:
        Descriptor with download and preview paths of the stored result.

    Raises:
        EraserError: 413 for oversized uploads, 400 for bad formats or
            regions, 403 for content-policy refusals, 502/503 for remote
            failures.
    """
    data = await image.read()
    region = RegionForm(x=x, y=y, width=width, height=height).to_region()
    result = await run_in_threadpool(
        pipeline.process,
        data,
        image.filename or "upload",
        image.content_type,
        region,
        lossless=lossless,
        api_key=api_key,
    )
    return ProcessResultResponse.from_result(result)


@app.post("/api/watermark/info", response_model=ImageInfoResponse)
async def image_info(
    image: UploadFile = File(...),
    pipeline: EraserPipeline = Depends(get_pipeline),
) -> ImageInfoResponse:
    """Return width, height, format and size of an upload."""
    data = await image.read()
    info = await run_in_threadpool(pipeline.image_info, data, image.content_type)
    return ImageInfoResponse.from_info(info)


@app.get("/api/watermark/download/{filename}")
async def download(filename: str, pipeline: EraserPipeline = Depends(get_pipeline)) -> Response:
    """Stream a processed image as an attachment."""
    data = await run_in_threadpool(pipeline.get_processed, filename)
    return Response(
        content=data,
        media_type=imaging.mime_for_extension(filename),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/watermark/preview/{filename}")
async def preview(filename: str, pipeline: EraserPipeline = Depends(get_pipeline)) -> Response:
    """Return a JPEG preview of a processed image."""
    data = await run_in_threadpool(pipeline.get_preview, filename)
    return Response(
        content=data,
        media_type="image/jpeg",
        headers={"Cache-Control": "public, max-age=3600"},
    )


@app.get("/api/watermark/test-connection", response_model=ConnectionStatus)
async def test_connection(
    api_key: str | None = Header(None, alias=API_KEY_HEADER),
    pipeline: EraserPipeline = Depends(get_pipeline),
) -> ConnectionStatus:
    connected = await run_in_threadpool(pipeline.test_connection, api_key)
    return ConnectionStatus(connected=connected)


@app.get("/api/watermark/models", response_model=ModelList)
async def list_models(
    api_key: str | None = Header(None, alias=API_KEY_HEADER),
    pipeline: EraserPipeline = Depends(get_pipeline),
) -> ModelList:
    models = await run_in_threadpool(pipeline.list_models, api_key)
    return ModelList(models=models)


@app.get("/api/watermark/storage", response_model=StorageUsageResponse)
async def storage(pipeline: EraserPipeline = Depends(get_pipeline)) -> StorageUsageResponse:
    usage = await run_in_threadpool(pipeline.storage_usage)
    return StorageUsageResponse.from_usage(usage)


@app.post("/api/watermark/cleanup", status_code=204)
async def cleanup(pipeline: EraserPipeline = Depends(get_pipeline)) -> Response:
    """Sweep blobs older than the configured age right away."""
    await run_in_threadpool(pipeline.cleanup)
    return Response(status_code=204)


@app.delete("/api/watermark/{filename}", status_code=204)
async def delete_processed(
    filename: str, pipeline: EraserPipeline = Depends(get_pipeline)
) -> Response:
    """Delete a processed image.  Deleting a missing image is not an error."""
    await run_in_threadpool(pipeline.delete_processed, filename)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~region_eraser.core.config.config`
    (``REGION_ERASER_SERVER_HOST``, ``REGION_ERASER_SERVER_PORT``,
    ``REGION_ERASER_LOG_LEVEL``).

    Registered as the ``region-eraser`` console script in ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "region_eraser.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
