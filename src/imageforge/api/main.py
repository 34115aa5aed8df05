"""imageforge — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Configuration** is read once, in the lifespan handler, from
  :data:`~imageforge.core.config.config`.
- **Rate limiting** is a :class:`~imageforge.core.rate_limit.RateGovernor`
  stored on ``app.state`` and applied to the expensive routes through the
  :func:`~imageforge.api.rate_limiting.enforce_rate_limit` dependency.
- **Persistence** is an :class:`~imageforge.core.storage.ArtifactStore`
  stored on ``app.state``: local files first, Google Cloud Storage second,
  one JSON metadata record per artifact.
- **Image generation** is delegated to ``app.state.generator``, an object
  implementing :class:`~imageforge.core.generator.ImageGenerator`.  None is
  installed by default; the generate and edit routes answer 503 until a
  deployment provides one.

Store-backed routes are plain ``def`` handlers so that disk and network I/O
runs in FastAPI's threadpool instead of on the event loop.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/health``               Liveness and version
POST      ``/api/generate``             Generate and store an image (rate limited)
POST      ``/api/edit``                 Edit a stored image (rate limited)
POST      ``/api/upload``               Store an uploaded image (rate limited)
GET       ``/api/images``               List stored images, newest first
DELETE    ``/api/images``               Retention cleanup (count or age)
GET       ``/api/images/{id}``          Single image metadata
DELETE    ``/api/images/{id}``          Delete image from both tiers
GET       ``/files/{filename}``         Serve a binary from the local tier
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    imageforge

Direct invocation::

    python -m imageforge.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imageforge import __version__
from imageforge.api.models import EditRequest, GenerateRequest
from imageforge.api.rate_limiting import enforce_rate_limit, http_exception_with_rate_limit_headers
from imageforge.core.artifacts import ArtifactDescriptor, NamingPolicy
from imageforge.core.config import config
from imageforge.core.generator import GeneratedImage, GenerationError, ImageGenerator
from imageforge.core.images import sniff_mime_type
from imageforge.core.rate_limit import RateGovernor
from imageforge.core.storage import ArtifactStore, DeleteStatus, LocalWriteError

logger = logging.getLogger(__name__)

LOCAL_FILES_PATH = "/files"


# ---------------------------------------------------------------------------
# Application lifecycle: governor and store setup.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared state objects once per application lifetime.

    On startup:
        Creates the :class:`RateGovernor` and the :class:`ArtifactStore` from
        the configuration and stores them on ``app.state``.  The generator
        slot starts empty.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app.state.rate_governor = RateGovernor(
        limit=config.rate_limit,
        window_ms=config.rate_limit_window_ms,
        sweep_interval_ms=config.rate_limit_sweep_interval_ms,
    )
    app.state.artifact_store = ArtifactStore.from_config(config)
    app.state.retention_count = config.retention_count
    app.state.generator = None
    logger.info(
        f"Rate governor initialised ({config.rate_limit} requests per "
        f"{config.rate_limit_window_ms} ms); artifact store ready."
    )

    yield


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="imageforge",
    description="Rate-governed image generation API with two-tier artifact storage.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(StarletteHTTPException, http_exception_with_rate_limit_headers)


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _store(request: Request) -> ArtifactStore:
    return request.app.state.artifact_store


def _generator(request: Request) -> ImageGenerator:
    generator: ImageGenerator | None = request.app.state.generator
    if generator is None:
        raise _error(503, "GENERATOR_UNAVAILABLE", "No image generator is configured")
    return generator


def _save_generated(store: ArtifactStore, image: GeneratedImage, prompt: str) -> dict:
    """Persist a model result and build the generation response payload."""
    if not image.data:
        raise _error(500, "NO_IMAGE_GENERATED", "No image was generated")

    try:
        metadata = store.save(
            image.data,
            prompt=prompt,
            mime_type=image.mime_type,
            naming=NamingPolicy.PROMPT_TIMESTAMP,
        )
    except LocalWriteError as e:
        logger.error(f"Error saving generated image: {e}", exc_info=True)
        raise _error(500, "SAVE_FAILED", "Failed to save image") from e

    return _image_payload(metadata, image.description)


def _image_payload(metadata: ArtifactDescriptor, description: str | None) -> dict:
    return {
        "success": True,
        "data": {
            "imageUrl": metadata.url,
            "description": description,
            "metadata": metadata.to_dict(),
        },
    }


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Return service health and version."""
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        },
    }


@app.post("/api/generate", dependencies=[Depends(enforce_rate_limit)])
def generate_image(req: GenerateRequest, request: Request) -> dict:
    """Generate an image from a prompt and store it.

    This endpoint:

    1. Passes the rate governor (429 otherwise).
    2. Validates that a prompt was supplied.
    3. Calls the configured image generator.
    4. Saves the result with the prompt-timestamp filename policy.

    Returns:
        Dictionary with ``success`` and ``data`` holding ``imageUrl``,
        ``description`` and ``metadata``.

    Raises:
        HTTPException: 400 for a missing prompt, 502 when the model fails,
            500 when nothing was generated or the local write fails, 503 if
            no generator is configured.
    """
    prompt = req.prompt.strip()
    if not prompt:
        raise _error(400, "MISSING_PROMPT", "Prompt is required")

    generator = _generator(request)
    try:
        image = generator.generate(prompt)
    except GenerationError as e:
        logger.error(f"Error generating image: {e}", exc_info=True)
        raise _error(502, "GENERATION_FAILED", "Failed to generate image") from e

    return _save_generated(_store(request), image, prompt)


@app.post("/api/edit", dependencies=[Depends(enforce_rate_limit)])
def edit_image(req: EditRequest, request: Request) -> dict:
    """Edit a stored image with a text instruction and store the result.

    Raises:
        HTTPException: 400 for missing fields, 404 if the source image is
            unknown or its binary is gone, 502/500/503 as for generation.
    """
    prompt = req.prompt.strip()
    if not prompt:
        raise _error(400, "MISSING_PROMPT", "Prompt is required")
    if not req.image_id:
        raise _error(400, "MISSING_IMAGE_ID", "Image ID is required")

    store = _store(request)
    source = store.get(req.image_id)
    if source is None:
        raise _error(404, "IMAGE_NOT_FOUND", f"Image with ID {req.image_id} not found")
    try:
        source_bytes = store.read_bytes(source)
    except FileNotFoundError as e:
        raise _error(404, "IMAGE_NOT_FOUND", f"Image file for {req.image_id} is missing") from e

    generator = _generator(request)
    try:
        image = generator.edit(prompt, source_bytes, source.mime_type)
    except GenerationError as e:
        logger.error(f"Error editing image: {e}", exc_info=True)
        raise _error(502, "EDIT_FAILED", "Failed to edit image") from e

    return _save_generated(store, image, prompt)


@app.post("/api/upload", dependencies=[Depends(enforce_rate_limit)])
def upload_image(request: Request, image: UploadFile | None = File(None)) -> dict:
    """Store an uploaded image under its content hash.

    The MIME type is taken from the decoded image rather than the declared
    content type.  Identical uploads share one binary.

    Raises:
        HTTPException: 400 if no image was sent or it is not an image, 500
            if the local write fails.
    """
    if image is None:
        raise _error(400, "MISSING_IMAGE", "Image file is required")

    data = image.file.read()
    try:
        mime_type = sniff_mime_type(data)
    except ValueError as e:
        raise _error(400, "INVALID_IMAGE", str(e)) from e

    try:
        metadata = _store(request).save(
            data,
            prompt=None,
            mime_type=mime_type,
            naming=NamingPolicy.CONTENT_HASH,
        )
    except LocalWriteError as e:
        logger.error(f"Error uploading image: {e}", exc_info=True)
        raise _error(500, "UPLOAD_ERROR", "Failed to upload image") from e

    return _image_payload(metadata, None)


@app.get("/api/images")
def list_images(request: Request, limit: int = Query(default=100, ge=1)) -> dict:
    """Return stored images newest first.

    Args:
        limit: Maximum number of images to return.

    Returns:
        Dictionary with ``images`` and ``pagination``.
    """
    images = _store(request).list(limit)
    return {
        "success": True,
        "data": {
            "images": [d.to_dict() for d in images],
            "pagination": {"limit": limit, "total": len(images)},
        },
    }


@app.delete("/api/images")
def cleanup_images(
    request: Request,
    keep: int | None = Query(default=None, ge=0),
    max_age_days: float | None = Query(default=None, gt=0),
    max_age: float | None = Query(default=None, gt=0, alias="maxAge"),
) -> dict:
    """Apply the retention policy.

    With ``max_age_days`` (or its camelCase form ``maxAge``) every image
    older than that many days is deleted.  Otherwise all but the ``keep``
    newest images are deleted (``keep`` defaults to the configured retention
    count).

    Returns:
        Dictionary with ``deletedCount`` and the policy that was applied.
    """
    store = _store(request)
    if max_age_days is None:
        max_age_days = max_age
    if max_age_days is not None:
        deleted = store.cleanup_older_than(timedelta(days=max_age_days))
        return {"success": True, "data": {"deletedCount": deleted, "maxAgeDays": max_age_days}}

    retention = keep if keep is not None else request.app.state.retention_count
    deleted = store.cleanup(retention)
    return {"success": True, "data": {"deletedCount": deleted, "keep": retention}}


@app.get("/api/images/{image_id}")
def get_image(image_id: str, request: Request) -> dict:
    """Return a single image's metadata.

    Raises:
        HTTPException: 404 if the image is not found.
    """
    metadata = _store(request).get(image_id)
    if metadata is None:
        raise _error(404, "IMAGE_NOT_FOUND", f"Image with ID {image_id} not found")
    return {"success": True, "data": {"metadata": metadata.to_dict()}}


@app.delete("/api/images/{image_id}")
def delete_image(image_id: str, request: Request) -> dict:
    """Delete an image from both tiers and the metadata index.

    Raises:
        HTTPException: 404 if the image is not found, 500 if its metadata
            record could not be removed.
    """
    status = _store(request).delete(image_id)
    if status is DeleteStatus.NOT_FOUND:
        raise _error(404, "IMAGE_NOT_FOUND", f"Image with ID {image_id} not found")
    if status is DeleteStatus.FAILED:
        raise _error(500, "DELETE_FAILED", "Failed to delete image")
    return {"success": True, "data": {"message": f"Image {image_id} deleted successfully"}}


@app.get(f"{LOCAL_FILES_PATH}/{{filename}}")
def serve_local_file(filename: str, request: Request) -> FileResponse:
    """Serve a binary from the local tier.

    The route path is fixed; ``local_url_prefix`` only changes the URLs
    written into descriptors, for deployments where a proxy or CDN serves
    the local tier under another path.

    Raises:
        HTTPException: 404 if the file does not exist or the name is invalid.
    """
    try:
        path = _store(request).local_tier.path_for(filename)
    except ValueError as e:
        raise HTTPException(status_code=404, detail="File not found") from e
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~imageforge.core.config.config` (which
    loads from ``IMAGEFORGE_SERVER_HOST`` and ``IMAGEFORGE_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``imageforge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "imageforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
