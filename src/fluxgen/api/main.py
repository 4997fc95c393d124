"""Fluxgen — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all routes, and the ``main()`` CLI function that
launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`fluxgen.core.config.config`
  (``FLUXGEN_*`` environment variables).
- **Image generation** is delegated to
  :class:`~fluxgen.services.generation.GenerationService`, which calls the
  inference backend, writes PNGs to the blob store and one record per batch
  to the history index.
- **The HTML page** is served as a raw ``HTMLResponse``; the page talks to
  the JSON endpoints below.
- **CORS** is fully permissive and applied to every response, including
  errors and unknown routes.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
OPTIONS   any                           CORS preflight (200, empty body)
GET       ``/``                         Serve the HTML page
POST      ``/api/generate``             Generate and store an image batch
GET       ``/api/history``              20 most recent batches, newest first
GET       ``/api/image/{key}``          Stored PNG by blob key
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    fluxgen

Direct invocation::

    python -m fluxgen.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from fluxgen import __version__
from fluxgen.api.validation import validate_generation_request
from fluxgen.core.config import config
from fluxgen.core.errors import BatchFailure, BlobNotFound, RequestValidationError
from fluxgen.core.inference import build_inference_client
from fluxgen.core.payload import PNG_MIME
from fluxgen.services.generation import GenerationService
from fluxgen.services.history import list_history
from fluxgen.services.images import fetch_image
from fluxgen.storage.blob_store import build_blob_store
from fluxgen.storage.index_store import SqliteIndexStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


# ---------------------------------------------------------------------------
# Application lifecycle — collaborator setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the inference client and both stores from configuration.

    Everything is stored on ``app.state`` so route handlers never touch
    module-level state.  The inference client is closed on shutdown (which
    also unloads a local pipeline and frees GPU memory).

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    inference = build_inference_client(config)
    blob_store = build_blob_store(config)
    index_store = SqliteIndexStore(config.index_db)

    app.state.config = config
    app.state.blob_store = blob_store
    app.state.index_store = index_store
    app.state.generation_service = GenerationService(inference, blob_store, index_store, config)
    logger.info("Fluxgen %s ready (inference=%s).", __version__, config.inference_backend)

    yield

    await inference.aclose()
    logger.info("Inference client closed on shutdown.")


app = FastAPI(
    title="Fluxgen",
    description="FLUX.1 [schnell] text-to-image generation with stored history.",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def apply_cors(request: Request, call_next) -> Response:
    """Answer every OPTIONS request and stamp CORS headers on all responses."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


@app.exception_handler(StarletteHTTPException)
async def plain_not_found(request: Request, exc: StarletteHTTPException) -> Response:
    """Unknown routes and unsupported methods are a plain-text 404."""
    if exc.status_code in (404, 405):
        return PlainTextResponse("Not Found", status_code=404)
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code)


def _json_error(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(body, status_code=status_code)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def index(request: Request) -> HTMLResponse:
    """Serve the single-page frontend from ``templates/index.html``."""
    index_path = request.app.state.config.templates_dir / "index.html"
    if not index_path.exists():
        return HTMLResponse("<h1>Fluxgen</h1><p>index.html not found</p>", status_code=404)
    return HTMLResponse(content=index_path.read_text(encoding="utf-8"))


@app.post("/api/generate")
async def generate_images(request: Request) -> JSONResponse:
    """Generate a batch of images and record it in the history index.

    The body is parsed by hand rather than through a Pydantic body parameter
    so that bound violations become 400s checked in a fixed order (prompt,
    steps, numImages) and a malformed body is a 500, not a 422.

    Returns:
        200 with the stored images; ``generatedCount`` below ``numImages``
        means some attempts failed. 400 ``{error}`` on validation failure.
        500 ``{error, details}`` when every attempt failed or anything
        unexpected happened.
    """
    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning("Rejected unparsable generate body: %s", exc)
        return _json_error(500, "Failed to generate image", str(exc))

    try:
        gen_request = validate_generation_request(payload, request.app.state.config)
    except RequestValidationError as exc:
        return _json_error(400, str(exc))

    service: GenerationService = request.app.state.generation_service
    try:
        result = await service.generate(gen_request)
    except BatchFailure as exc:
        return _json_error(500, "Failed to generate any images", str(exc))
    except Exception as exc:
        logger.exception("Generation error.")
        return _json_error(500, "Failed to generate image", str(exc))

    return JSONResponse(result.to_response().model_dump(by_alias=True))


@app.get("/api/history")
async def get_history(request: Request) -> JSONResponse:
    """Return up to ``history_limit`` batch records, newest first."""
    try:
        records = await list_history(
            request.app.state.index_store,
            limit=request.app.state.config.history_limit,
        )
    except Exception:
        logger.exception("Failed to fetch history.")
        return _json_error(500, "Failed to fetch history")

    return JSONResponse([record.model_dump(by_alias=True) for record in records])


@app.get("/api/image/{key:path}")
async def get_image(key: str, request: Request) -> Response:
    """Serve a stored PNG by its blob key (e.g. ``images/1700000000000-1.png``)."""
    try:
        blob = await fetch_image(request.app.state.blob_store, key)
    except BlobNotFound:
        return PlainTextResponse("Image not found", status_code=404)
    except Exception:
        logger.exception("Failed to fetch image %s.", key)
        return PlainTextResponse("Failed to fetch image", status_code=500)

    return Response(
        content=blob.data,
        media_type=PNG_MIME,
        headers={"Cache-Control": request.app.state.config.cache_control},
    )


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~fluxgen.core.config.config`
    (``FLUXGEN_SERVER_HOST``, ``FLUXGEN_SERVER_PORT``, ``FLUXGEN_LOG_LEVEL``).

    This function is registered as the ``fluxgen`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "fluxgen.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
