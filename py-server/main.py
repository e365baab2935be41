"""Catalog Image Extractor Python Server"""

import asyncio
import importlib
import json
import logging
import os
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI, UploadFile, File, HTTPException, Query, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from rich.console import Console
from rich.logging import RichHandler

from engine import EngineConfig, PageSelection, RegionCropOptions
from models.pdf_types import PageImagesResponse, RegionImageRequest
from extractors.page_images import extract_region_image, render_pdf_pages
from utils.endpoint_decorators import handle_pdf_processing

API_VERSION = "1.0.0"
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]
DEFAULT_CACHE_MAX_AGE = 3600
DEFAULT_TIMEOUT_SECONDS = 300
MIN_TIMEOUT_SECONDS = 30
MAX_TIMEOUT_SECONDS = 600

# Reported name -> (import name, version attribute, role)
RUNTIME_LIBRARIES = {
    "PIL": ("PIL", "__version__", "image_encoding"),
    "PyMuPDF": ("fitz", "VersionBind", "page_rendering"),
    "pikepdf": ("pikepdf", "__version__", "content_streams"),
    "numpy": ("numpy", "__version__", "color_conversion"),
}

logger = logging.getLogger("rich")

app = FastAPI(
    title="Catalog Image Extractor API",
    description="Render catalog PDF pages and extract product region images",
    version=API_VERSION
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": "Catalog Image Extractor API",
        "version": API_VERSION,
        "endpoints": ["/render-pages", "/extract-region-image", "/health"],
        "features": [
            "Whole-page JPEG rendering for product recognition",
            "Native embedded image extraction for product regions",
            "Text-free high-resolution region rendering",
            "CMYK, RGB and RGBA image support"
        ]
    }

@app.get("/health")
async def health_check():
    """Report the versions of the imaging libraries, or 503 if one is missing."""
    versions = {}
    roles = {}
    for label, (module_name, version_attr, role) in RUNTIME_LIBRARIES.items():
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            logger.error(f"Health check: {label} unavailable ({e})")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "error": f"{label} is not installed: {e}"}
            )
        versions[label] = str(getattr(module, version_attr, "unknown"))
        roles[role] = label

    return {
        "status": "healthy",
        "version": API_VERSION,
        "features": roles,
        "dependencies": versions
    }

@app.post("/render-pages", response_model=PageImagesResponse)
@handle_pdf_processing
async def render_pages(
    *,
    request: Request,
    file: UploadFile = File(...),
    pages: Optional[str] = Form(None, description='Pages to render, e.g. "1-3,5" (default: all)'),
    processing_timeout: Optional[int] = Query(DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS, description="Processing timeout in seconds")
):
    """
    Render selected pages to JPEG for the recognition service.

    **Parameters:**
    - `pages`: Page selection like `"1-3,5"`; omit for every page

    **Returns:**
    - One image per page with `filename` (`<file>-page-<n>.jpg`), `page`,
      SHA-256 `hash` and a `base64` data URI
    """
    file_content = request.state.file_content
    filename = request.state.filename

    try:
        selection = PageSelection.parse(pages)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid page selection: {str(e)}")

    logger.info(f"Rendering pages {selection} of {filename}")

    images = await asyncio.to_thread(
        render_pdf_pages,
        file_content,
        filename,
        selection
    )

    logger.info(f"Rendered {len(images)} page(s) of {filename}")
    return PageImagesResponse(
        filename=filename,
        pageCount=len(images),
        images=[image.to_image_info() for image in images]
    )

@app.post("/extract-region-image")
@handle_pdf_processing
async def extract_region(
    *,
    request: Request,
    file: UploadFile = File(...),
    page_number: int = Form(..., ge=1, description="Page number (1-based)"),
    box: str = Form(..., description="JSON [ymin, xmin, ymax, xmax] on a 0-1000 scale"),
    scale: Optional[float] = Form(None, gt=0, description="Fallback render scale (default 4.0)"),
    processing_timeout: Optional[int] = Query(DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS, description="Processing timeout in seconds")
):
    """
    Best image of one product region.

    Tries the embedded bitmap first and falls back to a text-free crop render.

    **Returns:**
    - `image/png` bytes with `ETag` (content hash) and `Cache-Control` (1 hour)
    - `204 No Content` when the box is empty after clamping
    """
    file_content = request.state.file_content
    filename = request.state.filename

    try:
        params = RegionImageRequest(page_number=page_number, box=json.loads(box), scale=scale)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid region request: {str(e)}")

    config = EngineConfig.default()
    if params.scale is not None:
        config.region_crop = RegionCropOptions(default_scale=params.scale)

    logger.info(f"Extracting region {params.box} from page {params.page_number} of {filename}")

    image = await asyncio.to_thread(
        extract_region_image,
        file_content,
        filename,
        params.page_number,
        params.box,
        config
    )

    if image is None:
        return Response(status_code=204)

    logger.info(f"Extracted region image from page {params.page_number} ({len(image.data)} bytes)")

    return Response(
        content=image.data,
        media_type=image.mime_type,
        headers={
            "ETag": f'"{image.content_hash[:32]}"',
            "Cache-Control": f"public, max-age={DEFAULT_CACHE_MAX_AGE}",
            "Content-Disposition": f'inline; filename="{image.filename}"'
        }
    )

# Messages emitted while uvicorn tears down on Ctrl+C
_SHUTDOWN_NOISE = (KeyboardInterrupt, asyncio.CancelledError)
_PROJECT_LOGGERS = ("main", "rich", "engine", "extractors", "processors", "utils")


def _is_shutdown_noise(record: logging.LogRecord) -> bool:
    if record.exc_info and record.exc_info[0] in _SHUTDOWN_NOISE:
        return True
    message = str(record.msg)
    return any(exc.__name__ in message for exc in _SHUTDOWN_NOISE)


def _configure_server_logging() -> Console:
    """
    Route all logging through one RichHandler.

    Third-party loggers stay at WARNING; the project's own loggers follow
    LOG_LEVEL (default INFO).
    """
    console = Console(force_terminal=True)
    handler = RichHandler(console=console, rich_tracebacks=True, show_time=False, show_path=True)
    handler.addFilter(lambda record: not _is_shutdown_noise(record))

    logging.basicConfig(level=logging.WARNING, format="%(message)s", handlers=[handler])

    for server_logger in ("uvicorn", "uvicorn.error", "fastapi"):
        logging.getLogger(server_logger).setLevel(logging.INFO)

    project_level = os.getenv("LOG_LEVEL", "INFO").upper()
    for name in _PROJECT_LOGGERS:
        logging.getLogger(name).setLevel(project_level)

    return console


def _pick_port(preferred: int, attempts: int = 100) -> int:
    """First bindable port in [preferred, preferred + attempts), else preferred."""
    for candidate in range(preferred, preferred + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            try:
                probe.bind(("localhost", candidate))
            except OSError:
                continue
        return candidate
    return preferred


server_console = _configure_server_logging()

if __name__ == "__main__":
    port = _pick_port(int(os.getenv("PORT", "8000")))
    server_console.print(f"[bold green]Catalog extractor listening on http://localhost:{port}[/bold green]")

    try:
        uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True, log_config=None)
    except KeyboardInterrupt:
        server_console.print("\n[bold yellow]Server stopped.[/bold yellow]")
