"""Clipsink Backend Application.

This is the main entry point for the Clipsink HTTP service. Clipsink
receives screenshots from a capture client (ShareX or anything speaking
its custom-uploader protocol), optionally stores them under a configured
directory, and copies every accepted image to the system clipboard.

Modules:
    - upload: multipart ingestion pipeline (sniff, place, write, decode)
    - clipboard: serialised clipboard delivery
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clipsink import __version__
from clipsink.clipboard.backend import CopykittenBackend
from clipsink.clipboard.service import ClipboardSink, get_clipboard_sink, set_clipboard_sink
from clipsink.config import LOG_FORMAT, get_config
from clipsink.upload.router import router as upload_router
from clipsink.upload.service import IngestionService, set_ingestion_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
)

# Pillow logs every plugin it probes at DEBUG; multipart logs every part.
for _noisy in (
    "PIL",
    "multipart",
    "python_multipart",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    sink = get_clipboard_sink()
    if sink is None:
        sink = ClipboardSink(CopykittenBackend())
        set_clipboard_sink(sink)

    service = IngestionService(config, sink)
    set_ingestion_service(service)

    if config.target_dir:
        logger.info("Saving uploads under %s", config.target_dir)
    else:
        logger.info("No target_dir configured; uploads go to the clipboard only")

    yield  # Application runs here

    # Shutdown
    set_ingestion_service(None)
    service.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Clipsink API",
    description="Screenshot upload server that copies received images to the clipboard",
    version=__version__,
    lifespan=lifespan,
)

# Register all routers
app.include_router(upload_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
