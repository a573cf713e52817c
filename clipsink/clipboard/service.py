"""ClipboardSink: serialised handoff of decoded images to the clipboard.

A module-level singleton is initialised in ``clipsink/main.py``; tests
replace it with a sink around a fake backend.
"""
import asyncio
import logging
import threading
from typing import Optional

from PIL import Image

from ..errors import ClipboardFailed
from .backend import ClipboardBackend

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_sink: Optional["ClipboardSink"] = None


def get_clipboard_sink() -> Optional["ClipboardSink"]:
    """Return the global ClipboardSink, or None if not yet initialised."""
    return _sink


def set_clipboard_sink(sink: Optional["ClipboardSink"]) -> None:
    """Set (or clear) the global ClipboardSink instance."""
    global _sink
    _sink = sink


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------

class ClipboardSink:
    """Owns the clipboard backend and the lock guarding it.

    Args:
        backend: Concrete clipboard backend to write through.
    """

    def __init__(self, backend: ClipboardBackend) -> None:
        self._backend = backend
        self._lock = threading.Lock()

    def place(self, image: Image.Image) -> None:
        """Copy ``image`` to the clipboard, blocking until done.

        Raises:
            ClipboardFailed: If the backend reports any error.
        """
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        width, height = rgba.size
        pixels = rgba.tobytes()

        with self._lock:
            try:
                self._backend.set_image(pixels, width, height)
            except Exception as exc:
                logger.error("Failed to place image into clipboard due to error %s", exc)
                raise ClipboardFailed(str(exc)) from exc

        logger.debug("Placed %dx%d image on clipboard", width, height)

    async def place_async(self, image: Image.Image) -> None:
        """Run ``place`` on a worker thread so the event loop stays free."""
        await asyncio.get_running_loop().run_in_executor(None, self.place, image)
