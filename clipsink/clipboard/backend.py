"""Abstract ClipboardBackend interface and the default copykitten backend."""
from abc import ABC, abstractmethod

import copykitten


class ClipboardBackend(ABC):
    """Puts raw RGBA pixels on a clipboard.

    Implementations need not be thread-safe; ClipboardSink guarantees
    that only one call is in flight at a time.
    """

    @abstractmethod
    def set_image(self, rgba: bytes, width: int, height: int) -> None:
        """Replace the clipboard contents with an image.

        Args:
            rgba: Pixel data, 4 bytes per pixel, row-major.
            width: Image width in pixels.
            height: Image height in pixels.

        Raises:
            Exception: On any platform clipboard error.
        """


class CopykittenBackend(ClipboardBackend):
    """System clipboard via copykitten (arboard bindings)."""

    def set_image(self, rgba: bytes, width: int, height: int) -> None:
        copykitten.copy_image(rgba, width, height)
