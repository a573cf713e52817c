"""Upload ingestion: sniff, gate, place, write, decode, clip.

One ``IngestionService`` is shared by all requests. Each call to
``ingest()`` walks a single upload through the stages in order:

    START -> SNIFFED -> TYPE_CHECKED -> PLACED -> WRITTEN -> CLIPPED -> DONE

and any stage may end in FAILED. Stages never run in parallel within a
request; only image decoding leaves the event loop, on a dedicated
thread pool.

A module-level singleton is initialised in ``clipsink/main.py``.
"""
import asyncio
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from PIL import Image

from ..clipboard.service import ClipboardSink
from ..config import ClipsinkConfig
from ..errors import ClipsinkError, DecodeFailed, InternalError, NotAnImage, WriteFailed
from .paths import PathLocks, SubdirectoryClassifier, TargetPathResolver
from .schemas import CLIPBOARD_ONLY, FileCategory, IngestState, UploadField
from .sniffer import CheckedFileStream, corrected_filename
from .writer import write_bounded

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_service: Optional["IngestionService"] = None


def get_ingestion_service() -> Optional["IngestionService"]:
    """Return the global IngestionService, or None if not yet initialised."""
    return _service


def set_ingestion_service(service: Optional["IngestionService"]) -> None:
    """Set (or clear) the global IngestionService instance."""
    global _service
    _service = service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _decode_image(fh: BinaryIO) -> Image.Image:
    """Fully decode an image from an open, rewound file."""
    try:
        image = Image.open(fh)
        image.load()
    except Exception as exc:
        # Pillow plugins also raise SyntaxError, struct.error and EOFError
        raise DecodeFailed(str(exc) or type(exc).__name__) from exc
    return image


def _decode_and_close(fh: BinaryIO) -> Image.Image:
    """Decode worker. Owns ``fh`` and closes it once decoding is over."""
    try:
        return _decode_image(fh)
    finally:
        fh.close()


def _discard(destination: BinaryIO, target: Optional[Path]) -> None:
    """Close a destination and delete the partial file behind it."""
    destination.close()
    if target is None:
        return
    try:
        target.unlink()
        logger.info("Removed partial upload %s", target)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Failed to remove partial upload %s: %s", target, exc)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class IngestionService:
    """Runs uploads through the ingestion stages.

    Args:
        config: Loaded configuration.
        sink: Clipboard sink decoded images are handed to.
        resolver: Target path resolver; built from ``config`` if omitted.
        decode_pool: Executor for image decoding; a private pool of
            ``config.decode_workers`` threads if omitted.
    """

    def __init__(
        self,
        config: ClipsinkConfig,
        sink: ClipboardSink,
        resolver: Optional[TargetPathResolver] = None,
        decode_pool: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._config = config
        self._sink = sink
        if resolver is None:
            locks = PathLocks() if config.serialize_path_selection else None
            resolver = TargetPathResolver(
                config,
                SubdirectoryClassifier(config.subdirectory_regex),
                locks=locks,
            )
        self._resolver = resolver
        self._owns_pool = decode_pool is None
        self._decode_pool = decode_pool or ThreadPoolExecutor(
            max_workers=config.decode_workers,
            thread_name_prefix="clipsink-decode",
        )

    @property
    def config(self) -> ClipsinkConfig:
        return self._config

    def close(self) -> None:
        """Shut down the decode pool if this service created it."""
        if self._owns_pool:
            self._decode_pool.shutdown(wait=True)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ingest(self, field: UploadField) -> str:
        """Ingest one upload.

        Returns:
            The stored path, or ``"clipboard only"`` when nothing was
            persisted.

        Raises:
            NotAnImage: Sniffed category is not IMAGE (nothing written).
            SizeExceeded: Upload is larger than ``max_image_size``.
            WriteFailed: Disk error while writing; partial file removed.
            FieldReadError: Reading the multipart field failed.
            DecodeFailed: Bytes could not be decoded as an image.
            ClipboardFailed: The clipboard rejected the image. A file
                already persisted stays on disk.
            InternalError: Any other failure.
        """
        state = IngestState.START
        try:
            upload = await CheckedFileStream.from_field(field)
            state = self._advance(state, IngestState.SNIFFED, field)

            if upload.file_type.category != FileCategory.IMAGE:
                raise NotAnImage(upload.file_type)
            state = self._advance(state, IngestState.TYPE_CHECKED, field)

            filename = corrected_filename(upload.base_file_name, upload.file_type)
            with self._resolver.reserve(filename) as target:
                target, destination = self._open_destination(target)
            state = self._advance(state, IngestState.PLACED, field)

            try:
                size = await write_bounded(upload, destination, self._config.max_image_size)
            except OSError as exc:
                _discard(destination, target)
                raise WriteFailed(str(target) if target else None, str(exc)) from exc
            except BaseException:
                _discard(destination, target)
                raise
            state = self._advance(state, IngestState.WRITTEN, field)
            if target is not None:
                logger.info("Saved upload %r to %s (%d bytes)", field.filename, target, size)

            # Decoding is not cancellable once started; a cancelled request
            # leaves the worker to finish and close the file itself.
            loop = asyncio.get_running_loop()
            decoding = loop.run_in_executor(self._decode_pool, _decode_and_close, destination)
            image = await asyncio.shield(decoding)

            await self._sink.place_async(image)
            state = self._advance(state, IngestState.CLIPPED, field)
        except ClipsinkError as exc:
            logger.warning("Upload %r failed after %s: %s", field.filename, state.value, exc)
            self._advance(state, IngestState.FAILED, field)
            raise
        except Exception as exc:
            logger.exception("Upload %r failed unexpectedly after %s", field.filename, state.value)
            self._advance(state, IngestState.FAILED, field)
            raise InternalError(str(exc)) from exc

        self._advance(state, IngestState.DONE, field)
        return str(target) if target is not None else CLIPBOARD_ONLY

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    @staticmethod
    def _advance(current: IngestState, new: IngestState, field: UploadField) -> IngestState:
        logger.debug("Upload %r: %s -> %s", field.filename, current.value, new.value)
        return new

    def _open_destination(self, target: Optional[Path]) -> Tuple[Optional[Path], BinaryIO]:
        """Open the persist target, or an unlinked temporary file.

        A target that cannot be opened is skipped with a warning and the
        upload is kept in a temporary file instead.
        """
        if target is not None:
            try:
                return target, open(target, "w+b")
            except OSError as exc:
                logger.warning(
                    "Failed to open %s for writing, keeping upload in a temporary file: %s",
                    target,
                    exc,
                )
        try:
            return None, tempfile.TemporaryFile()
        except OSError as exc:
            raise WriteFailed(None, str(exc)) from exc
