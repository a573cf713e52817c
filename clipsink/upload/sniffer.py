"""Magic-number sniffing for uploaded files.

The first ``PROBE_LEN`` bytes of an upload are buffered, matched against
known file signatures, and reconciled with the MIME type the client
declared. The buffered bytes are then replayed ahead of the rest of the
stream, so whoever consumes the upload sees every byte exactly once.
"""
import logging
from typing import AsyncIterator, List

from filetype.match import match as match_signature
from filetype.types import TYPES as FILETYPE_MATCHERS
from filetype.types.base import Type

from ..errors import ClipsinkError, FieldReadError
from .schemas import FileCategory, FileType, UploadField, UNNAMED_FILENAME, category_for_mime

logger = logging.getLogger(__name__)

PROBE_LEN = 8192


# =============================================================================
# Text signatures
# =============================================================================
# filetype only knows binary formats; these let obvious text payloads
# classify as TEXT instead of falling through to "unknown".

_HTML_TAGS = (
    b"<!doctype html", b"<html", b"<head", b"<script", b"<iframe", b"<h1",
    b"<div", b"<font", b"<table", b"<a", b"<style", b"<title", b"<b",
    b"<body", b"<br", b"<p", b"<!--",
)


class Html(Type):
    MIME = "text/html"
    EXTENSION = "html"

    def __init__(self):
        super().__init__(mime=Html.MIME, extension=Html.EXTENSION)

    def match(self, buf):
        head = bytes(buf).lstrip()[:64].lower()
        for tag in _HTML_TAGS:
            if head.startswith(tag):
                rest = head[len(tag):len(tag) + 1]
                if tag == b"<!--" or rest in (b" ", b">"):
                    return True
        return False


class Xml(Type):
    MIME = "text/xml"
    EXTENSION = "xml"

    def __init__(self):
        super().__init__(mime=Xml.MIME, extension=Xml.EXTENSION)

    def match(self, buf):
        return bytes(buf).lstrip().startswith(b"<?xml")


class ShellScript(Type):
    MIME = "text/x-shellscript"
    EXTENSION = "sh"

    def __init__(self):
        super().__init__(mime=ShellScript.MIME, extension=ShellScript.EXTENSION)

    def match(self, buf):
        return bytes(buf[:2]) == b"#!"


MATCHERS: List[Type] = [*FILETYPE_MATCHERS, Html(), Xml(), ShellScript()]


def infer_type(probe: bytes) -> FileType:
    """Infer a FileType from the leading bytes of a payload."""
    kind = match_signature(bytes(probe), matchers=MATCHERS)
    if kind is None:
        return FileType.unknown()
    return FileType(category_for_mime(kind.mime), kind.mime, kind.extension)


def reconcile(declared: FileType, inferred: FileType) -> FileType:
    """Pick between the declared and the inferred type.

    The inferred type wins unless inference found nothing and the client
    declared something recognisable.
    """
    if declared == inferred:
        return declared
    if inferred.category == FileCategory.UNKNOWN and declared.category != FileCategory.UNKNOWN:
        return declared
    logger.warning(
        "Client-provided MIME type did not match inferred type; using inferred data "
        "(client_mime=%s, inferred=%s)",
        declared,
        inferred,
    )
    return inferred


# =============================================================================
# Peekable stream
# =============================================================================


class PeekableStream:
    """Async byte-chunk iterator that can buffer a prefix and replay it.

    Wraps any ``AsyncIterator[bytes]``. ``fill()`` pulls whole chunks into
    an internal buffer; iteration then yields the buffer as one chunk
    followed by the untouched remainder of the source. Single-pass and
    not restartable, like the source it wraps.
    """

    def __init__(self, source: AsyncIterator[bytes]) -> None:
        self._source = source
        self._buffer = bytearray()
        self._replayed = False
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def fill(self, length: int) -> bytes:
        """Buffer at least ``length`` bytes, or everything if shorter.

        May overshoot by up to one chunk since chunks are never split.
        """
        if self._replayed:
            raise RuntimeError("Cannot peek after iteration has started")
        while len(self._buffer) < length and not self._exhausted:
            try:
                chunk = await self._source.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            self._buffer.extend(chunk)
        return bytes(self._buffer)

    def __aiter__(self) -> "PeekableStream":
        return self

    async def __anext__(self) -> bytes:
        if not self._replayed:
            self._replayed = True
            if self._buffer:
                chunk = bytes(self._buffer)
                self._buffer = bytearray()
                return chunk
        if self._exhausted:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            raise


async def _guarded_chunks(field: UploadField) -> AsyncIterator[bytes]:
    """Yield the field's chunks, turning read failures into FieldReadError."""
    try:
        async for chunk in field.chunks:
            if chunk:
                yield bytes(chunk)
    except ClipsinkError:
        raise
    except Exception as exc:
        raise FieldReadError(field.name, str(exc)) from exc


# =============================================================================
# Checked stream
# =============================================================================


class CheckedFileStream:
    """An upload whose type has been sniffed, readable from its first byte.

    Build with ``await CheckedFileStream.from_field(field)``; iterate it to
    receive the probe bytes followed by the rest of the upload.
    """

    def __init__(
        self,
        stream: PeekableStream,
        file_type: FileType,
        base_file_name: str,
        probe_length: int,
    ) -> None:
        self._stream = stream
        self.file_type = file_type
        self.base_file_name = base_file_name
        self.probe_length = probe_length

    @classmethod
    async def from_field(
        cls,
        field: UploadField,
        probe_len: int = PROBE_LEN,
    ) -> "CheckedFileStream":
        stream = PeekableStream(_guarded_chunks(field))
        probe = await stream.fill(probe_len)
        if len(probe) < probe_len:
            logger.debug("File was shorter than target inference len (file_len=%d)", len(probe))

        declared = FileType.from_declared(field.content_type)
        inferred = infer_type(probe[:probe_len])
        file_type = reconcile(declared, inferred)
        logger.debug(
            "Sniffed %r: declared=%s inferred=%s chosen=%s",
            field.filename,
            declared,
            inferred,
            file_type,
        )

        return cls(
            stream=stream,
            file_type=file_type,
            base_file_name=field.filename or UNNAMED_FILENAME,
            probe_length=len(probe),
        )

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._stream.__aiter__()


def corrected_filename(name: str, file_type: FileType) -> str:
    """Append the inferred extension when the client sent none."""
    if "." in name.lstrip(".") or not file_type.extension:
        return name
    return f"{name}.{file_type.extension}"
