"""Streaming multipart/form-data reader for the upload endpoint.

The request body is pushed through python-multipart's parser one network
chunk at a time. The upload field therefore reaches the pipeline while it
is still arriving, and at most one body chunk is held in memory; nothing
is spooled to a temporary file first.
"""
import logging
from collections import deque
from typing import AsyncIterator, Deque, Dict, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from ..errors import MalformedRequest, MissingField
from .schemas import UploadField

logger = logging.getLogger(__name__)

FORM_DATA = b"multipart/form-data"


def form_boundary(content_type: Optional[str]) -> bytes:
    """Return the multipart boundary from a Content-Type header."""
    media_type, options = parse_options_header(content_type)
    if media_type.lower() != FORM_DATA:
        raise MalformedRequest(
            f"Expected a multipart/form-data body, got {content_type or 'no content type'!r}"
        )
    boundary = options.get(b"boundary")
    if not boundary:
        raise MalformedRequest("Multipart body has no boundary")
    return boundary


class FormFieldReader:
    """Pulls a single file field out of a streamed multipart body.

    ``field()`` feeds the body until the headers of the wanted part have
    been parsed and returns an ``UploadField`` whose ``chunks`` continue
    feeding the body on demand. Parts with other names are skipped.
    """

    def __init__(self, body: AsyncIterator[bytes], boundary: bytes, field_name: str) -> None:
        self._body = body.__aiter__()
        self._field_name = field_name

        self._headers: Dict[bytes, bytes] = {}
        self._header_name = bytearray()
        self._header_value = bytearray()

        self._field: Optional[UploadField] = None
        self._in_field = False
        self._field_done = False
        self._pending: Deque[bytes] = deque()

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )

    async def field(self) -> UploadField:
        """Advance to the wanted field.

        Raises:
            MissingField: The body ended without a part of that name.
            MalformedRequest: The body could not be parsed.
        """
        while self._field is None:
            if not await self._feed():
                raise MissingField(self._field_name)
        return self._field

    async def _feed(self) -> bool:
        """Push the next body chunk through the parser. False at end of body."""
        try:
            chunk = await self._body.__anext__()
        except StopAsyncIteration:
            return False
        if chunk:
            try:
                self._parser.write(chunk)
            except MultipartParseError as exc:
                raise MalformedRequest(f"Malformed multipart body: {exc}") from exc
        return True

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            while self._pending:
                yield self._pending.popleft()
            if self._field_done:
                return
            if not await self._feed():
                raise MalformedRequest("Request body ended inside the upload field")

    # -----------------------------------------------------------------------
    # Parser callbacks
    # -----------------------------------------------------------------------

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[bytes(self._header_name).lower()] = bytes(self._header_value)
        self._header_name = bytearray()
        self._header_value = bytearray()

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition"))
        name = options.get(b"name", b"").decode("utf-8", "replace")
        if self._field is not None or name != self._field_name:
            logger.debug("Skipping multipart part %r", name)
            return

        filename = options.get(b"filename")
        content_type = self._headers.get(b"content-type")
        self._in_field = True
        self._field = UploadField(
            name=name,
            filename=filename.decode("utf-8", "replace") if filename else None,
            content_type=content_type.decode("latin-1") if content_type else None,
            chunks=self._chunks(),
        )

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._in_field:
            self._pending.append(bytes(data[start:end]))

    def _on_part_end(self) -> None:
        if self._in_field:
            self._in_field = False
            self._field_done = True
