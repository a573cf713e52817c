"""Shared test fixtures and configuration for clipsink tests."""
import io
import struct
import threading
from typing import AsyncIterator, List, Tuple

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from clipsink.clipboard.backend import ClipboardBackend
from clipsink.clipboard.service import ClipboardSink, set_clipboard_sink
from clipsink.config import ClipsinkConfig, set_config
from clipsink.main import app
from clipsink.upload.service import set_ingestion_service


class RecordingBackend(ClipboardBackend):
    """Clipboard backend that remembers what it was given."""

    def __init__(self, error: Exception = None) -> None:
        self.calls: List[Tuple[int, int, int]] = []
        self.error = error
        self._lock = threading.Lock()

    def set_image(self, rgba: bytes, width: int, height: int) -> None:
        if self.error is not None:
            raise self.error
        with self._lock:
            self.calls.append((len(rgba), width, height))


def make_png(width: int = 4, height: int = 3, color=(255, 0, 0)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_noisy_png(width: int = 300, height: int = 200) -> bytes:
    """A PNG that does not compress well, so it spans many chunks."""
    buf = io.BytesIO()
    Image.effect_noise((width, height), 64).convert("RGB").save(buf, format="PNG")
    return buf.getvalue()


async def chunked(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def split(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


class CountingSource:
    """Async chunk source that records how many chunks were pulled."""

    def __init__(self, parts):
        self._parts = list(parts)
        self.pulled = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.pulled >= len(self._parts):
            raise StopAsyncIteration
        part = self._parts[self.pulled]
        self.pulled += 1
        return part


def corrupt_png_chunk(data: bytes, chunk_type: bytes = b"IDAT", occurrence: int = 2) -> bytes:
    """Overwrite the type of the n-th ``chunk_type`` chunk with garbage.

    The signature and every earlier chunk stay intact, so the file still
    sniffs and opens as PNG and only fails once decoding reaches the
    damaged chunk.
    """
    pos, seen = 8, 0
    while pos < len(data):
        (length,) = struct.unpack(">I", data[pos:pos + 4])
        if data[pos + 4:pos + 8] == chunk_type:
            seen += 1
            if seen == occurrence:
                return data[:pos + 4] + b"\x9f" + chunk_type[1:] + data[pos + 8:]
        pos += 12 + length
    raise ValueError(f"PNG has fewer than {occurrence} {chunk_type!r} chunks")


FORM_BOUNDARY = "clipsink-test-boundary"


def form_body(data: bytes, filename="shot.png", content_type="image/png", name="img", extra_fields=()) -> bytes:
    """Encode a multipart/form-data body delimited by ``FORM_BOUNDARY``."""
    parts = []
    for field_name, value in extra_fields:
        head = (
            f"--{FORM_BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="{field_name}"\r\n\r\n'
        )
        parts.append(head.encode() + value + b"\r\n")
    head = (
        f"--{FORM_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
        f"Content-Type: {content_type}\r\n\r\n"
    )
    parts.append(head.encode() + data + b"\r\n")
    parts.append(f"--{FORM_BOUNDARY}--\r\n".encode())
    return b"".join(parts)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def sink(backend) -> ClipboardSink:
    return ClipboardSink(backend)


@pytest.fixture
def serve(backend):
    """Start the app with a given config; returns a TestClient factory.

    Each client runs the real lifespan, so the ingestion service is built
    exactly as in production, but with the recording clipboard backend.
    """
    clients = []

    def _serve(**config_values) -> TestClient:
        set_config(ClipsinkConfig(**config_values))
        set_clipboard_sink(ClipboardSink(backend))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _serve

    for client in clients:
        client.__exit__(None, None, None)
    set_ingestion_service(None)
    set_clipboard_sink(None)
    set_config(None)
