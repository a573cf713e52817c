"""Error types raised by the upload pipeline.

Each error carries the HTTP status the router answers with, so the
handler only has to translate ``ClipsinkError`` into an ``HTTPException``.
"""
from typing import Optional


class ClipsinkError(Exception):
    """Base class for errors that abort an upload request."""

    status_code: int = 500


class InternalError(ClipsinkError):
    """Unexpected failure inside the service."""

    def __init__(self, message: str) -> None:
        super().__init__(f"General error: {message}")


class NotAnImage(ClipsinkError):
    """The coarse category gate rejected the upload."""

    status_code = 400

    def __init__(self, inferred: object) -> None:
        self.inferred = inferred
        super().__init__(
            f"Uploaded file was not an image, was instead of type {inferred}"
        )


class DecodeFailed(ClipsinkError):
    """The payload looked like an image but could not be decoded."""

    status_code = 400

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to load image data due to error: {cause}")


class SizeExceeded(ClipsinkError):
    status_code = 413

    def __init__(self, actual: int, limit: int) -> None:
        self.actual = actual
        self.limit = limit
        super().__init__(
            f"Uploaded file size ({actual}B) exceeded the maximum upload size ({limit}B)"
        )


class WriteFailed(ClipsinkError):
    """I/O error while materialising the upload."""

    def __init__(self, target: Optional[str], cause: str) -> None:
        self.target = target
        self.cause = cause
        where = target or "temporary file"
        super().__init__(f"Failed to write upload to {where}: {cause}")


class FieldReadError(ClipsinkError):
    """Reading a chunk from the multipart field failed."""

    def __init__(self, field_name: str, cause: str) -> None:
        self.field_name = field_name
        self.cause = cause
        super().__init__(f"Failed to extract data from multipart field {field_name!r}: {cause}")


class MalformedRequest(ClipsinkError):
    """The request body is not a usable multipart/form-data payload."""

    status_code = 400


class MissingField(ClipsinkError):
    status_code = 422

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Multipart form has no field named {field_name!r}")


class ClipboardFailed(ClipsinkError):
    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to place image into clipboard: {cause}")
