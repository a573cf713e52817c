"""Data models for the upload pipeline.

- FileCategory: coarse kind of a payload (image, video, text, other, unknown)
- FileType: category plus MIME type and extension, built either from a
  client-declared MIME string or from magic-number inference
- UploadField: one multipart part as a single-pass async byte stream
- IngestState: the stages an upload moves through
"""
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

DEFAULT_MIME_TYPE = "application/octet-stream"
UNNAMED_FILENAME = "unnamed_screenshot"
CLIPBOARD_ONLY = "clipboard only"


class FileCategory(str, Enum):
    """Coarse payload categories.

    Only IMAGE passes the upload gate; the rest exist so mismatches can
    be reported meaningfully.
    """
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"
    OTHER = "other"
    UNKNOWN = "unknown"


_TOP_LEVEL_CATEGORIES = {
    "image": FileCategory.IMAGE,
    "video": FileCategory.VIDEO,
    "text": FileCategory.TEXT,
}


def category_for_mime(mime_type: str) -> FileCategory:
    """Map a MIME essence (``type/subtype``) to its category."""
    top_level = mime_type.split("/", 1)[0].strip().lower()
    return _TOP_LEVEL_CATEGORIES.get(top_level, FileCategory.OTHER)


@dataclass(frozen=True)
class FileType:
    category: FileCategory
    mime_type: str
    extension: str

    @classmethod
    def unknown(cls) -> "FileType":
        return cls(FileCategory.UNKNOWN, DEFAULT_MIME_TYPE, "")

    @classmethod
    def from_declared(cls, content_type: Optional[str]) -> "FileType":
        """Build a FileType from a client-declared ``Content-Type``.

        Parameters such as ``; charset=utf-8`` are dropped and the subtype
        doubles as the extension. Missing or malformed values map to
        UNKNOWN.
        """
        if not content_type:
            return cls.unknown()
        essence = content_type.split(";", 1)[0].strip().lower()
        top_level, sep, subtype = essence.partition("/")
        if not sep or not top_level or not subtype:
            return cls.unknown()
        return cls(category_for_mime(essence), essence, subtype)

    def __str__(self) -> str:
        return f"{self.category.value} ({self.mime_type})"


@dataclass
class UploadField:
    """One multipart part, exclusively owned by a single ingestion.

    ``chunks`` is consumed once; it is not restartable.
    """
    name: str
    filename: Optional[str]
    content_type: Optional[str]
    chunks: AsyncIterator[bytes]


class IngestState(str, Enum):
    START = "start"
    SNIFFED = "sniffed"
    TYPE_CHECKED = "type_checked"
    PLACED = "placed"
    WRITTEN = "written"
    CLIPPED = "clipped"
    DONE = "done"
    FAILED = "failed"
