"""Tests for magic-number sniffing and the replaying stream."""
import pytest

from clipsink.errors import FieldReadError
from clipsink.upload.schemas import FileCategory, FileType, UploadField
from clipsink.upload.sniffer import (
    PROBE_LEN,
    CheckedFileStream,
    PeekableStream,
    corrected_filename,
    infer_type,
    reconcile,
)

from conftest import chunked, make_png, split


PNG_TYPE = FileType(FileCategory.IMAGE, "image/png", "png")
HTML_TYPE = FileType(FileCategory.TEXT, "text/html", "html")


async def _drain(stream) -> bytes:
    out = b""
    async for chunk in stream:
        out += chunk
    return out


def _field(data_chunks, filename="shot.png", content_type="image/png") -> UploadField:
    return UploadField(
        name="img",
        filename=filename,
        content_type=content_type,
        chunks=chunked(*data_chunks),
    )


class TestFileTypeFromDeclared:
    def test_image_mime(self):
        assert FileType.from_declared("image/png") == PNG_TYPE

    def test_parameters_are_stripped(self):
        ft = FileType.from_declared("text/plain; charset=utf-8")
        assert ft.category == FileCategory.TEXT
        assert ft.mime_type == "text/plain"
        assert ft.extension == "plain"

    def test_video_and_other(self):
        assert FileType.from_declared("video/mp4").category == FileCategory.VIDEO
        assert FileType.from_declared("application/pdf").category == FileCategory.OTHER

    @pytest.mark.parametrize("value", [None, "", "garbage", "image/", "/png"])
    def test_missing_or_malformed_is_unknown(self, value):
        assert FileType.from_declared(value) == FileType.unknown()


class TestInferType:
    def test_png_signature(self):
        assert infer_type(make_png()) == PNG_TYPE

    def test_jpeg_signature(self):
        ft = infer_type(b"\xff\xd8\xff\xe0" + b"\x00" * 32)
        assert ft.category == FileCategory.IMAGE
        assert ft.mime_type == "image/jpeg"

    def test_html_is_text(self):
        assert infer_type(b"  <html><body>hi</body></html>") == HTML_TYPE

    def test_xml_and_script_are_text(self):
        assert infer_type(b"<?xml version='1.0'?><a/>").category == FileCategory.TEXT
        assert infer_type(b"#!/bin/sh\necho hi\n").category == FileCategory.TEXT

    def test_plain_bytes_are_unknown(self):
        assert infer_type(b"hello world") == FileType.unknown()

    def test_empty_is_unknown(self):
        assert infer_type(b"") == FileType.unknown()


class TestReconcile:
    def test_agree_known(self):
        assert reconcile(PNG_TYPE, PNG_TYPE) == PNG_TYPE

    def test_agree_unknown(self):
        assert reconcile(FileType.unknown(), FileType.unknown()) == FileType.unknown()

    def test_inferred_unknown_declared_known_uses_declared(self):
        assert reconcile(PNG_TYPE, FileType.unknown()) == PNG_TYPE

    def test_both_known_disagree_uses_inferred(self, caplog):
        with caplog.at_level("WARNING", logger="clipsink.upload.sniffer"):
            assert reconcile(PNG_TYPE, HTML_TYPE) == HTML_TYPE
        assert "did not match" in caplog.text

    def test_declared_unknown_uses_inferred(self):
        assert reconcile(FileType.unknown(), PNG_TYPE) == PNG_TYPE


class TestPeekableStream:
    @pytest.mark.asyncio
    async def test_replays_prefix_then_rest(self):
        parts = [b"a" * 10, b"b" * 10, b"c" * 10]
        stream = PeekableStream(chunked(*parts))

        probe = await stream.fill(15)
        assert probe == b"a" * 10 + b"b" * 10  # whole chunks only
        assert await _drain(stream) == b"".join(parts)

    @pytest.mark.asyncio
    async def test_short_stream_records_true_length(self):
        stream = PeekableStream(chunked(b"abc", b"de"))
        probe = await stream.fill(PROBE_LEN)
        assert probe == b"abcde"
        assert stream.exhausted
        assert await _drain(stream) == b"abcde"

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        stream = PeekableStream(chunked())
        assert await stream.fill(PROBE_LEN) == b""
        assert await _drain(stream) == b""

    @pytest.mark.asyncio
    async def test_fill_after_iteration_is_rejected(self):
        stream = PeekableStream(chunked(b"abc"))
        await stream.fill(1)
        await stream.__anext__()
        with pytest.raises(RuntimeError):
            await stream.fill(1)


class TestCheckedFileStream:
    @pytest.mark.asyncio
    async def test_no_bytes_lost_for_large_upload(self):
        data = make_png() + bytes(range(256)) * 100
        upload = await CheckedFileStream.from_field(_field(split(data, 1000)))

        assert upload.file_type == PNG_TYPE
        assert upload.probe_length >= PROBE_LEN
        assert await _drain(upload) == data

    @pytest.mark.asyncio
    async def test_short_upload(self):
        data = make_png()
        upload = await CheckedFileStream.from_field(_field(split(data, 7)))

        assert upload.probe_length == len(data)
        assert await _drain(upload) == data

    @pytest.mark.asyncio
    async def test_declared_png_but_html_content(self):
        upload = await CheckedFileStream.from_field(_field([b"<html><p>nope</p></html>"]))
        assert upload.file_type.category == FileCategory.TEXT

    @pytest.mark.asyncio
    async def test_missing_filename_defaults(self):
        upload = await CheckedFileStream.from_field(_field([make_png()], filename=None))
        assert upload.base_file_name == "unnamed_screenshot"

    @pytest.mark.asyncio
    async def test_read_failure_during_probe(self):
        async def broken():
            yield b"\x89PNG"
            raise ConnectionResetError("client went away")

        field = UploadField(name="img", filename="x.png", content_type="image/png", chunks=broken())
        with pytest.raises(FieldReadError) as exc_info:
            await CheckedFileStream.from_field(field)
        assert exc_info.value.field_name == "img"
        assert "client went away" in str(exc_info.value)


class TestCorrectedFilename:
    def test_appends_missing_extension(self):
        assert corrected_filename("shot", PNG_TYPE) == "shot.png"

    def test_keeps_existing_extension(self):
        assert corrected_filename("shot.jpg", PNG_TYPE) == "shot.jpg"

    def test_unknown_type_leaves_name(self):
        assert corrected_filename("shot", FileType.unknown()) == "shot"
