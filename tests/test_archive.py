import io
import zipfile

import pytest

from docfill.archive import Archive
from docfill.errors import CorruptArchiveError, MalformedPartError
from helpers import build_docx, document_xml, para, run


def test_open_rejects_empty_buffer() -> None:
    with pytest.raises(CorruptArchiveError, match="empty"):
        Archive.open(b"")


def test_open_rejects_non_zip_signature() -> None:
    with pytest.raises(CorruptArchiveError, match="valid DOCX"):
        Archive.open(b"<html>not a document</html>")


def test_open_rejects_truncated_zip() -> None:
    with pytest.raises(CorruptArchiveError):
        Archive.open(b"PK\x03\x04garbage")


def test_untouched_entries_survive_serialize() -> None:
    data = build_docx(document_xml(para(run("x"))), extra={"word/media/image1.png": b"\x89PNG\r\n"})
    archive = Archive.open(data)
    out = Archive.open(archive.serialize())

    assert out.names() == archive.names()
    assert out.read_bytes("word/media/image1.png") == b"\x89PNG\r\n"
    assert out.read_text("word/document.xml") == archive.read_text("word/document.xml")


def test_write_text_replaces_and_adds_entries() -> None:
    archive = Archive.open(build_docx(document_xml(para(run("old")))))
    archive.write_text("word/document.xml", document_xml(para(run("new"))))
    archive.write_text("docProps/custom.xml", "<Properties/>")

    with zipfile.ZipFile(io.BytesIO(archive.serialize())) as zf:
        assert b"new" in zf.read("word/document.xml")
        assert zf.read("docProps/custom.xml") == b"<Properties/>"
        assert zf.getinfo("docProps/custom.xml").date_time == (1980, 1, 1, 0, 0, 0)


def test_missing_entry_reads_as_none() -> None:
    archive = Archive.open(build_docx(document_xml()))
    assert archive.read_text("docProps/custom.xml") is None
    assert "docProps/custom.xml" not in archive


def test_non_utf8_part_is_a_malformed_part() -> None:
    archive = Archive.open(build_docx(document_xml(), headers={"header1.xml": b"\xff\xfe<bad"}))
    with pytest.raises(MalformedPartError, match="word/header1.xml"):
        archive.read_text("word/header1.xml")


def test_document_parts_lists_body_then_headers_and_footers() -> None:
    data = build_docx(
        document_xml(),
        headers={"header1.xml": "<w:hdr/>"},
        footers={"footer2.xml": "<w:ftr/>"},
        extra={"word/styles.xml": "<w:styles/>"},
    )
    assert Archive.open(data).document_parts() == [
        "word/document.xml",
        "word/header1.xml",
        "word/footer2.xml",
    ]


def test_compression_level_is_applied() -> None:
    body = document_xml(*[para(run("repeated text " * 20)) for _ in range(50)])
    data = build_docx(body)
    stored = Archive.open(data, compression_level=0).serialize()
    packed = Archive.open(data, compression_level=9).serialize()
    assert len(packed) < len(stored)
