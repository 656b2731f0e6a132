"""Tests for plain-text extraction from uploaded files."""

import io

import pytest
from docx import Document

from chatrelay.services.extract_text import extract_text, normalize_extracted_text


def make_docx(*paragraphs: str, table: list[list[str]] | None = None) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    if table:
        grid = document.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                grid.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


class TestNormalize:
    """Tests for normalize_extracted_text()."""

    def test_crlf_and_blank_runs(self):
        """CRLF becomes LF, 4+ newlines collapse to 3, edges trimmed."""
        raw = "  a\r\nb\n\n\n\n\n\nc  \n"
        assert normalize_extracted_text(raw) == "a\nb\n\n\nc"

    def test_three_newlines_kept(self):
        """Runs of exactly 3 newlines are untouched."""
        assert normalize_extracted_text("a\n\n\nb") == "a\n\n\nb"


class TestExtractText:
    """Tests for format dispatch in extract_text()."""

    def test_plain_text(self):
        """UTF-8 text is decoded and normalized."""
        assert extract_text("héllo\r\nworld".encode(), "text/plain", "a.txt") == "héllo\nworld"

    def test_bom_stripped(self):
        """A UTF-8 byte-order mark is dropped."""
        assert extract_text(b"\xef\xbb\xbfhello", "text/plain", "a.txt") == "hello"

    def test_invalid_utf8_replaced(self):
        """Undecodable bytes become replacement characters, not errors."""
        assert extract_text(b"ok \xff", "text/plain", "a.txt") == "ok �"

    @pytest.mark.parametrize(
        "mime,name",
        [
            ("application/json", "data.bin"),
            ("text/csv", "table"),
            ("application/octet-stream", "README.md"),
            ("", "notes.TXT"),
        ],
    )
    def test_text_like_by_mime_or_extension(self, mime, name):
        """Text-like files are recognized by MIME or extension."""
        assert extract_text(b"content", mime, name) == "content"

    def test_unsupported_type_is_empty(self):
        """Unknown binary formats yield no text."""
        assert extract_text(b"\x00\x01", "application/zip", "archive.zip") == ""

    def test_docx_paragraphs_and_tables(self):
        """DOCX paragraphs come first, then tab-joined table rows."""
        data = make_docx("First", "Second", table=[["a", "b"], ["c", "d"]])
        text = extract_text(
            data,
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "doc.docx",
        )
        assert text == "First\nSecond\na\tb\nc\td"

    def test_docx_by_extension(self):
        """A generic MIME type still dispatches on the .docx extension."""
        data = make_docx("Only paragraph")
        assert extract_text(data, "application/octet-stream", "x.docx") == "Only paragraph"

    def test_corrupt_pdf_raises(self):
        """Parser failures propagate for the caller to report."""
        with pytest.raises(Exception):
            extract_text(b"not a pdf at all", "application/pdf", "broken.pdf")
