"""Plain-text extraction from uploaded files.

Format dispatch (by MIME type, then file extension):
- PDF: pdfplumber, page texts joined by blank lines
- DOCX: python-docx paragraphs and table cells
- Text-like (text/*, JSON, Markdown, CSV, ...): UTF-8 decode with replacement
- Anything else: empty string (the caller reports the file as unreadable)

All functions here are blocking; callers run them in a worker thread.
"""

import io
import re

import pdfplumber
from docx import Document

PDF_MIME_MARKER = "pdf"
DOCX_MIME_MARKER = "officedocument.wordprocessingml"

TEXT_EXTENSIONS = (
    ".txt",
    ".md",
    ".markdown",
    ".json",
    ".csv",
    ".tsv",
    ".log",
    ".xml",
    ".yaml",
    ".yml",
)

_EXCESS_BLANK_LINES = re.compile(r"\n{4,}")


def normalize_extracted_text(text: str) -> str:
    """CRLF to LF, collapse runs of 4+ newlines to 3, trim."""
    text = text.replace("\r\n", "\n")
    text = _EXCESS_BLANK_LINES.sub("\n\n\n", text)
    return text.strip()


def _extract_text_from_pdf(file_bytes: bytes) -> str:
    """Extract text from a PDF file."""
    text_parts = []
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
    return "\n\n".join(text_parts)


def _extract_text_from_docx(file_bytes: bytes) -> str:
    """Extract text from a .docx file."""
    doc = Document(io.BytesIO(file_bytes))
    lines = [p.text for p in doc.paragraphs if p.text]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text for cell in row.cells]
            if any(cells):
                lines.append("\t".join(cells))
    return "\n".join(lines)


def _is_text_like(mime: str, lower_name: str) -> bool:
    return (
        mime.startswith("text/")
        or "json" in mime
        or "csv" in mime
        or lower_name.endswith(TEXT_EXTENSIONS)
    )


def extract_text(file_bytes: bytes, mime: str | None, original_name: str | None) -> str:
    """Extract and normalize plain text from a stored file.

    Raises:
        Whatever the format parser raises on corrupt input; callers turn
        that into a placeholder block.
    """
    mime = (mime or "").lower()
    lower_name = (original_name or "").lower()

    if PDF_MIME_MARKER in mime or lower_name.endswith(".pdf"):
        text = _extract_text_from_pdf(file_bytes)
    elif DOCX_MIME_MARKER in mime or lower_name.endswith(".docx"):
        text = _extract_text_from_docx(file_bytes)
    elif _is_text_like(mime, lower_name):
        text = file_bytes.decode("utf-8", errors="replace").lstrip("\ufeff")
    else:
        return ""

    return normalize_extracted_text(text)
