"""
Text extraction for stored blobs.

Converts a byte buffer of a declared media type into normalized markdown-ish
text.  PDF text is run through line heuristics that promote probable headings
to ``#`` markers and is preceded by a short front-matter block; DOCX keeps its
heading styles; plain text and markdown pass through untouched apart from
newline normalization.

Public API
----------
TextExtractor().extract(buffer, media_type) -> ExtractionResult
count_words(text)                           -> int
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from folio.errors import MalformedInput, UnsupportedMediaType
from folio.utils.helpers import title_from_url

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
URL_MEDIA_TYPE = "text/uri-list"

NO_TEXT_PLACEHOLDER = (
    "# Document content\n\n"
    "No extractable text was found. The document may be a scanned image "
    "or consist mostly of pictures."
)

# Heading heuristics
MAX_HEADING_CHARS = 100
KEYWORD_HEADING_MAX_CHARS = 50
ISOLATED_HEADING_MAX_CHARS = 80
LEADING_FRACTION = 0.1

_LATIN_KEYWORDS = re.compile(r"\b(?:Chapter|CHAPTER|Section|SECTION|Part|PART)\b")
_CJK_KEYWORDS = ("章", "节", "部分", "第", "概述", "介绍", "总结")
_SUB_NUMBERING = re.compile(r"^\d+\.\d+")
_TOP_NUMBERING = re.compile(r"^(\d+)\.")

_FRONT_MATTER = re.compile(r"\A---\n.*?\n---\n?", re.DOTALL)
_CJK_CHAR = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff]")
_LATIN_WORD = re.compile(r"[A-Za-z]+")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    Output of a handler.

    Attributes:
        text:       Normalized text; never empty.
        page_count: Rendered page count where the format has pages.
        warnings:   Non-fatal notes (lossy decoding, placeholder used, ...).
        metadata:   Format-specific document properties (title, author, ...).
    """

    text: str
    page_count: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[bytes], ExtractionResult]


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """Dispatches a buffer to the handler registered for its media type."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        self.register(PDF_MEDIA_TYPE, _extract_pdf)
        self.register(DOCX_MEDIA_TYPE, _extract_docx)
        self.register("text/plain", _extract_plain)
        self.register("text/markdown", _extract_plain)
        self.register(URL_MEDIA_TYPE, _extract_url)

    def register(self, media_type: str, handler: Handler) -> None:
        self._handlers[_normalize_media_type(media_type)] = handler

    def supports(self, media_type: str) -> bool:
        return _normalize_media_type(media_type) in self._handlers

    def extract(self, buffer: bytes, media_type: str) -> ExtractionResult:
        """
        Extract text from *buffer*.

        Raises:
            UnsupportedMediaType: No handler is registered for *media_type*.
            MalformedInput:       The parser could not produce any text.
        """
        handler = self._handlers.get(_normalize_media_type(media_type))
        if handler is None:
            raise UnsupportedMediaType(f"No extractor registered for media type {media_type!r}")
        result = handler(buffer)
        if not result.text.strip():
            raise MalformedInput("Extraction produced no text")
        return result


def _normalize_media_type(media_type: str) -> str:
    return (media_type or "").split(";", 1)[0].strip().lower()


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def _extract_pdf(buffer: bytes) -> ExtractionResult:
    try:
        doc = fitz.open(stream=buffer, filetype="pdf")
    except Exception as exc:
        raise MalformedInput(f"Cannot open PDF: {exc}") from exc

    try:
        if doc.needs_pass:
            raise MalformedInput("PDF is password-protected")
        page_count = doc.page_count
        if page_count == 0:
            raise MalformedInput("PDF has no pages")
        raw_meta = doc.metadata or {}
        try:
            page_texts = [page.get_text("text") for page in doc]
        except Exception as exc:
            raise MalformedInput(f"Cannot read PDF text: {exc}") from exc
    finally:
        doc.close()

    metadata = {
        "title": raw_meta.get("title", "") or "",
        "author": raw_meta.get("author", "") or "",
        "subject": raw_meta.get("subject", "") or "",
        "creator": raw_meta.get("creator", "") or "",
        "creation_date": raw_meta.get("creationDate", "") or "",
    }
    header = document_info_block(page_count, metadata)

    body = "\n".join(page_texts)
    if not body.strip():
        return ExtractionResult(
            text=f"{header}\n\n{NO_TEXT_PLACEHOLDER}",
            page_count=page_count,
            warnings=["no extractable text"],
            metadata=metadata,
        )

    return ExtractionResult(
        text=f"{header}\n\n{structure_text(body)}",
        page_count=page_count,
        metadata=metadata,
    )


def document_info_block(page_count: int, metadata: Dict[str, Any]) -> str:
    """Front matter listing page count and whatever document properties exist."""
    lines = ["---", "**Document info**", "", f"- **Pages**: {page_count}"]
    for key, label in (
        ("title", "Title"),
        ("author", "Author"),
        ("subject", "Subject"),
        ("creator", "Creator"),
        ("creation_date", "Created"),
    ):
        if metadata.get(key):
            lines.append(f"- **{label}**: {metadata[key]}")
    lines.append("---")
    return "\n".join(lines)


def structure_text(raw: str) -> str:
    """
    Normalize raw page text and mark probable headings.

    Lines are trimmed, runs of blank lines collapse to one, and every line the
    heuristics accept is prefixed with one to three ``#``.  When nothing looks
    like a heading the body gets a generic top-level heading.
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n\s*\n\s*\n", "\n\n", text)
    lines = [line.strip() for line in text.split("\n")]

    out: List[str] = []
    found_heading = False
    for index, line in enumerate(lines):
        if line and is_potential_heading(line, lines, index):
            level = heading_level(line, lines, index)
            out.append(f"{'#' * level} {line}")
            found_heading = True
        else:
            out.append(line)

    body = "\n".join(out).strip()
    if not found_heading:
        body = "# Document content\n\n" + body
    return body


def is_potential_heading(line: str, lines: List[str], index: int) -> bool:
    """Return True if *line* looks like a heading in its surrounding context."""
    if not line.strip() or len(line) > MAX_HEADING_CHARS:
        return False

    prev_blank = index == 0 or not lines[index - 1].strip()
    next_blank = index == len(lines) - 1 or not lines[index + 1].strip()

    all_caps = line == line.upper() and line != line.lower()
    if all_caps and prev_blank and next_blank:
        return True
    if _TOP_NUMBERING.match(line):
        return True
    if _has_heading_keyword(line) and len(line) < KEYWORD_HEADING_MAX_CHARS:
        return True
    return prev_blank and next_blank and len(line) < ISOLATED_HEADING_MAX_CHARS


def heading_level(line: str, lines: List[str], index: int) -> int:
    """Map a heading line to level 1, 2 or 3."""
    if _SUB_NUMBERING.match(line):
        return 2
    match = _TOP_NUMBERING.match(line)
    if match:
        return 1 if int(match.group(1)) <= 10 else 2
    if "第" in line and ("章" in line or "节" in line):
        return 1 if "章" in line else 2
    lowered = line.lower()
    if "chapter" in lowered:
        return 1
    if "section" in lowered:
        return 2
    if index < len(lines) * LEADING_FRACTION:
        return 1
    return 3


def _has_heading_keyword(line: str) -> bool:
    if _LATIN_KEYWORDS.search(line):
        return True
    return any(keyword in line for keyword in _CJK_KEYWORDS)


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

HEADING_STYLES: Dict[str, int] = {
    "heading 1": 1,
    "heading 2": 2,
    "heading 3": 3,
    "heading 4": 3,
    "heading 5": 3,
    "title": 1,
    "subtitle": 2,
}


def _extract_docx(buffer: bytes) -> ExtractionResult:
    try:
        doc = DocxDocument(io.BytesIO(buffer))
    except Exception as exc:
        raise MalformedInput(f"Cannot open DOCX: {exc}") from exc

    parts: List[str] = []
    for para in doc.paragraphs:
        text = para.text.strip()
        if not text:
            continue
        style_name = para.style.name.lower() if para.style and para.style.name else ""
        level = HEADING_STYLES.get(style_name, 0)
        parts.append(f"{'#' * level} {text}" if level else text)

    for table in doc.tables:
        rows = _format_table_rows([[cell.text for cell in row.cells] for row in table.rows])
        if rows:
            parts.append(rows)

    if not parts:
        raise MalformedInput("DOCX contains no text")

    core = doc.core_properties
    metadata = {
        "title": core.title or "",
        "author": core.author or "",
        "subject": core.subject or "",
    }
    return ExtractionResult(text="\n\n".join(parts), metadata=metadata)


def _format_table_rows(rows: List[List[Optional[str]]]) -> str:
    """Format a list-of-lists table as pipe-delimited text."""
    lines: List[str] = []
    for row in rows:
        cells = [str(cell).strip() if cell is not None else "" for cell in row]
        if any(cells):
            lines.append(" | ".join(cells))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Plain text / markdown / URL records
# ---------------------------------------------------------------------------

def _extract_plain(buffer: bytes) -> ExtractionResult:
    warnings: List[str] = []
    try:
        text = buffer.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = buffer.decode("utf-8", errors="replace")
        warnings.append("input was not valid UTF-8; undecodable bytes replaced")

    text = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not text:
        raise MalformedInput("Text file is empty")
    return ExtractionResult(text=text, warnings=warnings)


def _extract_url(buffer: bytes) -> ExtractionResult:
    # text/uri-list: first non-comment line is the URL
    lines = [
        line.strip()
        for line in buffer.decode("utf-8", errors="replace").splitlines()
        if line.strip() and not line.startswith("#")
    ]
    if not lines:
        raise MalformedInput("URL record has no URL")
    url = lines[0]
    text = (
        f"# {title_from_url(url)}\n\n"
        f"**URL**: {url}\n\n"
        "The linked page is not fetched; this record only references it."
    )
    return ExtractionResult(text=text, metadata={"url": url})


# ---------------------------------------------------------------------------
# Word counting
# ---------------------------------------------------------------------------

def count_words(text: str) -> int:
    """
    Count words, ignoring the front-matter block and markdown markers.

    Each CJK ideograph counts as one word; each run of Latin letters counts as
    one word.  Digits and punctuation are not counted.
    """
    if not text:
        return 0
    clean = _FRONT_MATTER.sub("", text)
    clean = re.sub(r"^#{1,6}\s", "", clean, flags=re.MULTILINE)
    clean = re.sub(r"\*\*(.*?)\*\*", r"\1", clean)
    clean = re.sub(r"\*(.*?)\*", r"\1", clean)
    clean = re.sub(r"`(.*?)`", r"\1", clean)
    clean = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", clean)
    return len(_CJK_CHAR.findall(clean)) + len(_LATIN_WORD.findall(clean))
