"""Extractors turning document bytes or text into pages."""
from __future__ import annotations

import io
import logging
import re
from typing import List

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from .errors import ExtractionError
from .models import Page

LOGGER = logging.getLogger(__name__)

_PAGE_MARKER_RE = re.compile(
    r"^[ \t]*(?:-{3}[ \t]*Page[ \t]+(\d+)[ \t]*-{3}|<!--[ \t]*Page[ \t]+(\d+)[ \t]*-->|\[Page[ \t]+(\d+)\])[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
DEFAULT_MARKDOWN_PAGE_CHARS = 3000


class PDFExtractor:
    """Extract per-page text from PDF bytes with PyPDF2."""

    def extract(self, data: bytes) -> List[Page]:
        try:
            reader = PdfReader(io.BytesIO(data))
            reader_pages = list(reader.pages)
        except (PdfReadError, ValueError, OSError) as error:
            raise ExtractionError(f"Could not read PDF: {error}", cause=error) from error

        pages: List[Page] = []
        for index, page in enumerate(reader_pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on PDF content
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            pages.append(Page(page_number=index, text=text))
        LOGGER.debug("Extracted %s pages from PDF", len(pages))
        return pages


class TextExtractor:
    """Pasted text is a single page."""

    def extract(self, text: str) -> List[Page]:
        return [Page(page_number=1, text=text)]


def split_markdown_pages(markdown: str, page_chars: int = DEFAULT_MARKDOWN_PAGE_CHARS) -> List[Page]:
    """Split parser markdown into pages using explicit page markers when present.

    Without markers, paragraphs are packed into pages of roughly ``page_chars``.
    """

    markers = list(_PAGE_MARKER_RE.finditer(markdown))
    if markers:
        bounds = [0, *(marker.start() for marker in markers), len(markdown)]
        starts = [0, *(marker.end() for marker in markers)]
        pages: List[Page] = []
        for start, end in zip(starts, bounds[1:]):
            text = markdown[start:end].strip()
            if text:
                pages.append(Page(page_number=len(pages) + 1, text=text))
        return pages

    pages = []
    current = ""
    for paragraph in re.split(r"\n\s*\n", markdown):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if current and len(current) + len(paragraph) + 2 > page_chars:
            pages.append(Page(page_number=len(pages) + 1, text=current))
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        pages.append(Page(page_number=len(pages) + 1, text=current))
    return pages
