"""Page text cleaning and repeated header/footer removal."""
from __future__ import annotations

import re
import unicodedata
from collections import Counter
from typing import List, Sequence

from .models import Page

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")
_HYPHENATED_BREAK_RE = re.compile(r"([a-z])-\n([a-z])")
_PAGE_NUMBER_LINE_RE = re.compile(
    r"^[ \t]*(?:page[ \t]+\d+(?:[ \t]+of[ \t]+\d+)?|-[ \t]*\d+[ \t]*-|\d{1,4})[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)

MIN_PAGES_FOR_HEADER_DETECTION = 3
REPEAT_FREQUENCY_THRESHOLD = 0.5
MAX_REPEATED_LINE_LENGTH = 100


def normalize_text(text: str) -> str:
    """Clean extracted page text while keeping indentation and column spacing."""

    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = _CONTROL_CHARS_RE.sub("", normalized)
    normalized = _PAGE_NUMBER_LINE_RE.sub("", normalized)
    normalized = _HYPHENATED_BREAK_RE.sub(r"\1\2", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized + "\n")
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip("\n").rstrip()


def _non_empty_lines(text: str) -> List[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def find_repeated_lines(pages: Sequence[Page]) -> tuple[set[str], set[str]]:
    """Return the ``(headers, footers)`` repeated on more than half of the pages."""

    first_counts: Counter[str] = Counter()
    last_counts: Counter[str] = Counter()
    for page in pages:
        lines = _non_empty_lines(page.text)
        if not lines:
            continue
        first_counts[lines[0]] += 1
        last_counts[lines[-1]] += 1

    threshold = len(pages) * REPEAT_FREQUENCY_THRESHOLD
    headers = {
        line for line, count in first_counts.items() if count > threshold and len(line) < MAX_REPEATED_LINE_LENGTH
    }
    footers = {
        line for line, count in last_counts.items() if count > threshold and len(line) < MAX_REPEATED_LINE_LENGTH
    }
    return headers, footers


def remove_repeated_headers_footers(pages: Sequence[Page]) -> List[Page]:
    """Strip running headers and footers that recur across the page set."""

    if len(pages) < MIN_PAGES_FOR_HEADER_DETECTION:
        return list(pages)

    headers, footers = find_repeated_lines(pages)
    if not headers and not footers:
        return list(pages)

    cleaned: List[Page] = []
    for page in pages:
        lines = page.text.split("\n")
        content_indexes = [index for index, line in enumerate(lines) if line.strip()]
        drop: set[int] = set()
        if content_indexes:
            first, last = content_indexes[0], content_indexes[-1]
            if lines[first].strip() in headers:
                drop.add(first)
            if last not in drop and lines[last].strip() in footers:
                drop.add(last)
        text = "\n".join(line for index, line in enumerate(lines) if index not in drop).strip("\n")
        cleaned.append(Page(page_number=page.page_number, text=text))
    return cleaned


def normalize_pages(pages: Sequence[Page]) -> List[Page]:
    """Clean every page then remove running headers and footers."""

    cleaned = [Page(page_number=page.page_number, text=normalize_text(page.text)) for page in pages]
    return remove_repeated_headers_footers(cleaned)
