from __future__ import annotations

from rules_index.ingest.models import Page
from rules_index.ingest.normalization import (
    find_repeated_lines,
    normalize_pages,
    normalize_text,
    remove_repeated_headers_footers,
)

from conftest import make_pages


def test_normalize_text_cleans_extraction_noise() -> None:
    raw = "Move\u0007ment rules\r\nTroops may move ag-\ngain.   \r\n\n\n\n\nPage 12\nEnd"

    cleaned = normalize_text(raw)

    assert cleaned == "Movement rules\nTroops may move aggain.\n\nEnd"


def test_normalize_text_keeps_column_alignment() -> None:
    raw = "Name      Cost    Weight\n  Sword     10gc    1\n"

    assert normalize_text(raw) == "Name      Cost    Weight\n  Sword     10gc    1"


def test_normalize_text_drops_standalone_page_numbers() -> None:
    assert normalize_text("Rules text\n- 4 -\n17\nMore text") == "Rules text\n\nMore text"


def test_repeated_header_and_footer_are_stripped() -> None:
    pages = make_pages(
        "Mordheim Rules\nFirst page body\nCopyright GW",
        "Mordheim Rules\nSecond page body\nCopyright GW",
        "Mordheim Rules\nThird page body\nCopyright GW",
        "Unique opener\nFourth page body\nAnother footer",
    )

    headers, footers = find_repeated_lines(pages)
    cleaned = remove_repeated_headers_footers(pages)

    assert headers == {"Mordheim Rules"}
    assert footers == {"Copyright GW"}
    assert [page.text for page in cleaned] == [
        "First page body",
        "Second page body",
        "Third page body",
        "Unique opener\nFourth page body\nAnother footer",
    ]
    assert cleaned[0].char_count == len("First page body")


def test_header_removal_is_noop_below_three_pages() -> None:
    pages = make_pages("Header\nBody one\nFooter", "Header\nBody two\nFooter")

    assert remove_repeated_headers_footers(pages) == pages


def test_line_on_exactly_half_the_pages_is_kept() -> None:
    pages = make_pages("Shared\nA body", "Shared\nB body", "Other\nC body", "Else\nD body")

    cleaned = remove_repeated_headers_footers(pages)

    assert cleaned[0].text.startswith("Shared")


def test_long_repeated_lines_are_not_headers() -> None:
    long_line = "L" * 120
    pages = make_pages(*(f"{long_line}\nbody {index}" for index in range(3)))

    headers, _ = find_repeated_lines(pages)

    assert headers == set()


def test_normalize_pages_cleans_then_strips_headers() -> None:
    pages = [
        Page(page_number=1, text="Rulebook\r\nAlpha\r\n1"),
        Page(page_number=2, text="Rulebook\r\nBeta\r\n2"),
        Page(page_number=3, text="Rulebook\r\nGamma\r\n3"),
    ]

    cleaned = normalize_pages(pages)

    assert [page.text for page in cleaned] == ["Alpha", "Beta", "Gamma"]
    assert [page.page_number for page in cleaned] == [1, 2, 3]
