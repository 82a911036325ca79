"""Heading detection and section segmentation for page-ordered text."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from .models import Page, Section

LOGGER = logging.getLogger(__name__)

MIN_HEADING_LENGTH = 3
MAX_HEADING_LENGTH = 80
INTRODUCTION_TITLE = "Introduction"

_DICE_RANGE_ROW_RE = re.compile(r"^\d{1,2}\s*[-–—]\s*\d{1,2}\b")
_CHAPTER_RE = re.compile(r"^(?:chapter|part)\s+(?:\d+|[IVXLC]+)\b", re.IGNORECASE)
_MARKDOWN_RE = re.compile(r"^(#{1,3})\s+(.+?)\s*#*$")
_NUMBERED_RE = re.compile(r"^(\d{1,2}(?:\.\d{1,2}){0,2})(\.?)\s+([A-Z][^.!?]*)$")
_ALL_CAPS_RE = re.compile(r"^[A-Z][A-Z\s&'\-]{4,50}$")

DOMAIN_HEADINGS: tuple[str, ...] = (
    "post-game",
    "post-battle",
    "exploration",
    "campaign rules",
    "skills",
    "equipment",
    "weapons list",
    "armour list",
    "injuries",
    "warbands",
    "scenarios",
    "missions",
    "abilities",
    "special rules",
)
_DOMAIN_RE = re.compile(
    r"^(?:" + "|".join(re.escape(heading) for heading in DOMAIN_HEADINGS) + r")(?:\s+(?:table|tables|list))?:?$",
    re.IGNORECASE,
)

SECTION_TYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("exploration", ("exploration", "explore", "loot", "treasure")),
    ("skills", ("skill", "abilit", "advance", "talent")),
    (
        "post-game",
        ("post-game", "post game", "postgame", "post-battle", "post battle", "aftermath", "injur", "experience"),
    ),
    ("equipment", ("equipment", "weapon", "armour", "armor", "gear", "item", "trading")),
    (
        "core",
        (
            "core",
            "rule",
            "combat",
            "movement",
            "shooting",
            "melee",
            "turn",
            "phase",
            "warband",
            "scenario",
            "mission",
            "campaign",
            "deployment",
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class HeadingMatch:
    title: str
    level: int
    rule: str


@dataclass(frozen=True, slots=True)
class HeadingRule:
    """A named heading predicate; rules are tried in ascending ``priority``."""

    name: str
    priority: int
    match: Callable[[str], Optional[HeadingMatch]]


def _match_chapter(line: str) -> Optional[HeadingMatch]:
    if _CHAPTER_RE.match(line):
        return HeadingMatch(title=line, level=1, rule="chapter")
    return None


def _match_markdown(line: str) -> Optional[HeadingMatch]:
    match = _MARKDOWN_RE.match(line)
    if match:
        return HeadingMatch(title=match.group(2), level=len(match.group(1)), rule="markdown")
    return None


def _match_numbered(line: str) -> Optional[HeadingMatch]:
    match = _NUMBERED_RE.match(line)
    if not match:
        return None
    number, trailing_dot, _ = match.groups()
    if "." not in number and not trailing_dot:
        return None
    return HeadingMatch(title=line, level=number.count(".") + 1, rule="numbered")


def _match_all_caps(line: str) -> Optional[HeadingMatch]:
    if _ALL_CAPS_RE.match(line):
        return HeadingMatch(title=line.strip(), level=2, rule="all-caps")
    return None


def _match_domain(line: str) -> Optional[HeadingMatch]:
    if _DOMAIN_RE.match(line):
        return HeadingMatch(title=line.rstrip(":"), level=2, rule="domain")
    return None


HEADING_RULES: tuple[HeadingRule, ...] = (
    HeadingRule("chapter", 10, _match_chapter),
    HeadingRule("markdown", 20, _match_markdown),
    HeadingRule("numbered", 30, _match_numbered),
    HeadingRule("all-caps", 40, _match_all_caps),
    HeadingRule("domain", 50, _match_domain),
)


def match_heading(line: str, rules: Sequence[HeadingRule] = HEADING_RULES) -> Optional[HeadingMatch]:
    """Return the first rule match for ``line`` or ``None`` when it is not a heading."""

    stripped = line.strip()
    if not MIN_HEADING_LENGTH <= len(stripped) <= MAX_HEADING_LENGTH:
        return None
    if _DICE_RANGE_ROW_RE.match(stripped) or stripped.startswith("|"):
        return None
    for rule in sorted(rules, key=lambda item: item.priority):
        match = rule.match(stripped)
        if match is not None:
            return match
    return None


def is_heading_line(line: str) -> bool:
    return match_heading(line) is not None


def classify_section_type(title: str) -> str:
    lowered = title.lower()
    for section_type, keywords in SECTION_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return section_type
    return "other"


@dataclass(frozen=True, slots=True)
class Heading:
    """A heading located at ``line_index`` of page ``page_number``."""

    page_number: int
    line_index: int
    title: str
    level: int = 1


def detect_headings(pages: Iterable[Page]) -> List[Heading]:
    headings: List[Heading] = []
    for page in pages:
        for index, line in enumerate(page.text.split("\n")):
            match = match_heading(line)
            if match is not None:
                headings.append(Heading(page.page_number, index, match.title, match.level))
    return headings


def headings_from_hints(pages: Sequence[Page], hints: Iterable[tuple[int, str, int]]) -> List[Heading]:
    """Locate client-supplied ``(page_number, title, level)`` headings in the page text.

    Hints whose title cannot be found on the given page are dropped.
    """

    by_number = {page.page_number: page for page in pages}
    headings: List[Heading] = []
    for page_number, title, level in hints:
        page = by_number.get(page_number)
        wanted = title.strip().lstrip("#").strip().lower()
        if page is None or not wanted:
            LOGGER.debug("Ignoring heading hint %r on missing page %s", title, page_number)
            continue
        for index, line in enumerate(page.text.split("\n")):
            if line.strip().lstrip("#").strip().lower() == wanted:
                headings.append(Heading(page_number, index, title.strip(), max(level, 1)))
                break
        else:
            LOGGER.debug("Heading hint %r not found on page %s", title, page_number)
    return sorted(headings, key=lambda heading: (heading.page_number, heading.line_index))


@dataclass(slots=True)
class _OpenSection:
    title: str
    level: int
    page_start: int
    section_path: List[str]
    lines: List[str] = field(default_factory=list)
    last_content_page: Optional[int] = None

    def close(self, end_page: int) -> Section:
        text = "\n".join(self.lines).strip("\n").rstrip()
        return Section(
            title=self.title,
            text=text,
            page_start=self.page_start,
            page_end=max(end_page, self.page_start),
            section_path=list(self.section_path),
            section_type=classify_section_type(self.title),
            level=self.level,
        )


def sections_per_page(pages: Iterable[Page]) -> List[Section]:
    sections: List[Section] = []
    for page in pages:
        title = f"Page {page.page_number}"
        sections.append(
            Section(
                title=title,
                text=page.text.strip("\n").rstrip(),
                page_start=page.page_number,
                page_end=page.page_number,
                section_path=[title],
                section_type="other",
            )
        )
    return sections


def build_sections(pages: Sequence[Page], headings: Optional[Sequence[Heading]] = None) -> List[Section]:
    """Split pages into sections at headings, falling back to one section per page."""

    if not pages:
        return []
    if headings is None:
        headings = detect_headings(pages)
    if not headings:
        LOGGER.info("No headings detected across %s pages; using one section per page", len(pages))
        return sections_per_page(pages)

    heading_at = {(heading.page_number, heading.line_index): heading for heading in headings}
    sections: List[Section] = []
    stack: List[tuple[int, str]] = []
    current = _OpenSection(
        title=INTRODUCTION_TITLE,
        level=1,
        page_start=pages[0].page_number,
        section_path=[INTRODUCTION_TITLE],
    )
    is_preamble = True

    for page in pages:
        for index, line in enumerate(page.text.split("\n")):
            heading = heading_at.get((page.page_number, index))
            if heading is None:
                current.lines.append(line)
                if line.strip():
                    current.last_content_page = page.page_number
                continue

            if current.last_content_page == page.page_number:
                end_page = page.page_number
            else:
                end_page = page.page_number - 1
            if not is_preamble or current.last_content_page is not None:
                sections.append(current.close(end_page))
            is_preamble = False

            while stack and stack[-1][0] >= heading.level:
                stack.pop()
            stack.append((heading.level, heading.title))
            current = _OpenSection(
                title=heading.title,
                level=heading.level,
                page_start=page.page_number,
                section_path=[title for _, title in stack],
            )

    sections.append(current.close(pages[-1].page_number))
    return sections
