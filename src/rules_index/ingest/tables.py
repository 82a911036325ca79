"""Heuristic table detection for rulebook pages.

Detectors run over the text of a page in priority order:

* dice-roll tables (``1-2 Result``, ``11-16 Result`` or ascending single values),
* stat profiles under a ``M  WS  BS ...`` header, even with a single row,
* whitespace-aligned tables whose columns line up on recurring gaps,
* pipe/markdown tables,
* priced equipment lists (``Sword 10 gc``),
* loose tab or wide-gap columns, always graded ``low``.

Their results are merged by :func:`detect_tables`, which drops any detection that
starts within a few lines of a table already found on the same page.
"""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from .keywords import extract_keywords, unique
from .models import Confidence, Page, Table

LOGGER = logging.getLogger(__name__)

_DASH = "[-\u2013\u2014]"
_RANGE_ROW_RE = re.compile(rf"^(\d{{1,2}})\s*{_DASH}\s*(\d{{1,2}})(?!\d)(?:\s*[:.)])?\s+(\S.*)$")
_SINGLE_ROW_RE = re.compile(rf"^(\d{{1,2}})(?!\d)(?:\s*(?:{_DASH}|[:)]))?\s+(\S.*)$")
_HAS_LETTER_RE = re.compile(r"[A-Za-z]")
_GAP_RE = re.compile(r"[ \t]{2,}")
_PIPE_SEPARATOR_CELL_RE = re.compile(r"^:?-{2,}:?$")
_TITLE_TRAILING_RE = re.compile(r"[\s:\-\u2013\u2014]+$")
_EQUIPMENT_ROW_RE = re.compile(
    r"^(?P<name>.+?)\s+(?P<cost>\d+)\s*(?P<unit>gc|gold|pts?|points?)\b(?:\s*(?P<effect>.+))?$", re.IGNORECASE
)
_EQUIPMENT_DASH_RE = re.compile(
    rf"^(?P<name>.+?)\s*{_DASH}\s*(?P<cost>\d+)\s*(?P<unit>gc|gold|pts?)$", re.IGNORECASE
)
_WIDE_GAP_RE = re.compile(r"\s{2,}|\t")
_LOOSE_GAP_RE = re.compile(r"\s{3,}")
_TAB_RE = re.compile(r"\t")

MIN_DICE_ROWS = 3
HIGH_CONFIDENCE_DICE_ROWS = 6
MIN_ALIGNED_LINE_LENGTH = 10
COLUMN_RECURRENCE_RATIO = 0.2
MIN_COLUMN_SPACING = 5
MIN_ALIGNED_ROWS = 3
HIGH_CONFIDENCE_ALIGNED_DATA_ROWS = 5
MIN_PIPE_SEGMENTS = 3
MIN_PIPE_ROWS = 2
HIGH_CONFIDENCE_PIPE_ROWS = 4
TITLE_LOOKBACK_LINES = 3
MAX_TITLE_LENGTH = 80
DUPLICATE_LINE_DISTANCE = 3
MIN_EQUIPMENT_ROWS = 3
MAX_ITEM_NAME_LENGTH = 40
MIN_STATS_COLUMNS = 3
MIN_GENERIC_DATA_ROWS = 2
DEFAULT_TABLE_TITLE = "Untitled Table"

STAT_ABBREVIATIONS = frozenset(
    {"m", "ws", "bs", "s", "t", "w", "i", "a", "ld", "sv", "mv", "rng", "acc", "str", "ap", "dmg"}
)

_KIND_TAGS = {
    "dice-roll": ("dice", "roll", "random"),
    "whitespace": ("table", "aligned"),
    "pipe": ("table", "markdown"),
    "equipment": ("equipment", "gear", "cost"),
    "stats": ("stats", "profile"),
    "generic": ("table",),
    "structured": ("table", "structured"),
}


def find_table_title(lines: Sequence[str], start: int) -> Optional[str]:
    """Guess a title from the lines just above ``start``."""

    for index in range(start - 1, max(start - 1 - TITLE_LOOKBACK_LINES, -1), -1):
        candidate = lines[index].strip().lstrip("#").strip()
        if not candidate or len(candidate) >= MAX_TITLE_LENGTH:
            continue
        if candidate[0].isdigit() or candidate.startswith("|"):
            continue
        title = _TITLE_TRAILING_RE.sub("", candidate)
        if title:
            return title
    return None


def _header_context(lines: Sequence[str], start: int) -> str:
    above = lines[max(start - TITLE_LOOKBACK_LINES, 0) : start]
    return "\n".join(line.strip() for line in above if line.strip())


def table_keywords(table: Table) -> List[str]:
    """Kind tags, dice type, title words and vocabulary terms for a table."""

    tags = list(_KIND_TAGS.get(table.table_type, ("table",)))
    if table.dice_type:
        tags.append(table.dice_type)
    title_words = [word.lower() for word in re.findall(r"[A-Za-z][A-Za-z'-]*", table.title) if len(word) > 3]
    terms = extract_keywords(f"{table.title}\n{table.raw_text}")
    return unique([*tags, *title_words, *terms])


# Dice-roll tables -----------------------------------------------------------


@dataclass(slots=True)
class _DiceRow:
    low: int
    high: int
    roll: str
    result: str
    numeric: bool
    d66: bool


def _is_d66_token(token: str) -> bool:
    return len(token) == 2 and token[0] in "123456" and token[1] in "123456"


def parse_dice_row(line: str) -> Optional[_DiceRow]:
    """Parse ``line`` as a dice-table row, or return ``None``."""

    stripped = line.strip()
    match = _RANGE_ROW_RE.match(stripped)
    if match:
        first, second, result = match.groups()
        if not _HAS_LETTER_RE.search(result):
            return None
        low, high = int(first), int(second)
        if low >= high:
            return None
        d66 = _is_d66_token(first) and _is_d66_token(second)
        numeric = 1 <= low and high <= 12
        if not (d66 or numeric):
            return None
        return _DiceRow(low, high, f"{first}-{second}", result.strip(), numeric=numeric, d66=d66)

    match = _SINGLE_ROW_RE.match(stripped)
    if match:
        token, result = match.groups()
        if not _HAS_LETTER_RE.search(result):
            return None
        value = int(token)
        d66 = _is_d66_token(token)
        numeric = 1 <= value <= 12
        if not (d66 or numeric):
            return None
        return _DiceRow(value, value, token, result.strip(), numeric=numeric, d66=d66)
    return None


def _row_modes(row: _DiceRow) -> set[str]:
    modes = set()
    if row.numeric:
        modes.add("numeric")
    if row.d66:
        modes.add("d66")
    return modes


def _continues(previous: _DiceRow, row: _DiceRow, mode: str) -> bool:
    if mode == "d66":
        return row.d66 and row.low > previous.high
    if not row.numeric:
        return False
    if row.low == row.high:
        return row.low == previous.high + 1
    return row.low > previous.high


def _is_continuation_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and line[:1] in (" ", "\t") and not stripped[0].isdigit()


@dataclass(slots=True)
class _DiceRun:
    start: int
    end: int
    rows: List[_DiceRow]
    modes: set[str]

    def dice_type(self) -> str:
        highest = max(row.high for row in self.rows)
        if "numeric" in self.modes and highest <= 6:
            return "d6"
        if "d66" in self.modes:
            return "d66"
        return "2d6"


def _dice_table(run: _DiceRun, lines: Sequence[str], page_number: Optional[int]) -> Table:
    dice_type = run.dice_type()
    title = find_table_title(lines, run.start) or f"{dice_type.upper()} Table"
    table = Table(
        title=title,
        raw_text="\n".join(lines[run.start : run.end + 1]),
        parsed_rows=[{"roll": row.roll, "result": row.result} for row in run.rows],
        confidence=Confidence.HIGH if len(run.rows) >= HIGH_CONFIDENCE_DICE_ROWS else Confidence.MEDIUM,
        table_type="dice-roll",
        page_number=page_number,
        columns=["roll", "result"],
        dice_type=dice_type,
        header_context=_header_context(lines, run.start),
        start_line=run.start,
        end_line=run.end,
    )
    table.keywords = table_keywords(table)
    return table


def detect_dice_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find runs of at least three dice-roll rows."""

    lines = text.split("\n")
    tables: List[Table] = []
    run: Optional[_DiceRun] = None

    def close() -> None:
        if run is not None and len(run.rows) >= MIN_DICE_ROWS:
            tables.append(_dice_table(run, lines, page_number))

    for index, line in enumerate(lines):
        if not line.strip():
            continue
        row = parse_dice_row(line)
        if row is None:
            if run is not None and _is_continuation_line(line):
                run.rows[-1].result = f"{run.rows[-1].result} {line.strip()}"
                run.end = index
                continue
            close()
            run = None
            continue

        if run is not None:
            modes = {mode for mode in run.modes if _continues(run.rows[-1], row, mode)}
            if modes:
                run.rows.append(row)
                run.modes = modes
                run.end = index
                continue
            close()
        run = _DiceRun(start=index, end=index, rows=[row], modes=_row_modes(row))
    close()
    return tables


# Whitespace-aligned tables --------------------------------------------------


def find_column_positions(lines: Sequence[str]) -> List[int]:
    """Column start offsets where a wide gap recurs across long lines."""

    candidates = [line.rstrip() for line in lines if len(line.strip()) > MIN_ALIGNED_LINE_LENGTH]
    if not candidates:
        return []

    counts: Counter[int] = Counter()
    for line in candidates:
        content_start = len(line) - len(line.lstrip())
        positions = {gap.end() for gap in _GAP_RE.finditer(line) if gap.start() > content_start}
        counts.update(positions)

    threshold = max(2, math.ceil(len(candidates) * COLUMN_RECURRENCE_RATIO))
    columns = [0]
    for position in sorted(position for position, count in counts.items() if count >= threshold):
        if position - columns[-1] >= MIN_COLUMN_SPACING:
            columns.append(position)
    return columns if len(columns) >= 2 else []


def _split_columns(line: str, positions: Sequence[int]) -> Optional[List[str]]:
    cells: List[str] = []
    for index, start in enumerate(positions):
        end = positions[index + 1] if index + 1 < len(positions) else len(line)
        if 0 < start < len(line) and not line[start - 1].isspace() and not line[start].isspace():
            return None
        cells.append(line[start:end].strip())
    return cells


def _aligned_table(
    rows: List[List[str]], lines: Sequence[str], start: int, end: int, page_number: Optional[int]
) -> Table:
    header = [cell or f"col{index + 1}" for index, cell in enumerate(rows[0])]
    data = [dict(zip(header, row)) for row in rows[1:]]
    table = Table(
        title=find_table_title(lines, start) or DEFAULT_TABLE_TITLE,
        raw_text="\n".join(lines[start : end + 1]),
        parsed_rows=data,
        confidence=Confidence.HIGH if len(data) >= HIGH_CONFIDENCE_ALIGNED_DATA_ROWS else Confidence.MEDIUM,
        table_type="whitespace",
        page_number=page_number,
        columns=header,
        header_context=_header_context(lines, start),
        start_line=start,
        end_line=end,
    )
    table.keywords = table_keywords(table)
    return table


def detect_whitespace_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find runs of lines whose content falls into recurring whitespace columns."""

    lines = text.split("\n")
    positions = find_column_positions(lines)
    if not positions:
        return []

    tables: List[Table] = []
    run: List[List[str]] = []
    run_start = 0
    for index, line in enumerate(lines + [""]):
        cells = _split_columns(line.rstrip(), positions) if line.strip() else None
        if cells is not None and sum(1 for cell in cells if cell) >= 2:
            if not run:
                run_start = index
            run.append(cells)
            continue
        if len(run) >= MIN_ALIGNED_ROWS:
            tables.append(_aligned_table(run, lines, run_start, index - 1, page_number))
        run = []
    return tables


# Pipe tables ----------------------------------------------------------------


def _pipe_cells(line: str) -> Optional[List[str]]:
    stripped = line.strip()
    segments = stripped.split("|")
    if len(segments) < MIN_PIPE_SEGMENTS:
        return None
    if stripped.startswith("|"):
        segments = segments[1:]
    if stripped.endswith("|"):
        segments = segments[:-1]
    return [segment.strip() for segment in segments]


def _is_separator_row(cells: Sequence[str]) -> bool:
    return bool(cells) and all(_PIPE_SEPARATOR_CELL_RE.match(cell) for cell in cells if cell)


def _pipe_table(
    rows: List[List[str]], lines: Sequence[str], start: int, end: int, page_number: Optional[int]
) -> Optional[Table]:
    content = [row for row in rows if not _is_separator_row(row)]
    if len(content) < 2:
        return None
    header = [cell or f"col{index + 1}" for index, cell in enumerate(content[0])]
    data: List[dict[str, str]] = []
    for row in content[1:]:
        keys = header + [f"col{index + 1}" for index in range(len(header), len(row))]
        data.append(dict(zip(keys, row)))
    table = Table(
        title=find_table_title(lines, start) or DEFAULT_TABLE_TITLE,
        raw_text="\n".join(lines[start : end + 1]),
        parsed_rows=data,
        confidence=Confidence.HIGH if len(rows) >= HIGH_CONFIDENCE_PIPE_ROWS else Confidence.MEDIUM,
        table_type="pipe",
        page_number=page_number,
        columns=header,
        header_context=_header_context(lines, start),
        start_line=start,
        end_line=end,
    )
    table.keywords = table_keywords(table)
    return table


def detect_pipe_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find markdown-style tables made of ``|``-delimited lines."""

    lines = text.split("\n")
    tables: List[Table] = []
    run: List[List[str]] = []
    run_start = 0
    for index, line in enumerate(lines + [""]):
        cells = _pipe_cells(line) if "|" in line else None
        if cells is not None:
            if not run:
                run_start = index
            run.append(cells)
            continue
        if len(run) >= MIN_PIPE_ROWS:
            table = _pipe_table(run, lines, run_start, index - 1, page_number)
            if table is not None:
                tables.append(table)
        run = []
    return tables


# Equipment lists ------------------------------------------------------------


@dataclass(slots=True)
class _EquipmentRow:
    name: str
    cost: str
    effect: str


def parse_equipment_row(line: str) -> Optional[_EquipmentRow]:
    """Parse ``Name 10 gc [effect]`` or ``Name - 10 gc``, or return ``None``."""

    stripped = line.strip()
    if not stripped or "|" in stripped or stripped[0].isdigit():
        return None
    match = _EQUIPMENT_DASH_RE.match(stripped) or _EQUIPMENT_ROW_RE.match(stripped)
    if not match:
        return None
    name = _TITLE_TRAILING_RE.sub("", match.group("name").strip())
    if not _HAS_LETTER_RE.search(name) or len(name) > MAX_ITEM_NAME_LENGTH:
        return None
    effect = (match.groupdict().get("effect") or "").strip().lstrip("-–—:;,").strip()
    return _EquipmentRow(name=name, cost=f"{match.group('cost')} {match.group('unit').lower()}", effect=effect)


def detect_equipment_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find runs of at least three priced item lines."""

    lines = text.split("\n")
    tables: List[Table] = []
    rows: List[_EquipmentRow] = []
    start = end = 0

    def close() -> None:
        if len(rows) < MIN_EQUIPMENT_ROWS:
            return
        table = Table(
            title=find_table_title(lines, start) or "Equipment",
            raw_text="\n".join(lines[start : end + 1]),
            parsed_rows=[{"name": row.name, "cost": row.cost, "effect": row.effect} for row in rows],
            confidence=Confidence.MEDIUM,
            table_type="equipment",
            page_number=page_number,
            columns=["name", "cost", "effect"],
            header_context=_header_context(lines, start),
            start_line=start,
            end_line=end,
        )
        table.keywords = table_keywords(table)
        tables.append(table)

    for index, line in enumerate(lines):
        if not line.strip():
            continue
        row = parse_equipment_row(line)
        if row is None:
            close()
            rows = []
            continue
        if not rows:
            start = index
        rows.append(row)
        end = index
    close()
    return tables


# Stat profiles --------------------------------------------------------------


def _cells(line: str, separator: re.Pattern[str]) -> List[str]:
    return [cell.strip() for cell in separator.split(line.strip()) if cell.strip()]


def is_stats_header(cells: Sequence[str]) -> bool:
    """True when most cells of a row are characteristic abbreviations such as ``WS`` or ``Ld``."""

    if len(cells) < MIN_STATS_COLUMNS:
        return False
    known = sum(1 for cell in cells if cell.lower() in STAT_ABBREVIATIONS)
    return known * 2 >= len(cells)


def detect_stats_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find profile tables: a characteristic header followed by one or more value rows."""

    lines = text.split("\n")
    tables: List[Table] = []
    index = 0
    while index < len(lines):
        header = _cells(lines[index], _WIDE_GAP_RE)
        if not is_stats_header(header):
            index += 1
            continue
        data: List[dict[str, str]] = []
        end = index
        for position in range(index + 1, len(lines)):
            values = _cells(lines[position], _WIDE_GAP_RE)
            if not values or len(values) < len(header) - 1 or is_stats_header(values):
                break
            data.append({column: values[offset] if offset < len(values) else "" for offset, column in enumerate(header)})
            end = position
        if data:
            table = Table(
                title=find_table_title(lines, index) or "Stats Table",
                raw_text="\n".join(lines[index : end + 1]),
                parsed_rows=data,
                confidence=Confidence.HIGH,
                table_type="stats",
                page_number=page_number,
                columns=header,
                header_context=_header_context(lines, index),
                start_line=index,
                end_line=end,
            )
            table.keywords = table_keywords(table)
            tables.append(table)
        index = end + 1
    return tables


# Loose columns --------------------------------------------------------------


def detect_generic_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Find tab or wide-gap separated runs the aligned detector rejected; graded ``low``."""

    lines = text.split("\n")
    tables: List[Table] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        separator = _TAB_RE if "\t" in line else _LOOSE_GAP_RE
        header = _cells(line, separator)
        if len(header) < 2:
            index += 1
            continue
        rows: List[dict[str, str]] = []
        end = index
        for position in range(index + 1, len(lines)):
            values = _cells(lines[position], separator)
            if not values or len(values) < len(header) - 1 or len(values) < 2:
                break
            rows.append({column: values[offset] if offset < len(values) else "" for offset, column in enumerate(header)})
            end = position
        if len(rows) < MIN_GENERIC_DATA_ROWS:
            index += 1
            continue
        table = Table(
            title=find_table_title(lines, index) or DEFAULT_TABLE_TITLE,
            raw_text="\n".join(lines[index : end + 1]),
            parsed_rows=rows,
            confidence=Confidence.LOW,
            table_type="generic",
            page_number=page_number,
            columns=header,
            header_context=_header_context(lines, index),
            start_line=index,
            end_line=end,
        )
        table.keywords = table_keywords(table)
        tables.append(table)
        index = end + 1
    return tables


# Merging --------------------------------------------------------------------

TableDetector = Callable[[str, Optional[int]], List[Table]]

DETECTORS: tuple[tuple[str, TableDetector], ...] = (
    ("dice-roll", detect_dice_tables),
    ("stats", detect_stats_tables),
    ("whitespace", detect_whitespace_tables),
    ("pipe", detect_pipe_tables),
    ("equipment", detect_equipment_tables),
    ("generic", detect_generic_tables),
)


def _is_duplicate(table: Table, kept: Table) -> bool:
    if table.page_number != kept.page_number:
        return False
    if abs(table.start_line - kept.start_line) <= DUPLICATE_LINE_DISTANCE:
        return True
    return table.start_line <= kept.end_line and kept.start_line <= table.end_line


def detect_tables(text: str, page_number: Optional[int] = None) -> List[Table]:
    """Run every detector over one page and merge their detections."""

    found: List[Table] = []
    for name, detector in DETECTORS:
        for table in detector(text, page_number):
            if any(_is_duplicate(table, kept) for kept in found):
                LOGGER.debug("Dropping duplicate %s table on page %s line %s", name, page_number, table.start_line)
                continue
            found.append(table)
    return sorted(found, key=lambda table: table.start_line)


def detect_tables_in_pages(pages: Iterable[Page]) -> List[Table]:
    tables: List[Table] = []
    for page in pages:
        tables.extend(detect_tables(page.text, page.page_number))
    return tables
