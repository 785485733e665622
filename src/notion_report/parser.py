"""Content parser: Markdown (or JSON) report text to ordered content items.

The Markdown scan is a single left-to-right pass over lines with an explicit
mode for fenced code and one for tables, entered once a header line and its
separator are recognised. Key/value lines that appear before the
first structural line are captured separately as the report's preface.
"""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional, Union

from .errors import ParseAmbiguity

logger = logging.getLogger("notion-report")

# Invalid JSON is echoed back up to this many characters
INVALID_JSON_PREVIEW = 2000


# =============================================================================
# Content Items
# =============================================================================

@dataclass(frozen=True)
class Heading:
    level: int  # 1, 2 or 3
    text: str


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class Divider:
    pass


@dataclass(frozen=True)
class BulletedListItem:
    text: str


@dataclass(frozen=True)
class NumberedListItem:
    text: str


@dataclass(frozen=True)
class ToDo:
    text: str
    checked: bool = False


@dataclass(frozen=True)
class Quote:
    text: str


@dataclass(frozen=True)
class Code:
    language: str
    text: str


@dataclass(frozen=True)
class Table:
    """A Markdown table. rows may be empty (header + separator only)."""
    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]
    title: Optional[str] = None


ContentItem = Union[
    Heading, Paragraph, Divider, BulletedListItem, NumberedListItem,
    ToDo, Quote, Code, Table,
]


@dataclass(frozen=True)
class KeyValue:
    key: str
    value: str


@dataclass
class ParsedContent:
    """Result of parsing one report."""
    items: list[ContentItem] = field(default_factory=list)
    first_heading: Optional[str] = None
    preface_key_values: list[KeyValue] = field(default_factory=list)
    json_value: Any = None
    is_json: bool = False
    warnings: list[ParseAmbiguity] = field(default_factory=list)


class ParseMode(Enum):
    """Scanner modes for the Markdown parser."""
    TEXT = auto()
    CODE = auto()
    TABLE = auto()


# =============================================================================
# Line Patterns
# =============================================================================

FENCE_PATTERN = re.compile(r'^\s*```\s*([A-Za-z0-9_+#.-]*)\s*$')
HEADING_PATTERN = re.compile(r'^(#{1,6})\s+(.*?)(?:\s+#+)?\s*$')
DIVIDER_PATTERN = re.compile(r'^\s*(-{3,}|\*{3,}|_{3,})\s*$')
QUOTE_PATTERN = re.compile(r'^>\s?(.*)$')
TODO_PATTERN = re.compile(r'^\s*[-*+]\s*\[( |x|X)\]\s+(.*)$')
BULLET_PATTERN = re.compile(r'^\s*[-*+]\s+(.*)$')
NUMBERED_PATTERN = re.compile(r'^\s*\d+[.)]\s+(.*)$')
KEY_VALUE_PATTERN = re.compile(r'^(\S[^:]{0,200}):\s+(.+)$')
SEPARATOR_CELL_PATTERN = re.compile(r'^:?-{3,}:?$')


def _is_structural(line: str) -> bool:
    """True if the line starts a non-paragraph item."""
    return bool(
        FENCE_PATTERN.match(line) or
        HEADING_PATTERN.match(line) or
        DIVIDER_PATTERN.match(line) or
        QUOTE_PATTERN.match(line) or
        TODO_PATTERN.match(line) or
        BULLET_PATTERN.match(line) or
        NUMBERED_PATTERN.match(line)
    )


# =============================================================================
# Tables
# =============================================================================

def split_table_row(line: str) -> list[str]:
    """Split a pipe-delimited row into trimmed cells.

    Leading and trailing empty cells produced by outer pipes are removed;
    empty cells in the middle are kept.
    """
    cells = [cell.strip() for cell in line.strip().split('|')]
    if cells and cells[0] == '':
        cells = cells[1:]
    if cells and cells[-1] == '':
        cells = cells[:-1]
    return cells


def is_separator_line(line: str) -> bool:
    """True for a Markdown table separator such as ``|---|:---:|``."""
    if '-' not in line:
        return False
    cells = split_table_row(line)
    return bool(cells) and all(SEPARATOR_CELL_PATTERN.match(c) for c in cells)


def looks_like_table(lines: list[str], index: int) -> bool:
    """True if lines[index] is a table header followed by a separator line."""
    if index + 1 >= len(lines):
        return False
    header = lines[index]
    if '|' not in header:
        return False
    if not is_separator_line(lines[index + 1]):
        return False
    return len(split_table_row(header)) == len(split_table_row(lines[index + 1]))


def normalize_row(
    row: list[str],
    width: int,
    warnings: Optional[list[ParseAmbiguity]] = None,
    line: Optional[int] = None
) -> tuple[str, ...]:
    """Pad or truncate a row to the header width."""
    if len(row) < width:
        row = row + [''] * (width - len(row))
    elif len(row) > width:
        if warnings is not None:
            warnings.append(ParseAmbiguity(
                f"Table row has {len(row)} cells but header has {width}. "
                f"Truncating extra cells.",
                line=line,
            ))
        row = row[:width]
    return tuple(row)


def detect_table_headers(
    rows: list[list[str]],
    warnings: Optional[list[ParseAmbiguity]] = None,
    line: Optional[int] = None
) -> tuple[list[str], list[list[str]]]:
    """Pick the header row of a table that has no separator line.

    Strategy, in order:
    1. the first row when it has the most common (modal) width;
    2. the first row that has the modal width;
    3. synthetic ``Column N`` headers when no width repeats (every row has
       a different width), with every row treated as data.

    Returns:
        Tuple of (headers, data_rows).
    """
    if not rows:
        return [], []

    counts = Counter(len(r) for r in rows)
    # most_common keeps first-seen order on ties
    modal_width, modal_count = counts.most_common(1)[0]

    if modal_count == 1 and len(counts) > 1:
        width = max(counts)
        if warnings is not None:
            warnings.append(ParseAmbiguity(
                f"No suitable header row found. Creating synthetic headers "
                f"for {width} columns",
                line=line,
            ))
        return [f"Column {i + 1}" for i in range(width)], rows

    if len(rows[0]) == modal_width:
        return rows[0], rows[1:]

    for idx, row in enumerate(rows):
        if len(row) == modal_width:
            if warnings is not None:
                warnings.append(ParseAmbiguity(
                    f"Using row {idx + 1} as headers instead of row 1",
                    line=line,
                ))
            return row, rows[idx + 1:]

    return rows[0], rows[1:]


def _collect_loose_table(
    lines: list[str],
    start: int,
    title: Optional[str],
    warnings: list[ParseAmbiguity]
) -> tuple[Optional[Table], int]:
    """Collect a run of ``|``-prefixed lines that has no separator line."""
    index = start
    raw_rows: list[list[str]] = []
    while index < len(lines) and lines[index].lstrip().startswith('|'):
        if not is_separator_line(lines[index]):
            raw_rows.append(split_table_row(lines[index]))
        index += 1
    if len(raw_rows) < 2:
        return None, start

    warnings.append(ParseAmbiguity(
        "Table without separator line; detecting header row by column count",
        line=start + 1,
    ))
    headers, data = detect_table_headers(raw_rows, warnings, start + 1)
    rows = tuple(normalize_row(r, len(headers), warnings, start + 1) for r in data)
    return Table(headers=tuple(headers), rows=rows, title=title), index


def _starts_loose_table(lines: list[str], index: int) -> bool:
    return (
        index + 1 < len(lines) and
        lines[index].lstrip().startswith('|') and
        lines[index + 1].lstrip().startswith('|')
    )


# =============================================================================
# Markdown Parser
# =============================================================================

def parse_markdown(markdown: str) -> ParsedContent:
    """Parse a Markdown report into ordered content items.

    Args:
        markdown: The report text.

    Returns:
        ParsedContent with items in document order, the first H1 text, the
        preface key/value lines and any heuristic warnings.
    """
    lines = (markdown or '').replace('\r\n', '\n').split('\n')
    result = ParsedContent()
    items = result.items
    warnings = result.warnings

    mode = ParseMode.TEXT
    code_lang = 'text'
    code_buffer: list[str] = []
    code_start = 0
    table_headers: list[str] = []
    table_rows: list[tuple[str, ...]] = []
    seen_structure = False
    section_title: Optional[str] = None

    i = 0
    while i < len(lines):
        line = lines[i]

        fence = FENCE_PATTERN.match(line)
        if mode == ParseMode.CODE:
            if fence and not fence.group(1):
                items.append(Code(language=code_lang, text='\n'.join(code_buffer)))
                mode = ParseMode.TEXT
                code_buffer = []
            else:
                code_buffer.append(line)
            i += 1
            continue

        if mode == ParseMode.TABLE:
            cells = split_table_row(line) if '|' in line else []
            if cells:
                table_rows.append(normalize_row(cells, len(table_headers), warnings, i + 1))
                i += 1
                continue
            # First non-pipe line closes the table and is scanned as text
            items.append(Table(
                headers=tuple(table_headers), rows=tuple(table_rows), title=section_title
            ))
            mode = ParseMode.TEXT

        if fence:
            seen_structure = True
            mode = ParseMode.CODE
            code_lang = (fence.group(1) or 'text').lower()
            code_buffer = []
            code_start = i + 1
            i += 1
            continue

        stripped = line.strip()
        if not stripped:
            i += 1
            continue

        # Preface key/value lines (before the first heading or other structure)
        if not seen_structure and '|' not in stripped:
            kv = KEY_VALUE_PATTERN.match(stripped)
            if kv and not HEADING_PATTERN.match(stripped):
                result.preface_key_values.append(
                    KeyValue(key=kv.group(1).strip(), value=kv.group(2).strip())
                )
                i += 1
                continue

        heading = HEADING_PATTERN.match(line)
        if heading:
            seen_structure = True
            level = len(heading.group(1))
            text = heading.group(2).strip()
            if level > 3:
                warnings.append(ParseAmbiguity(
                    f"Notion only supports h1-h3. '{heading.group(1)}' treated as h3.",
                    line=i + 1,
                ))
                level = 3
            if level == 1 and result.first_heading is None:
                result.first_heading = text
            items.append(Heading(level=level, text=text))
            section_title = text
            i += 1
            continue

        if looks_like_table(lines, i):
            seen_structure = True
            mode = ParseMode.TABLE
            table_headers = split_table_row(line)
            table_rows = []
            # skip the separator line
            i += 2
            continue

        if _starts_loose_table(lines, i):
            table, next_index = _collect_loose_table(lines, i, section_title, warnings)
            if table is not None:
                seen_structure = True
                items.append(table)
                i = next_index
                continue

        if DIVIDER_PATTERN.match(line):
            seen_structure = True
            items.append(Divider())
            i += 1
            continue

        quote = QUOTE_PATTERN.match(line)
        if quote:
            seen_structure = True
            items.append(Quote(text=quote.group(1)))
            i += 1
            continue

        todo = TODO_PATTERN.match(line)
        if todo:
            seen_structure = True
            items.append(ToDo(text=todo.group(2), checked=todo.group(1) in ('x', 'X')))
            i += 1
            continue

        bullet = BULLET_PATTERN.match(line)
        if bullet:
            seen_structure = True
            items.append(BulletedListItem(text=bullet.group(1)))
            i += 1
            continue

        numbered = NUMBERED_PATTERN.match(line)
        if numbered:
            seen_structure = True
            items.append(NumberedListItem(text=numbered.group(1)))
            i += 1
            continue

        # Paragraph: consecutive non-empty, non-structural lines
        seen_structure = True
        para_lines = [stripped]
        j = i + 1
        while (
            j < len(lines) and
            lines[j].strip() and
            not _is_structural(lines[j]) and
            not looks_like_table(lines, j) and
            not _starts_loose_table(lines, j)
        ):
            para_lines.append(lines[j].strip())
            j += 1
        items.append(Paragraph(text=' '.join(para_lines)))
        i = j

    if mode == ParseMode.TABLE:
        items.append(Table(
            headers=tuple(table_headers), rows=tuple(table_rows), title=section_title
        ))
    elif mode == ParseMode.CODE:
        warnings.append(ParseAmbiguity(
            "Unterminated code fence; closing it at end of input",
            line=code_start,
        ))
        items.append(Code(language=code_lang, text='\n'.join(code_buffer)))

    for warning in warnings:
        logger.warning(f"Parse: {warning.message} (line {warning.line})")

    return result


# =============================================================================
# JSON Input
# =============================================================================

def parse_json(content: str) -> ParsedContent:
    """Parse a JSON report.

    Valid JSON is kept as a decoded value for the block builder. Invalid JSON
    degrades to a notice paragraph plus the raw text as a code item.
    """
    result = ParsedContent(is_json=True)
    try:
        result.json_value = json.loads(content)
    except json.JSONDecodeError as e:
        result.is_json = False
        result.warnings.append(ParseAmbiguity(
            f"Invalid JSON ({e.msg}); treating as plain text",
            line=e.lineno,
        ))
        logger.warning(f"Invalid JSON content at line {e.lineno}: {e.msg}")
        preview = content
        if len(preview) > INVALID_JSON_PREVIEW:
            preview = preview[:INVALID_JSON_PREVIEW] + '...[truncated]'
        result.items = [
            Paragraph(text='Invalid JSON content:'),
            Code(language='text', text=preview),
        ]
    return result


def parse_content(content: str, content_type: str) -> ParsedContent:
    """Parse report content of the given type ("markdown" or "json")."""
    if content_type == 'markdown':
        return parse_markdown(content)
    if content_type == 'json':
        return parse_json(content)
    raise ValueError(f"Unsupported content type: {content_type}")
