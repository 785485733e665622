"""Table schema inference for Notion databases.

Given a parsed Markdown table, decide each column's Notion property type,
the title column and a unique, sanitized property name per column. The
returned TableSchema is the single source of truth for the mapping from
column index to property name and type; row insertion uses it unchanged.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

# Notion property name length cap used by the importer
MAX_PROPERTY_NAME_LENGTH = 80

# Notion select option names are limited to 100 characters
MAX_SELECT_OPTION_LENGTH = 100

# A column with more distinct values than this stays rich_text
MAX_SELECT_OPTIONS = 100

BOOLEAN_TOKENS = {'true', 'false', 'yes', 'no', '✅', '❌'}
TRUE_TOKENS = {'true', 'yes', '✅', 'x'}

NUMBER_PATTERNS = [
    re.compile(r'^-?\d{1,3}(,\d{3})*(\.\d+)?$'),
    re.compile(r'^-?\d+(\.\d+)?$'),
]

ISO_DATE_PATTERN = re.compile(
    r'^(\d{4}-\d{2}-\d{2})([T\s]\d{2}:\d{2}(:\d{2})?(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$'
)


class ColumnType(str, Enum):
    """Notion property types produced by inference."""
    TITLE = "title"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    CHECKBOX = "checkbox"
    DATE = "date"
    SELECT = "select"


@dataclass
class TableSchema:
    """Inferred database schema for one table."""
    column_types: list[ColumnType]
    property_names: list[str]
    title_column: int = 0
    select_options: dict[str, list[str]] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)

    @property
    def title_property(self) -> str:
        return self.property_names[self.title_column]

    def property_definition(self, index: int) -> dict:
        """Notion property schema for column index (e.g. ``{"number": {}}``)."""
        column_type = self.column_types[index]
        if column_type == ColumnType.SELECT:
            name = self.property_names[index]
            options = self.select_options.get(name, [])
            return {"select": {"options": [{"name": o} for o in options]}}
        return {column_type.value: {}}


# =============================================================================
# Value Classification
# =============================================================================

def is_boolean_token(value: str) -> bool:
    return value.lower() in BOOLEAN_TOKENS


def to_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_TOKENS


def is_number(value: str) -> bool:
    return any(p.match(value) for p in NUMBER_PATTERNS)


def parse_number(value: str) -> Optional[float]:
    """Parse a number with optional thousands separators. None if invalid."""
    try:
        number = float(value.replace(',', ''))
    except ValueError:
        return None
    if number != number or number in (float('inf'), float('-inf')):
        return None
    return int(number) if number.is_integer() and '.' not in value else number


def is_iso_date(value: str) -> bool:
    return bool(ISO_DATE_PATTERN.match(value))


def select_option_name(value: str) -> str:
    """Normalise a cell value into a valid select option name.

    Notion rejects commas in option names, so they are replaced; the name is
    capped at the option length limit. Row coercion uses the same function
    so option names and cell values always agree.
    """
    return value.replace(',', ';')[:MAX_SELECT_OPTION_LENGTH]


def classify_column(values: Sequence[str]) -> ColumnType:
    """Classify non-empty column values: checkbox → number → date → select → rich_text."""
    if not values:
        return ColumnType.RICH_TEXT
    if all(is_boolean_token(v) for v in values):
        return ColumnType.CHECKBOX
    if all(is_number(v) for v in values):
        return ColumnType.NUMBER
    if all(is_iso_date(v) for v in values):
        return ColumnType.DATE
    if len(set(values)) <= MAX_SELECT_OPTIONS:
        return ColumnType.SELECT
    return ColumnType.RICH_TEXT


# =============================================================================
# Property Names
# =============================================================================

def _cap_name(name: str, reserve: int = 0) -> str:
    limit = MAX_PROPERTY_NAME_LENGTH - reserve
    if len(name) > limit:
        return name[:limit - 3] + '...'
    return name


def sanitize_property_name(name: str, existing: set[str], fallback: str = "Column") -> str:
    """Sanitize a property name and ensure uniqueness within existing.

    Trims, substitutes fallback for blanks, caps the length at 80 characters
    (77 + "...") and appends " (2)", " (3)", ... on collision. The cap holds
    for suffixed names too. The chosen name is added to existing.
    """
    base = (name or '').strip() or fallback
    candidate = _cap_name(base)
    suffix = 2
    while candidate in existing:
        tail = f" ({suffix})"
        candidate = _cap_name(base, len(tail)) + tail
        suffix += 1
    existing.add(candidate)
    return candidate


def derive_table_title(headers: Sequence[str]) -> str:
    """Fallback database title built from the first three headers."""
    named = [h for h in headers if h][:3]
    return f"Table: {' / '.join(named)}" if named else "Table Data"


# =============================================================================
# Inference
# =============================================================================

def infer_table_schema(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> TableSchema:
    """Infer a Notion database schema from a table.

    Args:
        headers: Header cells in source order.
        rows: Data rows (each a sequence of cells; short rows read as empty).

    Returns:
        TableSchema whose column 0 is the title property.
    """
    if not headers:
        headers = ["Name"]

    existing: set[str] = set()
    names: list[str] = []
    for idx, header in enumerate(headers):
        fallback = "Row" if idx == 0 else f"Column {idx + 1}"
        names.append(sanitize_property_name(header, existing, fallback))

    schema = TableSchema(
        column_types=[ColumnType.TITLE] * len(names),
        property_names=names,
    )

    for idx in range(1, len(headers)):
        values = [
            (row[idx] if idx < len(row) else '').strip()
            for row in rows
        ]
        values = [v for v in values if v]
        column_type = classify_column(values)
        schema.column_types[idx] = column_type

        if column_type == ColumnType.SELECT:
            options: list[str] = []
            for value in values:
                option = select_option_name(value)
                if option not in options:
                    options.append(option)
            schema.select_options[names[idx]] = options
            schema.notes.append(
                f"Column '{names[idx]}' inferred as select with {len(options)} values"
            )

    schema.notes.append(f"Headers (order): {' | '.join(headers)}")
    schema.notes.append(f"Properties (order): {' | '.join(names)}")
    schema.notes.append(f"Title property: {schema.title_property}")
    return schema
