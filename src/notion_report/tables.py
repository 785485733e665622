"""Two-phase table builder: a Markdown table as an inline Notion database.

Notion orders database columns by the order properties are added, and shows
properties added in one create call in an unpredictable order. The builder
therefore creates the database with its title property only (phase one,
schema locking), adds the remaining properties one request at a time in
reverse inference order, and then creates one page per row (phase two,
populating rows).
"""

import logging
from enum import Enum
from typing import Optional

from .blocks import NO_DATA_NOTICE, table_text_blocks
from .batcher import notice_block
from .chunker import PARAGRAPH_CHUNK, chunk_text
from .descriptors import ROOT_ID, Plan, RequestDescriptor, placeholder
from .parser import Table
from .rich_text import plain_rich_text, text_to_rich_text
from .schema import (
    ColumnType,
    TableSchema,
    derive_table_title,
    infer_table_schema,
    is_iso_date,
    parse_number,
    select_option_name,
    to_bool,
)

logger = logging.getLogger("notion-report")


class TableBuildState(Enum):
    SCHEMA_LOCKING = "schema_locking"
    POPULATING_ROWS = "populating_rows"
    DONE = "done"
    ABORTED = "aborted"


def table_fallback_blocks(title: str, table: Table) -> list[dict]:
    """Visible replacement for a table whose database could not be created."""
    notice = notice_block(f"[Table '{title}' could not be created - content lost]")
    return [notice] + table_text_blocks(table.headers, table.rows)


def coerce_cell(column_type: ColumnType, raw: str) -> dict:
    """Convert a raw cell to a Notion property value for column_type.

    Empty cells become null values (False for checkboxes, [] for text).
    """
    value = (raw or '').strip()
    if column_type == ColumnType.TITLE:
        return {"title": text_to_rich_text(value)}
    if column_type == ColumnType.NUMBER:
        return {"number": parse_number(value) if value else None}
    if column_type == ColumnType.CHECKBOX:
        return {"checkbox": to_bool(value) if value else False}
    if column_type == ColumnType.DATE:
        return {"date": {"start": value} if value and is_iso_date(value) else None}
    if column_type == ColumnType.SELECT:
        return {"select": {"name": select_option_name(value)} if value else None}
    # rich_text; long cells are split into several spans
    rich_text: list[dict] = []
    if value:
        for chunk in chunk_text(value, PARAGRAPH_CHUNK):
            rich_text.extend(plain_rich_text(chunk))
    return {"rich_text": rich_text}


class TwoPhaseTableBuilder:
    """Compiles one table into database, property and row requests.

    Args:
        table: Parsed table.
        parent_placeholder: Placeholder name of the page the database goes on.
        group: Group id shared by every request of this table.
    """

    def __init__(self, table: Table, parent_placeholder: str = ROOT_ID, group: Optional[str] = None):
        self.table = table
        self.parent_placeholder = parent_placeholder
        self.group = group
        self.schema: TableSchema = infer_table_schema(table.headers, table.rows)
        self.title = table.title or derive_table_title(table.headers)
        self.state: Optional[TableBuildState] = None
        self.transitions: list[TableBuildState] = []
        self.database_placeholder: Optional[str] = None

    def _enter(self, state: TableBuildState):
        self.state = state
        self.transitions.append(state)

    def row_properties(self, row_index: int, row: tuple[str, ...]) -> dict[str, dict]:
        """Property map for one data row, keyed by sanitized property names."""
        properties: dict[str, dict] = {}
        for idx, name in enumerate(self.schema.property_names):
            raw = row[idx] if idx < len(row) else ''
            column_type = self.schema.column_types[idx]
            if column_type == ColumnType.TITLE and not raw.strip():
                raw = f"Row {row_index + 1}"
            properties[name] = coerce_cell(column_type, raw)
        return properties

    def compile(self, plan: Plan, note: str = "") -> None:
        """Append this table's requests to plan."""
        group = self.group or f"table_{len(plan.requests) + 1}"
        suffix = f" ({note})" if note else ""
        parent = placeholder(self.parent_placeholder)
        plan.notes.extend(self.schema.notes)

        # Phase one: title-only database, then one property per request
        self._enter(TableBuildState.SCHEMA_LOCKING)
        db_name = plan.next_placeholder("dbId")
        self.database_placeholder = db_name
        title_property = self.schema.title_property
        plan.add(RequestDescriptor(
            method="POST",
            path="databases",
            body={
                "parent": {"type": "page_id", "page_id": parent},
                "title": plain_rich_text(self.title),
                "is_inline": True,
                "properties": {title_property: {"title": {}}},
            },
            produces=db_name,
            label=f"Create database '{self.title}'",
            group=group,
            abort_group_on_failure=True,
            fallback_blocks=table_fallback_blocks(self.title, self.table),
            phase=TableBuildState.SCHEMA_LOCKING,
        ), step=f"Create DB: {self.title}{suffix}")

        remaining = [
            idx for idx in range(len(self.schema.property_names))
            if idx != self.schema.title_column
        ]
        for idx in reversed(remaining):
            name = self.schema.property_names[idx]
            plan.add(RequestDescriptor(
                method="PATCH",
                path=f"databases/{placeholder(db_name)}",
                body={"properties": {name: self.schema.property_definition(idx)}},
                label=f"Add property '{name}' to '{self.title}'",
                group=group,
                phase=TableBuildState.SCHEMA_LOCKING,
            ))

        # Phase two: rows, or a notice for a table without data
        self._enter(TableBuildState.POPULATING_ROWS)
        if not self.table.rows:
            plan.add(RequestDescriptor(
                method="PATCH",
                path=f"blocks/{parent}/children",
                body={"children": [notice_block(NO_DATA_NOTICE)]},
                label=f"Empty table notice for '{self.title}'",
                group=group,
                phase=TableBuildState.POPULATING_ROWS,
            ), step=f"Append content (empty table '{self.title}')")
        else:
            for row_index, row in enumerate(self.table.rows):
                plan.add(RequestDescriptor(
                    method="POST",
                    path="pages",
                    body={
                        "parent": {"type": "database_id", "database_id": placeholder(db_name)},
                        "properties": self.row_properties(row_index, row),
                    },
                    label=f"Row {row_index + 1} of '{self.title}'",
                    group=group,
                    phase=TableBuildState.POPULATING_ROWS,
                ))
            plan.steps.append(f"Create DB rows: {self.title} (pages 1-{len(self.table.rows)})")

        self._enter(TableBuildState.DONE)
        logger.info(
            f"Compiled table '{self.title}': {len(self.schema.property_names)} properties, "
            f"{len(self.table.rows)} rows"
        )
