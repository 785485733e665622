"""Request compiler: parsed content to an ordered request plan.

The plan creates a root page under the destination page, appends the
report's content to it in order and turns every table into an inline
database through the two-phase table builder. Content between tables is
flushed through the batcher, so each append stays within Notion's limits.
"""

import logging
import re
from typing import Optional

from .batcher import create_validated_batches
from .blocks import (
    blocks_for_item,
    bulleted_list_block,
    heading_block,
    json_needs_attachment,
    json_to_blocks,
    pretty_json,
    table_text_blocks,
)
from .descriptors import ROOT_ID, FileUpload, Plan, RequestDescriptor, placeholder
from .parser import Heading, Paragraph, ParsedContent, Table
from .report import UploadReport
from .rich_text import plain_rich_text
from .tables import TwoPhaseTableBuilder

logger = logging.getLogger("notion-report")

DEFAULT_TITLE = "Imported report"
JSON_ATTACHMENT_NAME = "report.json"

# Tables under a heading like "Field existence" are emitted before all other content
PRIORITY_HEADING_PATTERN = re.compile(
    r'field\s+exis(t|st)ence|field\s+exis(t|st)ance',
    re.IGNORECASE
)


def is_priority_heading(text: str) -> bool:
    return bool(PRIORITY_HEADING_PATTERN.search(text or ''))


def find_priority_pairs(items: list) -> list[tuple[int, int]]:
    """(heading index, table index) for every table directly under a priority heading."""
    pairs = []
    for idx, item in enumerate(items):
        if idx == 0 or not isinstance(item, Table):
            continue
        previous = items[idx - 1]
        if isinstance(previous, Heading) and is_priority_heading(previous.text):
            pairs.append((idx - 1, idx))
    return pairs


def _append_request(blocks: list[dict], label: str) -> RequestDescriptor:
    return RequestDescriptor(
        method="PATCH",
        path=f"blocks/{placeholder(ROOT_ID)}/children",
        body={"children": blocks},
        label=label,
    )


def _flush(plan: Plan, pending: list[dict], report: Optional[UploadReport]) -> None:
    """Batch pending blocks into append requests and clear pending."""
    if not pending:
        return
    result = create_validated_batches(pending, report=report)
    count = len(result.batches)
    for index, batch in enumerate(result.batches):
        step = f"Append content (chunk {index + 1}/{count})" if count > 1 else "Append content"
        plan.add(_append_request(batch, step), step=step)
    if result.repaired or result.skipped or result.chunked:
        plan.notes.append(
            f"Batched {result.total_blocks} blocks: {result.repaired} repaired, "
            f"{result.skipped} skipped, {result.chunked} chunked"
        )
    pending.clear()


def _compile_json(plan: Plan, value, report: Optional[UploadReport]) -> None:
    pretty = pretty_json(value)
    attachment_id = None
    if json_needs_attachment(pretty):
        upload_name = plan.next_placeholder("fileUpload")
        plan.add(RequestDescriptor(
            method="POST",
            path="file_uploads",
            body={
                "mode": "single_part",
                "filename": JSON_ATTACHMENT_NAME,
                "content_type": "application/json",
            },
            produces=upload_name,
            label="Create file upload",
        ), step=f"Upload JSON attachment: {JSON_ATTACHMENT_NAME}")
        plan.add(RequestDescriptor(
            method="POST",
            path=f"file_uploads/{placeholder(upload_name)}/send",
            upload=FileUpload(JSON_ATTACHMENT_NAME, pretty.encode('utf-8'), "application/json"),
            label="Send file upload",
        ))
        attachment_id = placeholder(upload_name)
        plan.notes.append("JSON content exceeds inline limits; attached as a file")
    _flush(plan, json_to_blocks(value, attachment_id, JSON_ATTACHMENT_NAME), report)


def compile_plan(
    parsed: ParsedContent,
    destination_id: str,
    title: Optional[str] = None,
    report: Optional[UploadReport] = None,
) -> Plan:
    """Compile parsed content into a validated request plan.

    Args:
        parsed: Output of parse_content().
        destination_id: Notion page id the root page is created under.
        title: Root page title; defaults to the first H1, then "Imported report".
        report: Optional upload report receiving batching events.

    Returns:
        Plan whose first request creates the root page and produces {rootId}.
    """
    plan = Plan()
    page_title = title or parsed.first_heading or DEFAULT_TITLE
    plan.add(RequestDescriptor(
        method="POST",
        path="pages",
        body={
            "parent": {"type": "page_id", "page_id": destination_id},
            "properties": {"title": {"title": plain_rich_text(page_title)}},
        },
        produces=ROOT_ID,
        label="Create root page",
    ), step="Create root page")

    for warning in parsed.warnings:
        where = f"line {warning.line}: " if warning.line is not None else ""
        plan.notes.append(f"Parser: {where}{warning.message}")

    if parsed.is_json:
        _compile_json(plan, parsed.json_value, report)
        plan.validate()
        return plan

    items = parsed.items
    consumed: set[int] = set()
    for heading_idx, table_idx in find_priority_pairs(items):
        consumed.update((heading_idx, table_idx))
        heading = items[heading_idx]
        plan.add(
            _append_request([heading_block(heading.text, heading.level)], "Field existence heading"),
            step="Append content (Field existence heading)",
        )
        TwoPhaseTableBuilder(items[table_idx]).compile(plan, note="Field existence")

    pending = [bulleted_list_block(f"{kv.key}: {kv.value}") for kv in parsed.preface_key_values]
    for idx, item in enumerate(items):
        if idx in consumed:
            continue
        if isinstance(item, Table):
            _flush(plan, pending, report)
            TwoPhaseTableBuilder(item).compile(plan)
            continue
        blocks = blocks_for_item(item)
        if isinstance(item, Paragraph) and len(blocks) > 1:
            plan.notes.append(f"Split paragraph at item {idx + 1} into {len(blocks)} blocks")
        pending.extend(blocks)
    _flush(plan, pending, report)

    plan.validate()
    logger.info(f"Compiled plan: {len(plan.requests)} requests, {len(plan.notes)} notes")
    return plan


def compile_blocks(parsed: ParsedContent) -> list[dict]:
    """Simple path: the whole report as blocks for one page.

    Tables are rendered as text and large JSON gets a download notice
    instead of an attachment.
    """
    if parsed.is_json:
        return json_to_blocks(parsed.json_value, None, JSON_ATTACHMENT_NAME)

    blocks = [bulleted_list_block(f"{kv.key}: {kv.value}") for kv in parsed.preface_key_values]
    for item in parsed.items:
        if isinstance(item, Table):
            blocks.extend(table_text_blocks(item.headers, item.rows))
        else:
            blocks.extend(blocks_for_item(item))
    return blocks
