"""Batcher / validator: turn a block list into Notion-safe append batches.

Each block is validated (and repaired when its payload is missing), blocks
over the per-block size ceiling are re-chunked, and the result is packed
greedily into batches that respect both the block-count and the request-size
ceilings. Order is preserved.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .blocks import RICH_TEXT_BLOCK_TYPES, BlockType, code_block, make_block, paragraph_block
from .chunker import PARAGRAPH_CHUNK, chunk_lines, split_text
from .errors import SizeLimitExceeded, StructuralValidationError
from .report import UploadReport
from .rich_text import LINK_REMOVED_SUFFIX, MAX_URL_LENGTH, plain_rich_text, rich_text_plain_content

logger = logging.getLogger("notion-report")

MAX_BLOCKS_PER_BATCH = 100
MAX_REQUEST_SIZE = 200 * 1024  # well under Notion's ~500KB request ceiling
MAX_BLOCK_SIZE = 50 * 1024

# Request body framing around the serialized blocks
BATCH_ENVELOPE_SIZE = len(json.dumps({"children": []}))
SEPARATOR_SIZE = len(", ")

MALFORMED_BLOCK_NOTICE = "[ERROR: Malformed block - content lost]"

# Statuses recorded per block
VALID = "valid"
REPAIRED = "repaired"
SKIPPED = "skipped"
CHUNKED = "chunked"


@dataclass
class BatchResult:
    """Output of create_validated_batches()."""
    batches: list[list[dict]] = field(default_factory=list)
    repaired: int = 0
    skipped: int = 0
    chunked: int = 0
    total_blocks: int = 0

    @property
    def block_count(self) -> int:
        return sum(len(b) for b in self.batches)


def block_size(block: Any) -> int:
    """Serialized size of a block in bytes (UTF-8 JSON)."""
    return len(json.dumps(block, ensure_ascii=False).encode('utf-8'))


def notice_block(text: str) -> dict:
    """Unformatted paragraph used for repair and truncation notices."""
    return paragraph_block(text, rich_text=plain_rich_text(text))


# =============================================================================
# Validation and Repair
# =============================================================================

def repair_block(block: dict) -> Optional[dict]:
    """Give a block with a missing payload a minimal valid payload.

    Returns the repaired block, or None when the type is not repairable.
    """
    try:
        block_type = BlockType(block["type"])
    except ValueError:
        return None

    placeholder = plain_rich_text(f"Error: Missing {block_type.value} content")
    if block_type == BlockType.DIVIDER:
        payload: dict = {}
    elif block_type == BlockType.TABLE:
        payload = {
            "table_width": 1,
            "has_column_header": False,
            "has_row_header": False,
            "children": [],
        }
    elif block_type == BlockType.TABLE_ROW:
        payload = {"cells": [placeholder]}
    elif block_type == BlockType.FILE:
        return None
    elif block_type == BlockType.TO_DO:
        payload = {"rich_text": placeholder, "checked": False}
    elif block_type == BlockType.CODE:
        payload = {"rich_text": placeholder, "language": "plain text"}
    elif block_type == BlockType.CALLOUT:
        payload = {"rich_text": placeholder, "icon": {"type": "emoji", "emoji": "⚠️"}}
    else:
        payload = {"rich_text": placeholder}

    repaired = make_block(block_type, payload)
    for key, value in block.items():
        if key not in ("object", "type", block_type.value):
            repaired[key] = value
    return repaired


def _fix_links(rich_text: list) -> int:
    """Drop overlong link URLs in place. Returns the number of links removed."""
    removed = 0
    for item in rich_text:
        if not isinstance(item, dict):
            continue
        text = item.get("text") or {}
        url = (text.get("link") or {}).get("url")
        if url and len(url) > MAX_URL_LENGTH:
            logger.warning(f"URL too long ({len(url)} chars), removing link: {url[:100]}...")
            text.pop("link", None)
            text["content"] = text.get("content", "") + LINK_REMOVED_SUFFIX
            removed += 1
    return removed


def validate_block(block: Any) -> tuple[dict, str, list[str]]:
    """Validate one externally supplied block.

    Returns:
        (block, status, issues). Status is "valid", "repaired" or "skipped";
        a skipped block is replaced by a notice paragraph so that the
        failure stays visible on the page.
    """
    if not isinstance(block, dict) or not block.get("type"):
        return notice_block(MALFORMED_BLOCK_NOTICE), SKIPPED, ["Block is not an object with a type"]

    block_type = block["type"]
    if block.get(block_type) is None:
        issue = f"Missing required property '{block_type}'"
        repaired = repair_block(block)
        if repaired is None:
            logger.error(f"Cannot repair block of type '{block_type}', replacing with notice")
            notice = notice_block(f"[ERROR: Malformed {block_type} block - content lost]")
            return notice, SKIPPED, [issue, "Unfixable block replaced with fallback paragraph"]
        logger.warning(f"Auto-repaired block of type '{block_type}': {issue}")
        return repaired, REPAIRED, [issue, f"Auto-repaired missing '{block_type}' property"]

    issues: list[str] = []
    block = copy.deepcopy(block)
    block.setdefault("object", "block")
    payload = block[block_type]
    if isinstance(payload, dict):
        if isinstance(payload.get("rich_text"), list) and _fix_links(payload["rich_text"]):
            issues.append("Overlong link removed")
        if block_type == BlockType.TABLE.value:
            if payload.get("children") is None:
                payload["children"] = []
            for row in payload["children"]:
                for cell in ((row or {}).get("table_row") or {}).get("cells", []):
                    if isinstance(cell, list) and _fix_links(cell):
                        issues.append("Overlong link removed from table cell")
    return block, VALID, issues


# =============================================================================
# Large Block Chunking
# =============================================================================

def chunk_large_block(block: dict) -> list[dict]:
    """Split an oversized text block into several smaller blocks.

    Text blocks are split at readable boundaries with "[Part i/n]" prefixes;
    code keeps its language and line structure. Returns [] for block types
    that cannot be split.
    """
    try:
        block_type = BlockType(block["type"])
    except ValueError:
        return []
    if block_type not in RICH_TEXT_BLOCK_TYPES:
        return []

    payload = block[block_type.value]
    text = rich_text_plain_content(payload.get("rich_text") or [])
    if not text:
        return []

    if block_type == BlockType.CODE:
        language = payload.get("language", "plain text")
        return [code_block(piece, language) for piece in chunk_lines(text, PARAGRAPH_CHUNK)]

    pieces = split_text(text, PARAGRAPH_CHUNK)
    chunks = []
    for index, piece in enumerate(pieces):
        content = f"[Part {index + 1}/{len(pieces)}] {piece}" if len(pieces) > 1 else piece
        new_payload = {k: v for k, v in payload.items() if k not in ("rich_text", "children")}
        new_payload["rich_text"] = plain_rich_text(content)
        chunks.append(make_block(block_type, new_payload))
    return chunks


# =============================================================================
# Packing
# =============================================================================

class _BatchPacker:
    """Greedy packer honouring the count and size ceilings.

    ``size`` is the serialized size of the whole ``{"children": [...]}``
    request body, separators included.
    """

    def __init__(self, max_blocks: int, max_request_size: int, report: Optional[UploadReport]):
        self.max_blocks = max_blocks
        self.max_request_size = max_request_size
        self.report = report
        self.batches: list[list[dict]] = []
        self.current: list[dict] = []
        self.size = BATCH_ENVELOPE_SIZE

    def _added_size(self, size: int) -> int:
        return size + (SEPARATOR_SIZE if self.current else 0)

    def add(self, block: dict, size: int):
        if self.current and (
            len(self.current) >= self.max_blocks or
            self.size + self._added_size(size) > self.max_request_size
        ):
            self.flush()
        added = self._added_size(size)
        self.size += added
        self.current.append(block)

        if len(self.current) > self.max_blocks:
            logger.error(f"Batch exceeded limit: {len(self.current)} blocks (max {self.max_blocks})")
            last = self.current.pop()
            self.size -= added
            self.flush()
            self.current.append(last)
            self.size = BATCH_ENVELOPE_SIZE + size

    def flush(self):
        if not self.current:
            return
        index = len(self.batches)
        logger.info(f"Batch {index + 1} created: {len(self.current)} blocks, ~{round(self.size / 1024)}KB")
        if self.report is not None:
            self.report.record_batch(index, len(self.current), self.size)
        self.batches.append(self.current)
        self.current = []
        self.size = BATCH_ENVELOPE_SIZE


def create_validated_batches(
    blocks: list,
    report: Optional[UploadReport] = None,
    max_blocks: int = MAX_BLOCKS_PER_BATCH,
    max_request_size: int = MAX_REQUEST_SIZE,
    max_block_size: int = MAX_BLOCK_SIZE,
) -> BatchResult:
    """Validate, repair, chunk and pack blocks into append batches.

    Every returned batch has at most max_blocks blocks and serializes to at
    most max_request_size bytes; every block has a payload under its type
    key and serializes to at most max_block_size bytes.

    Args:
        blocks: Blocks in page order. May contain malformed entries.
        report: Optional upload report receiving per-block and per-batch events.
        max_blocks: Block-count ceiling per batch.
        max_request_size: Byte ceiling per batch.
        max_block_size: Byte ceiling per block.
    """
    result = BatchResult(total_blocks=len(blocks))
    packer = _BatchPacker(max_blocks, max_request_size, report)
    logger.info(f"Batching {len(blocks)} blocks")

    for index, raw in enumerate(blocks):
        block, status, issues = validate_block(raw)
        block_type = str(raw.get("type") or "unknown") if isinstance(raw, dict) else "unknown"
        if status == REPAIRED:
            result.repaired += 1
            if report is not None:
                report.record_warning(StructuralValidationError(issues[0], index=index, type=block_type))
        elif status == SKIPPED:
            result.skipped += 1

        size = block_size(block)
        if size > max_block_size:
            logger.warning(f"Block {index + 1} is {round(size / 1024)}KB, chunking")
            pieces = chunk_large_block(block)
            if not pieces:
                notice = (
                    f"[Content too large - {round(size / 1024)}KB - could not be processed. "
                    f"Notion's limit is {round(max_block_size / 1024)}KB per block.]"
                )
                pieces = [notice_block(notice)]
                issues.append(f"Block of {size} bytes replaced with notice")
            else:
                issues.append(f"Block of {size} bytes chunked into {len(pieces)} parts")
            if report is not None:
                report.record_warning(SizeLimitExceeded(issues[-1], index=index, type=block_type, size=size))
            result.chunked += 1
            status = CHUNKED
            for piece in pieces:
                piece_size = block_size(piece)
                if piece_size > max_block_size:
                    piece = notice_block(f"[Content too large - {round(piece_size / 1024)}KB - truncated]")
                    piece_size = block_size(piece)
                packer.add(piece, piece_size)
        else:
            packer.add(block, size)

        if report is not None:
            report.record_block(index, block_type, status, issues)

    packer.flush()
    result.batches = packer.batches
    if report is not None:
        report.total_blocks += len(blocks)
    logger.info(
        f"Batching complete: {len(result.batches)} batches, "
        f"{result.repaired} repaired, {result.skipped} skipped, {result.chunked} chunked"
    )
    return result
