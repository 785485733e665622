"""Tests for block validation, repair and batching."""

import copy
import json

from notion_report.batcher import (
    MALFORMED_BLOCK_NOTICE,
    MAX_BLOCK_SIZE,
    MAX_REQUEST_SIZE,
    block_size,
    create_validated_batches,
    validate_block,
)
from notion_report.blocks import divider_block, paragraph_block
from notion_report.report import UploadReport
from notion_report.rich_text import LINK_REMOVED_SUFFIX, rich_text_plain_content


def _text(block: dict) -> str:
    return rich_text_plain_content(block[block["type"]]["rich_text"])


def _request_size(batch: list) -> int:
    return len(json.dumps({"children": batch}, ensure_ascii=False).encode("utf-8"))


class TestValidateBlock:
    """Tests for validate_block function."""

    def test_valid_block_untouched(self):
        block = paragraph_block("hello")
        validated, status, issues = validate_block(block)
        assert status == "valid"
        assert validated == block
        assert issues == []

    def test_missing_payload_repaired(self):
        validated, status, _ = validate_block({"type": "paragraph"})
        assert status == "repaired"
        assert _text(validated) == "Error: Missing paragraph content"

    def test_repaired_to_do_and_code(self):
        todo, _, _ = validate_block({"type": "to_do"})
        assert todo["to_do"]["checked"] is False
        code, _, _ = validate_block({"object": "block", "type": "code"})
        assert code["code"]["language"] == "plain text"

    def test_repaired_divider(self):
        divider, status, _ = validate_block({"type": "divider"})
        assert status == "repaired"
        assert divider["divider"] == {}

    def test_not_a_block(self):
        validated, status, _ = validate_block("junk")
        assert status == "skipped"
        assert _text(validated) == MALFORMED_BLOCK_NOTICE

    def test_unknown_type(self):
        validated, status, _ = validate_block({"type": "mystery"})
        assert status == "skipped"
        assert _text(validated) == "[ERROR: Malformed mystery block - content lost]"

    def test_missing_object_added(self):
        validated, _, _ = validate_block({"type": "divider", "divider": {}})
        assert validated["object"] == "block"

    def test_overlong_link_fixed(self):
        url = "https://example.com/" + "a" * 2100
        block = {"type": "paragraph", "paragraph": {"rich_text": [
            {"type": "text", "text": {"content": "see", "link": {"url": url}}}
        ]}}
        validated, status, issues = validate_block(block)
        item = validated["paragraph"]["rich_text"][0]
        assert "link" not in item["text"]
        assert item["text"]["content"] == "see" + LINK_REMOVED_SUFFIX
        # input is not mutated
        assert block["paragraph"]["rich_text"][0]["text"]["link"]["url"] == url
        assert issues


class TestCreateValidatedBatches:
    """Tests for create_validated_batches function."""

    def test_count_ceiling(self):
        blocks = [paragraph_block(f"p{i}") for i in range(250)]
        result = create_validated_batches(blocks)
        assert [len(b) for b in result.batches] == [100, 100, 50]
        flat = [_text(b) for batch in result.batches for b in batch]
        assert flat == [f"p{i}" for i in range(250)]

    def test_size_ceiling(self):
        blocks = [paragraph_block("word " * 6000) for _ in range(10)]
        result = create_validated_batches(blocks)
        assert len(result.batches) > 1
        for batch in result.batches:
            assert _request_size(batch) <= MAX_REQUEST_SIZE
        assert result.block_count == 10

    def test_request_framing_counted(self):
        block = divider_block()
        block["pad"] = ""
        block["pad"] = "x" * (MAX_BLOCK_SIZE - block_size(block))
        assert block_size(block) == MAX_BLOCK_SIZE
        # four such blocks fill the ceiling exactly before separators and envelope
        result = create_validated_batches([copy.deepcopy(block) for _ in range(4)])
        assert [len(b) for b in result.batches] == [3, 1]
        for batch in result.batches:
            assert _request_size(batch) <= MAX_REQUEST_SIZE

    def test_oversized_block_chunked(self):
        block = paragraph_block("word " * 12000)
        assert block_size(block) > 50 * 1024
        result = create_validated_batches([block])
        assert result.chunked == 1
        blocks = [b for batch in result.batches for b in batch]
        assert len(blocks) > 1
        assert _text(blocks[0]).startswith(f"[Part 1/{len(blocks)}] ")
        assert all(block_size(b) <= 50 * 1024 for b in blocks)

    def test_unchunkable_block_replaced(self):
        block = {"object": "block", "type": "divider", "divider": {"junk": "x" * 60000}}
        result = create_validated_batches([block])
        (only,) = result.batches[0]
        assert _text(only).startswith("[Content too large - ")

    def test_counts_and_report(self):
        report = UploadReport()
        blocks = [paragraph_block("ok"), {"type": "quote"}, 42, divider_block()]
        result = create_validated_batches(blocks, report=report)
        assert result.repaired == 1
        assert result.skipped == 1
        assert result.total_blocks == 4
        assert [e["status"] for e in report.block_validation] == ["valid", "repaired", "skipped", "valid"]
        assert len(report.batch_processing) == 1
        assert report.warnings[0]["code"] == "STRUCTURAL_VALIDATION"

    def test_empty(self):
        result = create_validated_batches([])
        assert result.batches == []
