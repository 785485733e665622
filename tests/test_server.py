"""Tests for the MCP tool layer."""

import asyncio

import pytest
from notion_report import server
from notion_report.server import (
    _error,
    _hint_for,
    normalize_uuid,
    report_compile,
    report_upload,
    resolve_page_id,
)
from notion_report.errors import RemoteApiError

PAGE_ID = "12345678-1234-1234-1234-123456789abc"


class TestNormalizeUuid:
    """Tests for normalize_uuid function."""

    def test_normalizes_uuid_without_dashes(self):
        assert normalize_uuid("12345678123412341234123456789abc") == PAGE_ID

    def test_lowercases_uuid(self):
        assert normalize_uuid("12345678-1234-1234-1234-123456789ABC") == PAGE_ID

    def test_raises_on_invalid_length(self):
        with pytest.raises(ValueError):
            normalize_uuid("1234567")


class TestResolvePageId:
    """Tests for resolve_page_id function."""

    def test_plain_uuid(self):
        assert resolve_page_id(f"  {PAGE_ID} ") == PAGE_ID

    def test_notion_url(self):
        url = "https://www.notion.so/workspace/Weekly-Feed-12345678123412341234123456789abc?pvs=4"
        assert resolve_page_id(url) == PAGE_ID

    def test_url_with_dashed_id(self):
        assert resolve_page_id(f"https://notion.so/{PAGE_ID}") == PAGE_ID

    def test_rejects_other_urls(self):
        with pytest.raises(ValueError):
            resolve_page_id("https://google.com/page")
        with pytest.raises(ValueError):
            resolve_page_id("https://notion.so/Page-abc123")


class TestErrors:
    def test_error_format(self):
        text = _error("CODE", "went wrong", hint="do this", ref="x")
        assert text == "error: CODE - went wrong\nref: x\nhint: do this"

    def test_hints(self):
        assert "integration" in _hint_for(RemoteApiError("POST", "pages", 403, "no access"))
        assert _hint_for(RemoteApiError("POST", "pages", 400, "bad")) is None


class TestReportCompile:
    """Tests for the report_compile tool."""

    def test_lists_steps(self):
        md = "# Title\n\ntext\n\n| A | B |\n|---|---|\n| 1 | x |\n"
        result = report_compile(md, PAGE_ID)
        assert result.startswith("requests: 5 (appends 1, databases 1, properties 1, rows 1, uploads 0)")
        assert "  1. Create root page" in result
        assert "notes:" in result

    def test_bad_destination(self):
        result = report_compile("text", "not-a-page")
        assert result.startswith("error: BAD_DESTINATION")
        assert "hint:" in result

    def test_bad_content_type(self):
        result = report_compile("text", PAGE_ID, content_type="yaml")
        assert result.startswith("error: BAD_CONTENT")


class TestReportUpload:
    def test_requires_token(self, monkeypatch):
        monkeypatch.setattr(server, "_notion_token", None)
        result = asyncio.run(report_upload("text", PAGE_ID))
        assert result.startswith("error: NO_TOKEN")
