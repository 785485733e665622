"""Tests for the Markdown and JSON content parser."""

import pytest
from notion_report.parser import (
    BulletedListItem,
    Code,
    Divider,
    Heading,
    NumberedListItem,
    Paragraph,
    ParseMode,
    Quote,
    Table,
    ToDo,
    detect_table_headers,
    is_separator_line,
    parse_content,
    parse_json,
    parse_markdown,
    split_table_row,
)


class TestSplitTableRow:
    def test_outer_pipes(self):
        assert split_table_row("| a | b |") == ["a", "b"]

    def test_inner_empty_cell_kept(self):
        assert split_table_row("| a |  | c |") == ["a", "", "c"]

    def test_separator(self):
        assert is_separator_line("|---|:---:|")
        assert not is_separator_line("| a | b |")


class TestParseMarkdown:
    """Tests for parse_markdown function."""

    def test_item_kinds_in_order(self):
        md = "\n".join([
            "# Title",
            "Some text",
            "---",
            "- bullet",
            "1. first",
            "- [x] done",
            "- [ ] open",
            "> quoted",
        ])
        items = parse_markdown(md).items
        assert items == [
            Heading(1, "Title"),
            Paragraph("Some text"),
            Divider(),
            BulletedListItem("bullet"),
            NumberedListItem("first"),
            ToDo("done", True),
            ToDo("open", False),
            Quote("quoted"),
        ]

    def test_first_heading(self):
        parsed = parse_markdown("## Sub\n# Main\n# Second")
        assert parsed.first_heading == "Main"

    def test_trailing_hash_kept_in_heading(self):
        parsed = parse_markdown("# Notes on C#\n\ntext")
        assert parsed.first_heading == "Notes on C#"
        assert parsed.items[0] == Heading(1, "Notes on C#")

    def test_closing_hashes_stripped(self):
        assert parse_markdown("## Results ##").items == [Heading(2, "Results")]

    def test_deep_heading_clamped_with_warning(self):
        parsed = parse_markdown("#### Deep")
        assert parsed.items == [Heading(3, "Deep")]
        assert len(parsed.warnings) == 1
        assert parsed.warnings[0].line == 1

    def test_paragraph_lines_joined(self):
        parsed = parse_markdown("line one\nline two\n\nnext")
        assert parsed.items == [Paragraph("line one line two"), Paragraph("next")]

    def test_code_fence(self):
        parsed = parse_markdown("```Python\nx = 1\n\ny = 2\n```")
        assert parsed.items == [Code("python", "x = 1\n\ny = 2")]

    def test_unterminated_fence(self):
        parsed = parse_markdown("```\nabc")
        assert parsed.items == [Code("text", "abc")]
        assert parsed.warnings

    def test_preface_key_values(self):
        parsed = parse_markdown("Date: 2024-01-01\nAuthor: Sam\n\n# Report\nStatus: not preface")
        assert [(kv.key, kv.value) for kv in parsed.preface_key_values] == [
            ("Date", "2024-01-01"), ("Author", "Sam")
        ]
        assert parsed.items[-1] == Paragraph("Status: not preface")

    def test_table(self):
        md = "## Results\n| Name | Done |\n|---|---|\n| a | yes |\n| b |\n"
        parsed = parse_markdown(md)
        table = parsed.items[1]
        assert isinstance(table, Table)
        assert table.headers == ("Name", "Done")
        assert table.rows == (("a", "yes"), ("b", ""))
        assert table.title == "Results"

    def test_header_only_table(self):
        parsed = parse_markdown("| A | B |\n|---|---|\n\nafter")
        assert parsed.items[0] == Table(("A", "B"), ())
        assert parsed.items[1] == Paragraph("after")

    def test_table_closed_by_fence(self):
        parsed = parse_markdown("| A |\n|---|\n| 1 |\n```\ncode | not a row\n```")
        assert parsed.items == [Table(("A",), (("1",),)), Code("text", "code | not a row")]

    def test_table_closed_by_text_line(self):
        parsed = parse_markdown("| A |\n|---|\n| 1 |\nafter")
        assert parsed.items[0] == Table(("A",), (("1",),))
        assert parsed.items[1] == Paragraph("after")

    def test_table_modes(self):
        assert {m.name for m in ParseMode} == {"TEXT", "CODE", "TABLE"}

    def test_long_row_truncated(self):
        parsed = parse_markdown("| A | B |\n|---|---|\n| 1 | 2 | 3 |")
        assert parsed.items[0].rows == (("1", "2"),)
        assert parsed.warnings

    def test_table_without_separator(self):
        parsed = parse_markdown("| a | b |\n| c | d |\n| e | f |")
        table = parsed.items[0]
        assert table.headers == ("a", "b")
        assert table.rows == (("c", "d"), ("e", "f"))


class TestDetectTableHeaders:
    def test_first_row_modal(self):
        headers, rows = detect_table_headers([["a", "b"], ["c", "d"]])
        assert headers == ["a", "b"]
        assert rows == [["c", "d"]]

    def test_later_row_modal(self):
        headers, rows = detect_table_headers([["x"], ["a", "b"], ["c", "d"]])
        assert headers == ["a", "b"]
        assert rows == [["c", "d"]]

    def test_synthetic_headers(self):
        warnings = []
        headers, rows = detect_table_headers([["a"], ["b", "c"], ["d", "e", "f"]], warnings)
        assert headers == ["Column 1", "Column 2", "Column 3"]
        assert len(rows) == 3
        assert warnings


class TestParseJson:
    def test_valid(self):
        parsed = parse_json('{"a": [1, 2]}')
        assert parsed.is_json
        assert parsed.json_value == {"a": [1, 2]}

    def test_invalid_falls_back(self):
        parsed = parse_json("{not json")
        assert not parsed.is_json
        assert parsed.items[0] == Paragraph("Invalid JSON content:")
        assert parsed.items[1] == Code("text", "{not json")
        assert parsed.warnings

    def test_invalid_truncated(self):
        parsed = parse_json("{" + "x" * 3000)
        assert parsed.items[1].text.endswith("...[truncated]")
        assert len(parsed.items[1].text) == 2000 + len("...[truncated]")


class TestParseContent:
    def test_dispatch(self):
        assert parse_content("# A", "markdown").first_heading == "A"
        assert parse_content("[]", "json").is_json

    def test_unsupported(self):
        with pytest.raises(ValueError):
            parse_content("x", "html")
