"""Tests for table schema inference."""

from notion_report.schema import (
    ColumnType,
    classify_column,
    derive_table_title,
    infer_table_schema,
    parse_number,
    sanitize_property_name,
    select_option_name,
)


class TestClassifyColumn:
    """Tests for classify_column function."""

    def test_checkbox(self):
        assert classify_column(["yes", "No", "✅", "true"]) == ColumnType.CHECKBOX

    def test_number(self):
        assert classify_column(["1", "-2.5", "1,234"]) == ColumnType.NUMBER

    def test_date(self):
        assert classify_column(["2024-01-01", "2024-02-03T10:00:00Z"]) == ColumnType.DATE

    def test_select(self):
        assert classify_column(["red", "blue", "red"]) == ColumnType.SELECT

    def test_rich_text_when_too_many_values(self):
        values = [f"value {i}" for i in range(101)]
        assert classify_column(values) == ColumnType.RICH_TEXT

    def test_empty_column(self):
        assert classify_column([]) == ColumnType.RICH_TEXT


class TestInferTableSchema:
    """Tests for infer_table_schema function."""

    def test_name_done_count(self):
        schema = infer_table_schema(
            ["Name", "Done", "Count"],
            [["a", "yes", "1"], ["b", "no", "2,000"]],
        )
        assert schema.column_types == [ColumnType.TITLE, ColumnType.CHECKBOX, ColumnType.NUMBER]
        assert schema.property_names == ["Name", "Done", "Count"]
        assert schema.title_property == "Name"

    def test_first_column_always_title(self):
        schema = infer_table_schema(["Count", "Label"], [["1", "x"], ["2", "y"]])
        assert schema.column_types[0] == ColumnType.TITLE

    def test_empty_rows(self):
        schema = infer_table_schema(["Name", "Note"], [])
        assert schema.column_types == [ColumnType.TITLE, ColumnType.RICH_TEXT]

    def test_duplicate_and_blank_headers(self):
        schema = infer_table_schema(["", "Status", "Status", ""], [])
        assert schema.property_names == ["Row", "Status", "Status (2)", "Column 4"]

    def test_select_options_and_definition(self):
        schema = infer_table_schema(["Name", "Tier"], [["a", "gold, plus"], ["b", "silver"], ["c", "silver"]])
        assert schema.column_types[1] == ColumnType.SELECT
        assert schema.property_definition(0) == {"title": {}}
        assert schema.property_definition(1) == {"select": {"options": [{"name": "gold; plus"}, {"name": "silver"}]}}
        assert any("select with 2 values" in note for note in schema.notes)

    def test_short_rows_read_as_empty(self):
        schema = infer_table_schema(["Name", "Count"], [["a", "3"], ["b"]])
        assert schema.column_types[1] == ColumnType.NUMBER


class TestSanitizePropertyName:
    def test_long_name_capped(self):
        name = sanitize_property_name("x" * 100, set())
        assert len(name) == 80
        assert name.endswith("...")

    def test_collision_suffix(self):
        existing = {"A", "A (2)"}
        assert sanitize_property_name("A", existing) == "A (3)"
        assert "A (3)" in existing

    def test_long_duplicate_names_stay_capped(self):
        existing = set()
        names = [sanitize_property_name("Measurement " * 10, existing) for _ in range(3)]
        assert len(set(names)) == 3
        assert all(len(n) <= 80 for n in names)
        assert names[1].endswith("... (2)")
        assert names[2].endswith("... (3)")


class TestHelpers:
    def test_parse_number(self):
        assert parse_number("2,000") == 2000
        assert parse_number("1.5") == 1.5
        assert parse_number("abc") is None

    def test_select_option_name(self):
        assert select_option_name("a,b") == "a;b"
        assert len(select_option_name("z" * 150)) == 100

    def test_derive_table_title(self):
        assert derive_table_title(["A", "", "B", "C", "D"]) == "Table: A / B / C"
        assert derive_table_title(["", ""]) == "Table Data"
