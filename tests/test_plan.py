"""Tests for the request compiler and plan model."""

import pytest
from notion_report.descriptors import (
    FileUpload,
    Plan,
    RequestDescriptor,
    resolve_placeholders,
)
from notion_report.errors import PlanError
from notion_report.parser import parse_json, parse_markdown
from notion_report.plan import (
    DEFAULT_TITLE,
    compile_blocks,
    compile_plan,
    find_priority_pairs,
    is_priority_heading,
)
from notion_report.rich_text import rich_text_plain_content

DEST = "11111111-2222-3333-4444-555555555555"

REPORT = """Run: nightly
Env: staging

# Nightly report

Intro paragraph.

## Other table

| A | B |
|---|---|
| 1 | 2 |

Middle text.

## Field Existence check

| Field | Present |
|---|---|
| id | yes |
| name | no |

Closing words.
"""


def _texts(request: RequestDescriptor) -> list[str]:
    return [
        rich_text_plain_content(b[b["type"]].get("rich_text", []))
        for b in request.body["children"]
    ]


class TestPriorityHeading:
    @pytest.mark.parametrize("text", [
        "Field existence", "FIELD EXISTANCE", "Field  existance", "field existstence",
    ])
    def test_matches(self, text):
        assert is_priority_heading(text)

    @pytest.mark.parametrize("text", ["Field values", "field existense check"])
    def test_no_match(self, text):
        assert not is_priority_heading(text)


class TestCompilePlan:
    """Tests for compile_plan function."""

    def test_root_page_first(self):
        plan = compile_plan(parse_markdown(REPORT), DEST)
        root = plan.requests[0]
        assert (root.method, root.path, root.produces) == ("POST", "pages", "rootId")
        assert root.body["parent"] == {"type": "page_id", "page_id": DEST}
        assert rich_text_plain_content(root.body["properties"]["title"]["title"]) == "Nightly report"

    def test_default_and_explicit_title(self):
        plan = compile_plan(parse_markdown("just text"), DEST)
        assert rich_text_plain_content(plan.requests[0].body["properties"]["title"]["title"]) == DEFAULT_TITLE
        plan = compile_plan(parse_markdown("# H"), DEST, title="Given")
        assert rich_text_plain_content(plan.requests[0].body["properties"]["title"]["title"]) == "Given"

    def test_priority_table_emitted_first(self):
        plan = compile_plan(parse_markdown(REPORT), DEST)
        heading, create = plan.requests[1], plan.requests[2]
        assert _texts(heading) == ["Field Existence check"]
        assert create.path == "databases"
        assert rich_text_plain_content(create.body["title"]) == "Field Existence check"
        assert plan.steps[2] == "Create DB: Field Existence check (Field existence)"

    def test_order_of_remaining_content(self):
        plan = compile_plan(parse_markdown(REPORT), DEST)
        kinds = []
        for request in plan.requests[1:]:
            if request.path.endswith("/children"):
                kinds.append(("append", tuple(_texts(request))))
            elif request.path == "databases":
                kinds.append(("db", rich_text_plain_content(request.body["title"])))
        assert kinds == [
            ("append", ("Field Existence check",)),
            ("db", "Field Existence check"),
            ("append", ("Run: nightly", "Env: staging", "Nightly report", "Intro paragraph.", "Other table")),
            ("db", "Other table"),
            ("append", ("Middle text.", "Closing words.")),
        ]

    def test_placeholder_names_match_request_index(self):
        plan = compile_plan(parse_markdown(REPORT), DEST)
        for index, request in enumerate(plan.requests):
            if request.path == "databases":
                assert request.produces == f"dbId_{index + 1}"
                assert plan.requests[index + 1].path == f"databases/{{dbId_{index + 1}}}"

    def test_appends_within_limits(self):
        md = "\n\n".join(f"Paragraph {i}" for i in range(250))
        plan = compile_plan(parse_markdown(md), DEST)
        appends = [r for r in plan.requests if r.path.endswith("/children")]
        assert [len(r.body["children"]) for r in appends] == [100, 100, 50]
        assert plan.steps[1] == "Append content (chunk 1/3)"

    def test_notes_collected(self):
        plan = compile_plan(parse_markdown(REPORT), DEST)
        assert "Title property: Field" in plan.notes

    def test_small_json(self):
        plan = compile_plan(parse_json('{"a": 1}'), DEST)
        assert len(plan.requests) == 2
        assert plan.requests[1].body["children"][1]["type"] == "code"

    def test_large_json_uploads_file(self):
        value = "[" + ",".join(f'{{"id": {i}}}' for i in range(200)) + "]"
        plan = compile_plan(parse_json(value), DEST)
        create, send, append = plan.requests[1:4]
        assert (create.method, create.path, create.produces) == ("POST", "file_uploads", "fileUpload_2")
        assert send.path == "file_uploads/{fileUpload_2}/send"
        assert isinstance(send.upload, FileUpload)
        assert send.upload.content.startswith(b"[")
        file_block = [b for b in append.body["children"] if b["type"] == "file"][0]
        assert file_block["file"]["file_upload"]["id"] == "{fileUpload_2}"

    def test_plan_is_valid(self):
        compile_plan(parse_markdown(REPORT), DEST).validate()


class TestFindPriorityPairs:
    def test_only_directly_preceded(self):
        parsed = parse_markdown("## Field existence\ntext\n| A |\n|---|\n| 1 |")
        assert find_priority_pairs(parsed.items) == []


class TestPlanValidate:
    def test_consumer_before_producer(self):
        plan = Plan()
        plan.add(RequestDescriptor("PATCH", "blocks/{rootId}/children", {"children": []}))
        plan.add(RequestDescriptor("POST", "pages", {}, produces="rootId"))
        with pytest.raises(PlanError):
            plan.validate()

    def test_placeholder_in_body(self):
        request = RequestDescriptor("POST", "pages", {"parent": {"database_id": "{dbId_3}"}})
        assert request.consumes == ["dbId_3"]


class TestResolvePlaceholders:
    def test_nested(self):
        body = {"parent": {"page_id": "{rootId}"}, "children": [{"id": "{fileUpload_2}"}]}
        resolved = resolve_placeholders(body, {"rootId": "r", "fileUpload_2": "f"})
        assert resolved == {"parent": {"page_id": "r"}, "children": [{"id": "f"}]}
        assert body["parent"]["page_id"] == "{rootId}"

    def test_missing(self):
        with pytest.raises(PlanError):
            resolve_placeholders("blocks/{rootId}/children", {})


class TestCompileBlocks:
    def test_tables_as_text(self):
        blocks = compile_blocks(parse_markdown("| A | B |\n|---|---|\n| 1 | 2 |"))
        texts = [rich_text_plain_content(b["paragraph"]["rich_text"]) for b in blocks]
        assert texts[0] == "A | B"
        assert "1 | 2" in texts
