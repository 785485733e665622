"""Block builder: content items to Notion block payloads.

Every block produced here goes through make_block(), which refuses a block
whose payload is missing, so blocks built inside the package always satisfy
the ``block[block["type"]]`` contract. Externally supplied blocks are
checked and repaired by the batcher instead.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional, Sequence

from .chunker import PARAGRAPH_CHUNK, chunk_lines, chunk_list, chunk_text
from .parser import (
    BulletedListItem,
    Code,
    ContentItem,
    Divider,
    Heading,
    NumberedListItem,
    Paragraph,
    Quote,
    Table,
    ToDo,
)
from .rich_text import plain_rich_text, text_to_rich_text

logger = logging.getLogger("notion-report")

# JSON at or above either threshold becomes a file attachment
MAX_JSON_LINES_FOR_CODE_BLOCKS = 100
JSON_FILE_THRESHOLD = 5000

# Notion text limit per code block
MAX_CODE_BLOCK_LENGTH = 2000

# Rows per part when a table is rendered as text
TABLE_TEXT_ROWS_PER_PART = 50

NO_DATA_NOTICE = "No differences found."


class BlockType(str, Enum):
    """Notion block types produced or repaired by this package."""
    PARAGRAPH = "paragraph"
    HEADING_1 = "heading_1"
    HEADING_2 = "heading_2"
    HEADING_3 = "heading_3"
    BULLETED_LIST_ITEM = "bulleted_list_item"
    NUMBERED_LIST_ITEM = "numbered_list_item"
    TO_DO = "to_do"
    QUOTE = "quote"
    CODE = "code"
    DIVIDER = "divider"
    CALLOUT = "callout"
    TOGGLE = "toggle"
    TABLE = "table"
    TABLE_ROW = "table_row"
    FILE = "file"


# Block types whose payload is {"rich_text": [...], ...}
RICH_TEXT_BLOCK_TYPES = {
    BlockType.PARAGRAPH,
    BlockType.HEADING_1,
    BlockType.HEADING_2,
    BlockType.HEADING_3,
    BlockType.BULLETED_LIST_ITEM,
    BlockType.NUMBERED_LIST_ITEM,
    BlockType.TO_DO,
    BlockType.QUOTE,
    BlockType.CODE,
    BlockType.CALLOUT,
    BlockType.TOGGLE,
}


def make_block(block_type: BlockType, payload: dict) -> dict:
    """Build a block dict whose payload key equals its type."""
    if payload is None:
        raise ValueError(f"Block of type '{block_type.value}' needs a payload")
    return {"object": "block", "type": block_type.value, block_type.value: payload}


# =============================================================================
# Block Constructors
# =============================================================================

def paragraph_block(text: str, rich_text: Optional[list[dict]] = None) -> dict:
    return make_block(BlockType.PARAGRAPH, {
        "rich_text": rich_text if rich_text is not None else text_to_rich_text(text),
        "color": "default",
    })


def heading_block(text: str, level: int = 2) -> dict:
    # Notion supports h1-h3 only
    level = max(1, min(3, int(level or 2)))
    block_type = BlockType(f"heading_{level}")
    return make_block(block_type, {
        "rich_text": text_to_rich_text(text),
        "color": "default",
        "is_toggleable": False,
    })


def bulleted_list_block(text: str) -> dict:
    return make_block(BlockType.BULLETED_LIST_ITEM, {
        "rich_text": text_to_rich_text(text),
        "color": "default",
    })


def numbered_list_block(text: str) -> dict:
    return make_block(BlockType.NUMBERED_LIST_ITEM, {
        "rich_text": text_to_rich_text(text),
        "color": "default",
    })


def to_do_block(text: str, checked: bool = False) -> dict:
    return make_block(BlockType.TO_DO, {
        "rich_text": text_to_rich_text(text),
        "checked": bool(checked),
    })


def quote_block(text: str) -> dict:
    return make_block(BlockType.QUOTE, {
        "rich_text": text_to_rich_text(text),
        "color": "default",
    })


def code_block(code: str, language: str = "plain text") -> dict:
    return make_block(BlockType.CODE, {
        "rich_text": plain_rich_text(code),
        "language": notion_code_language(language),
    })


def divider_block() -> dict:
    return make_block(BlockType.DIVIDER, {})


def file_upload_block(file_upload_id: str, name: str) -> dict:
    """File block referencing a Notion file upload (id may be a placeholder)."""
    return make_block(BlockType.FILE, {
        "type": "file_upload",
        "file_upload": {"id": file_upload_id},
        "name": name,
    })


# Languages accepted by the Notion code block
NOTION_CODE_LANGUAGES = {
    "abap", "arduino", "bash", "basic", "c", "clojure", "coffeescript", "c++",
    "c#", "css", "dart", "diff", "docker", "elixir", "elm", "erlang", "flow",
    "fortran", "f#", "gherkin", "glsl", "go", "graphql", "groovy", "haskell",
    "html", "java", "javascript", "json", "julia", "kotlin", "latex", "less",
    "lisp", "livescript", "lua", "makefile", "markdown", "markup", "matlab",
    "mermaid", "nix", "objective-c", "ocaml", "pascal", "perl", "php",
    "plain text", "powershell", "prolog", "protobuf", "python", "r", "reason",
    "ruby", "rust", "sass", "scala", "scheme", "scss", "shell", "sql", "swift",
    "typescript", "vb.net", "verilog", "vhdl", "visual basic", "webassembly",
    "xml", "yaml", "java/c/c++/c#",
}

LANGUAGE_ALIASES = {
    "text": "plain text",
    "txt": "plain text",
    "plaintext": "plain text",
    "": "plain text",
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "sh": "shell",
    "zsh": "shell",
    "yml": "yaml",
    "md": "markdown",
    "cpp": "c++",
    "csharp": "c#",
    "cs": "c#",
    "dockerfile": "docker",
    "rb": "ruby",
    "rs": "rust",
    "kt": "kotlin",
}


def notion_code_language(language: Optional[str]) -> str:
    """Map a fence language tag to a Notion code language."""
    lang = (language or "").strip().lower()
    lang = LANGUAGE_ALIASES.get(lang, lang)
    return lang if lang in NOTION_CODE_LANGUAGES else "plain text"


# =============================================================================
# Content Items → Blocks
# =============================================================================

def _chunked(text: str, build) -> list[dict]:
    return [build(chunk) for chunk in chunk_text(text, PARAGRAPH_CHUNK)]


def code_blocks(code: str, language: str) -> list[dict]:
    """One or more code blocks for code text, split on line boundaries."""
    return [code_block(chunk, language) for chunk in chunk_lines(code, MAX_CODE_BLOCK_LENGTH)]


def blocks_for_item(item: ContentItem) -> list[dict]:
    """Convert one content item to one or more Notion blocks.

    Text over the paragraph chunk size is split into several blocks of the
    same kind, so no rich-text span exceeds the Notion limit.

    Raises:
        TypeError: For tables (compiled separately) or unknown item kinds.
    """
    if isinstance(item, Heading):
        return _chunked(item.text, lambda t: heading_block(t, item.level))
    elif isinstance(item, Paragraph):
        return _chunked(item.text, paragraph_block)
    elif isinstance(item, Divider):
        return [divider_block()]
    elif isinstance(item, BulletedListItem):
        return _chunked(item.text, bulleted_list_block)
    elif isinstance(item, NumberedListItem):
        return _chunked(item.text, numbered_list_block)
    elif isinstance(item, ToDo):
        return _chunked(item.text, lambda t: to_do_block(t, item.checked))
    elif isinstance(item, Quote):
        return _chunked(item.text, quote_block)
    elif isinstance(item, Code):
        if item.language.lower() == "json":
            return code_blocks(_pretty_json_or_raw(item.text), "json")
        return code_blocks(item.text, item.language)
    elif isinstance(item, Table):
        raise TypeError("Tables are compiled into database requests, not blocks")
    raise TypeError(f"Unknown content item: {type(item).__name__}")


def _pretty_json_or_raw(text: str) -> str:
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return text


# =============================================================================
# Tables as Text
# =============================================================================

def table_text_blocks(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> list[dict]:
    """Render a table as readable paragraphs.

    Used when a table cannot become a database, so its content still
    reaches the page.
    """
    header_text = " | ".join(headers)
    blocks = _chunked(f"**{header_text}**", paragraph_block)
    blocks.append(paragraph_block("─" * min(len(header_text), 80)))

    if not rows:
        blocks.append(paragraph_block(NO_DATA_NOTICE))
        return blocks

    parts = chunk_list(list(rows), TABLE_TEXT_ROWS_PER_PART)
    for part_index, part in enumerate(parts):
        if len(parts) > 1:
            blocks.append(paragraph_block(f"**Part {part_index + 1} of {len(parts)}:**"))
        for row in part:
            blocks.extend(_chunked(" | ".join(row), paragraph_block))
    return blocks


# =============================================================================
# JSON Content
# =============================================================================

def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{round(size / 1024)} KB"
    return f"{round(size / (1024 * 1024))} MB"


def json_preview(value: Any) -> str:
    """One-line structural summary of a JSON value."""
    if isinstance(value, list):
        if not value:
            return "Empty array"
        first = value[0]
        item_type = _json_type_name(first)
        keys = ""
        if isinstance(first, dict):
            names = list(first.keys())
            keys = ", ".join(names[:5]) + ("..." if len(names) > 5 else "")
        return f"Array of {len(value)} {item_type}s" + (f" with keys: {keys}" if keys else "")
    if isinstance(value, dict):
        names = list(value.keys())
        listed = ", ".join(names[:10]) + ("..." if len(names) > 10 else "")
        return f"Object with {len(names)} properties: {listed}"
    return f"{_json_type_name(value)} value: {str(value)[:100]}"


def _json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def json_needs_attachment(pretty: str) -> bool:
    """True when pretty-printed JSON is too large for inline code blocks."""
    line_count = pretty.count('\n') + 1
    return line_count >= MAX_JSON_LINES_FOR_CODE_BLOCKS or len(pretty) >= JSON_FILE_THRESHOLD


def json_code_blocks(pretty: str, title: str = "JSON Data") -> list[dict]:
    """Inline JSON as one or more json code blocks under a heading."""
    blocks = [heading_block(title, 3)]
    if len(pretty) <= MAX_CODE_BLOCK_LENGTH:
        blocks.append(code_block(pretty, "json"))
        return blocks

    chunks = chunk_lines(pretty, MAX_CODE_BLOCK_LENGTH)
    blocks.append(paragraph_block(f"⚠️ Large JSON split into {len(chunks)} code blocks:"))
    for index, chunk in enumerate(chunks):
        blocks.append(heading_block(f"Part {index + 1} of {len(chunks)}", 3))
        blocks.append(code_block(chunk, "json"))
    return blocks


def json_to_blocks(
    value: Any,
    attachment_id: Optional[str] = None,
    file_name: str = "data.json"
) -> list[dict]:
    """Convert a decoded JSON document into blocks.

    Small documents become fenced json code blocks. Documents over the line
    or size threshold become a summary: a heading, the reason, a file block
    pointing at attachment_id (or a notice when there is no attachment) and
    a truncated structural preview.

    Args:
        value: Decoded JSON document.
        attachment_id: File upload id (or plan placeholder) holding the
            full document, if one will be uploaded.
        file_name: Name shown for the attachment.
    """
    pretty = pretty_json(value)
    if not json_needs_attachment(pretty):
        return json_code_blocks(pretty)

    line_count = pretty.count('\n') + 1
    size = len(pretty.encode('utf-8'))
    if line_count >= MAX_JSON_LINES_FOR_CODE_BLOCKS:
        reason = f"{line_count} lines (>{MAX_JSON_LINES_FOR_CODE_BLOCKS} line limit)"
    else:
        reason = f"{format_file_size(size)} size"
    logger.info(f"JSON document redirected to file attachment: {reason}")

    blocks = [
        heading_block(f"📄 {file_name}", 3),
        paragraph_block(f"JSON file ({reason}) - too large for inline display."),
    ]
    if attachment_id:
        blocks.append(file_upload_block(attachment_id, file_name))
    else:
        blocks.append(paragraph_block(
            "⚠️ JSON file too large for inline display. Download the source file separately."
        ))
    blocks.append(heading_block("📋 JSON Structure Preview", 3))
    blocks.append(paragraph_block(
        "", rich_text=plain_rich_text(json_preview(value)[:MAX_CODE_BLOCK_LENGTH])
    ))
    return blocks
