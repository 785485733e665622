"""Inline Markdown formatting to Notion rich text.

Report text carries light inline Markdown (bold, italic, code, strikethrough,
links). A parsy PEG parser turns it into RichTextSpan objects, which are then
converted to Notion rich_text items no longer than the per-span limit.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

import parsy as P

from .chunker import MAX_RICH_TEXT_LENGTH, split_text

logger = logging.getLogger("notion-report")

# Notion rejects link URLs longer than this
MAX_URL_LENGTH = 2000

LINK_REMOVED_SUFFIX = " [Link removed - too long for Notion]"


@dataclass
class RichTextSpan:
    """A span of rich text with formatting."""
    text: str
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    code: bool = False
    link: Optional[str] = None


def _apply_formatting(spans: list[RichTextSpan], **kwargs) -> list[RichTextSpan]:
    """Apply formatting attributes to spans (additive)."""
    for span in spans:
        for key, value in kwargs.items():
            if key == 'link':
                # Inner links win over outer ones
                if span.link is None:
                    span.link = value
            else:
                setattr(span, key, value)
    return spans


def _same_format(a: RichTextSpan, b: RichTextSpan) -> bool:
    return (
        a.bold == b.bold and
        a.italic == b.italic and
        a.strikethrough == b.strikethrough and
        a.code == b.code and
        a.link == b.link
    )


def _merge_adjacent_spans(spans: list[RichTextSpan]) -> list[RichTextSpan]:
    """Merge adjacent spans with identical formatting, dropping empty ones."""
    merged: list[RichTextSpan] = []
    for span in spans:
        if not span.text:
            continue
        if merged and _same_format(merged[-1], span):
            merged[-1].text += span.text
        else:
            merged.append(span)
    return merged


# Plain text up to the next special character. An underscore preceded by a
# word character is literal, so snake_case never starts an italic span.
_LITERAL_RUN_PATTERN = r"(?:[^\\*~`\[_]|(?<=\w)_)+"


def _make_inline_parser():
    """Build the inline formatting parser using parsy combinators.

    Delimited formats capture their inner text with a regex that stops at
    the closing delimiter and then parse that text recursively, so nesting
    like ``**bold [link](url)**`` works.
    """

    def parse_inner(text: str) -> list[RichTextSpan]:
        if not text:
            return [RichTextSpan(text='')]
        try:
            return _inline_parser_impl.parse(text)
        except P.ParseError:
            return [RichTextSpan(text=text)]

    # Escape sequences: \* \~ \` \[ \] \\ \_
    escaped = (P.string('\\') >> P.char_from('\\*~`[]_()#-|>!')).map(
        lambda c: RichTextSpan(text=c)
    )

    # Code: `text` (no nesting allowed)
    code = (
        P.string('`') >>
        P.regex(r'[^`]+') <<
        P.string('`')
    ).map(lambda t: RichTextSpan(text=t, code=True))

    bold = (
        P.string('**') >>
        P.regex(r'((?:[^*]|\*(?!\*))+)') <<
        P.string('**')
    ).map(lambda inner: _apply_formatting(parse_inner(inner), bold=True))

    strikethrough = (
        P.string('~~') >>
        P.regex(r'((?:[^~]|~(?!~))+)') <<
        P.string('~~')
    ).map(lambda inner: _apply_formatting(parse_inner(inner), strikethrough=True))

    # *content* with no leading space, so "5 * 3 * 2" stays literal
    italic = (
        P.string('*') >>
        P.regex(r'([^*\s][^*]*)') <<
        P.string('*')
    ).map(lambda inner: _apply_formatting(parse_inner(inner), italic=True))

    # _content_ closed at a word boundary
    underscore_italic = P.regex(r"_([^_\s](?:[^_]*[^_\s])?)_(?!\w)", group=1).map(
        lambda inner: _apply_formatting(parse_inner(inner), italic=True)
    )

    @P.generate
    def link():
        yield P.string('[')
        text = yield P.regex(r'(?:[^\[\]]|\[(?:[^\[\]])*\])*')
        yield P.string('](')
        url = yield P.regex(r'[^)\s]+')
        yield P.string(')')
        return _apply_formatting(parse_inner(text), link=url)

    literal_run = P.regex(_LITERAL_RUN_PATTERN).map(lambda t: RichTextSpan(text=t))

    # Special character that didn't start a pattern
    special_fallback = P.any_char.map(lambda c: RichTextSpan(text=c))

    formatted_or_literal = (
        escaped |
        code |
        bold |
        strikethrough |
        italic |
        underscore_italic |
        link |
        literal_run |
        special_fallback
    )

    def flatten(items):
        flat = []
        for item in items:
            if isinstance(item, list):
                flat.extend(item)
            else:
                flat.append(item)
        return flat

    _inline_parser_impl = formatted_or_literal.many().map(flatten)

    return _inline_parser_impl


# Build the parser once at module load
_inline_parser = _make_inline_parser()


def parse_inline_formatting(text: str) -> list[RichTextSpan]:
    """Parse inline Markdown in text and return rich text spans.

    Falls back to a single plain span when the text cannot be parsed.
    """
    if not text:
        return []
    try:
        spans = _inline_parser.parse(text)
        return _merge_adjacent_spans(spans)
    except P.ParseError as e:
        logger.warning(f"Inline formatting parse error: {e}")
        return [RichTextSpan(text=text)]


def _span_to_notion(span: RichTextSpan) -> dict:
    obj: dict = {
        "type": "text",
        "text": {"content": span.text}
    }
    if span.link:
        obj["text"]["link"] = {"url": span.link}

    annotations = {}
    if span.bold:
        annotations["bold"] = True
    if span.italic:
        annotations["italic"] = True
    if span.strikethrough:
        annotations["strikethrough"] = True
    if span.code:
        annotations["code"] = True
    if annotations:
        obj["annotations"] = annotations
    return obj


def rich_text_spans_to_notion(
    spans: list[RichTextSpan],
    max_len: int = MAX_RICH_TEXT_LENGTH
) -> list[dict]:
    """Convert RichTextSpan list to Notion API rich_text format.

    Spans longer than max_len are split losslessly into several items with
    the same formatting. Links over the URL limit are dropped and the text
    is marked.
    """
    result = []
    for span in spans:
        if span.link and len(span.link) > MAX_URL_LENGTH:
            logger.warning(
                f"URL too long ({len(span.link)} chars), removing link: {span.link[:100]}..."
            )
            span = replace(span, link=None, text=span.text + LINK_REMOVED_SUFFIX)
        for piece in split_text(span.text, max_len):
            result.append(_span_to_notion(replace(span, text=piece)))
    return result


def text_to_rich_text(text: str, max_len: int = MAX_RICH_TEXT_LENGTH) -> list[dict]:
    """Convert inline-Markdown text to a Notion rich_text array."""
    if not text:
        return []
    return rich_text_spans_to_notion(parse_inline_formatting(text), max_len)


def plain_rich_text(text: str, max_len: int = MAX_RICH_TEXT_LENGTH) -> list[dict]:
    """Build unformatted rich text (code bodies, titles, table cells)."""
    return [
        {"type": "text", "text": {"content": piece}}
        for piece in split_text(text, max_len)
    ]


def rich_text_plain_content(rich_text: list[dict]) -> str:
    """Concatenate the text content of a rich_text array."""
    return "".join(
        (item.get("text") or {}).get("content", "")
        for item in rich_text
        if isinstance(item, dict)
    )
