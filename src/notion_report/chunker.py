"""Text chunking for Notion's per-span length limit.

Every rich-text span sent to Notion must be at most 2000 characters. The
helpers here split long strings at the most readable boundary available in
the window: newline, then sentence end, then space, then a hard cut.
"""

import re
from typing import TypeVar

T = TypeVar("T")

# Notion limit per rich_text item
MAX_RICH_TEXT_LENGTH = 2000

# Paragraph text is split below the hard limit to leave room for prefixes
PARAGRAPH_CHUNK = 1800

# Sentence end: terminal punctuation followed by whitespace
_SENTENCE_END = re.compile(r'[.!?]\s')


def _find_cut(window: str) -> int:
    """Return the cut offset for a window of text.

    The offset is the length of the piece to take from the front of the
    window. Boundary characters stay with the preceding piece so the split
    is lossless.
    """
    # 1) last newline
    newline = window.rfind('\n')
    if newline > 0:
        return newline + 1

    # 2) last sentence boundary
    last_sentence = None
    for match in _SENTENCE_END.finditer(window):
        last_sentence = match
    if last_sentence is not None:
        return last_sentence.end()

    # 3) last space
    space = window.rfind(' ')
    if space > 0:
        return space + 1

    # 4) hard cut
    return len(window)


def split_text(text: str, max_len: int = MAX_RICH_TEXT_LENGTH) -> list[str]:
    """Split text into pieces of at most max_len characters, losslessly.

    ``"".join(split_text(t, n)) == t`` holds for every input.

    Args:
        text: Text to split.
        max_len: Maximum length per piece.

    Returns:
        List of pieces in reading order. Empty input gives an empty list.
    """
    if max_len <= 0:
        raise ValueError(f"max_len must be positive, got {max_len}")
    if not text:
        return []

    pieces: list[str] = []
    remaining = text
    while len(remaining) > max_len:
        cut = _find_cut(remaining[:max_len])
        pieces.append(remaining[:cut])
        remaining = remaining[cut:]
    if remaining:
        pieces.append(remaining)
    return pieces


def chunk_text(text: str, max_len: int = MAX_RICH_TEXT_LENGTH) -> list[str]:
    """Split text into trimmed chunks of at most max_len characters.

    Text within the limit is returned unchanged as a single chunk. Longer
    text is split with split_text(); each piece is stripped of its boundary
    whitespace and whitespace-only pieces are dropped.
    """
    if len(text) <= max_len:
        return [text]
    chunks = [piece.strip() for piece in split_text(text, max_len)]
    return [c for c in chunks if c]


def chunk_lines(text: str, max_len: int = MAX_RICH_TEXT_LENGTH) -> list[str]:
    """Split text into chunks made of whole lines where possible.

    Used for code and JSON where line structure must survive. Lines are
    re-joined with newlines; a single line longer than max_len is split
    with split_text().
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for line in text.split('\n'):
        if len(line) > max_len:
            if current:
                chunks.append('\n'.join(current))
                current, size = [], 0
            chunks.extend(split_text(line, max_len))
            continue
        # +1 for the joining newline
        added = len(line) + (1 if current else 0)
        if current and size + added > max_len:
            chunks.append('\n'.join(current))
            current, size = [line], len(line)
        else:
            current.append(line)
            size += added
    if current:
        chunks.append('\n'.join(current))
    return chunks


def chunk_list(items: list[T], size: int) -> list[list[T]]:
    """Split a list into consecutive sublists of at most size items."""
    return [items[i:i + size] for i in range(0, len(items), size)]
