"""Quote-aware line and field tokenization for delimited report text.

Human-produced CSV dumps are not reliably RFC 4180: titles carry embedded
newlines, quotes are left unterminated, and currency values arrive with
unquoted thousands separators.  These helpers tolerate all of that and never
raise on malformed input.
"""

from __future__ import annotations

import re

_QUOTE = '"'

# Leading part of an amount that an unquoted thousands separator cut short,
# e.g. "$1" out of "$1,234.56".
_AMOUNT_HEAD_RE = re.compile(r"^[-+(]?\s*[$€£¥]?\s*-?\d{1,3}$")
# Trailing thousands group, e.g. "234" or "234.56" or "500%".
_AMOUNT_GROUP_RE = re.compile(r"^\d{3}(\.\d+)?\)?%?$")


def normalize_newlines(text: str) -> str:
    """Convert ``\\r\\n`` and bare ``\\r`` line endings to ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_logical_lines(text: str) -> list[str]:
    """Split *text* into logical lines, keeping quoted newlines inside a line.

    A newline inside an open quoted field does not end the current line.
    Lines are trimmed and lines that are empty after trimming are dropped.
    """
    lines: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in normalize_newlines(text):
        if char == _QUOTE:
            in_quotes = not in_quotes
            current.append(char)
        elif char == "\n" and not in_quotes:
            lines.append("".join(current))
            current = []
        else:
            current.append(char)
    lines.append("".join(current))

    return [line.strip() for line in lines if line.strip()]


def split_cells(line: str, delimiter: str = ",") -> list[str]:
    """Split one logical line into trimmed cells.

    ``""`` inside a quoted field is unescaped to ``"``.  The delimiter only
    separates cells outside quotes.  An unterminated quote turns the rest of
    the line into literal text, delimiters included.
    """
    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    length = len(line)

    while i < length:
        char = line[i]
        if char == _QUOTE:
            if in_quotes and i + 1 < length and line[i + 1] == _QUOTE:
                current.append(_QUOTE)
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    cells.append("".join(current).strip())
    return cells


def rejoin_split_amount(cells: list[str], delimiter: str = ",") -> list[str]:
    """Rejoin a label/value row whose value was split on thousands separators.

    ``["Revenue", "$1", "234.56"]`` becomes ``["Revenue", "$1,234.56"]``.
    Rows whose extra cells are not all three-digit groups are returned
    unchanged.
    """
    if len(cells) <= 2:
        return cells
    head, groups = cells[1], cells[2:]
    if not _AMOUNT_HEAD_RE.match(head):
        return cells
    if not all(_AMOUNT_GROUP_RE.match(group) for group in groups):
        return cells
    return [cells[0], delimiter.join([head, *groups])]
