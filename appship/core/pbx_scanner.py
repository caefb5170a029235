"""Lexical scanner for the OpenStep-style property lists used by ``project.pbxproj``.

The scanner never builds a full value tree.  It splits dictionary bodies into
raw entries that carry absolute offsets, so callers can cut the source text
into regions and reproduce it byte for byte.  Quoted strings (with escapes),
``/* */`` and ``//`` comments are skipped wherever they appear; braces and
parentheses inside them never affect depth.
"""

from __future__ import annotations

from typing import NamedTuple


class ManifestParseError(RuntimeError):
    """Raised when the manifest text is structurally malformed."""


class RawEntry(NamedTuple):
    """A ``key = value;`` entry with absolute offsets into the source."""

    leading_start: int
    key_start: int
    key_end: int
    value_start: int
    value_end: int  # offset of the terminating ';'

    def key(self, text: str) -> str:
        return text[self.key_start:self.key_end]

    def value(self, text: str) -> str:
        return text[self.value_start:self.value_end]


_WHITESPACE = " \t\r\n"


def _line_col(text: str, pos: int) -> str:
    line = text.count("\n", 0, pos) + 1
    col = pos - (text.rfind("\n", 0, pos) + 1) + 1
    return f"line {line}, column {col}"


def skip_string(text: str, pos: int, end: int) -> int:
    """Return the offset just past the quoted string starting at *pos*."""
    i = pos + 1
    while i < end:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    raise ManifestParseError(f"Unterminated string at {_line_col(text, pos)}")


def skip_block_comment(text: str, pos: int, end: int) -> int:
    close = text.find("*/", pos + 2, end)
    if close < 0:
        raise ManifestParseError(f"Unterminated comment at {_line_col(text, pos)}")
    return close + 2


def skip_line_comment(text: str, pos: int, end: int) -> int:
    newline = text.find("\n", pos, end)
    return end if newline < 0 else newline + 1


def skip_trivia(text: str, pos: int, end: int) -> int:
    """Skip whitespace and comments."""
    while pos < end:
        ch = text[pos]
        if ch in _WHITESPACE:
            pos += 1
        elif text.startswith("/*", pos):
            pos = skip_block_comment(text, pos, end)
        elif text.startswith("//", pos):
            pos = skip_line_comment(text, pos, end)
        else:
            break
    return pos


def _skip_atom(text: str, pos: int, end: int) -> int:
    """Skip a quoted string or a bare word."""
    if text[pos] == '"':
        return skip_string(text, pos, end)
    start = pos
    while pos < end and text[pos] not in _WHITESPACE and text[pos] not in "=;,{}()\"":
        if text.startswith("/*", pos):
            break
        pos += 1
    if pos == start:
        raise ManifestParseError(
            f"Unexpected {text[pos]!r} at {_line_col(text, pos)}"
        )
    return pos


def find_matching(text: str, open_pos: int, end: int | None = None) -> int:
    """Return the offset of the delimiter closing the one at *open_pos*."""
    end = len(text) if end is None else end
    pairs = {"{": "}", "(": ")"}
    stack = [pairs[text[open_pos]]]
    i = open_pos + 1
    while i < end:
        ch = text[i]
        if ch == '"':
            i = skip_string(text, i, end)
            continue
        if text.startswith("/*", i):
            i = skip_block_comment(text, i, end)
            continue
        if text.startswith("//", i) and (i == 0 or text[i - 1] in _WHITESPACE):
            i = skip_line_comment(text, i, end)
            continue
        if ch in pairs:
            stack.append(pairs[ch])
        elif ch in "})":
            if ch != stack[-1]:
                raise ManifestParseError(
                    f"Mismatched {ch!r} at {_line_col(text, i)}"
                )
            stack.pop()
            if not stack:
                return i
        i += 1
    raise ManifestParseError(
        f"Unbalanced {text[open_pos]!r} opened at {_line_col(text, open_pos)}"
    )


def _value_end(text: str, pos: int, end: int) -> int:
    """Offset of the ';' terminating the value starting at *pos*."""
    i = pos
    while i < end:
        ch = text[i]
        if ch == '"':
            i = skip_string(text, i, end)
            continue
        if text.startswith("/*", i):
            i = skip_block_comment(text, i, end)
            continue
        if ch in "{(":
            i = find_matching(text, i, end) + 1
            continue
        if ch in "})":
            raise ManifestParseError(f"Unexpected {ch!r} at {_line_col(text, i)}")
        if ch == ";":
            return i
        i += 1
    raise ManifestParseError(f"Missing ';' after value at {_line_col(text, pos)}")


def split_entries(text: str, start: int, end: int) -> tuple[list[RawEntry], int]:
    """Split a dictionary body ``text[start:end]`` into raw entries.

    Returns the entries and the offset where the trailer (whitespace and
    comments before the closing brace) begins.
    """
    entries: list[RawEntry] = []
    pos = start
    while True:
        leading_start = pos
        pos = skip_trivia(text, pos, end)
        if pos >= end:
            return entries, leading_start
        key_start = pos
        key_end = _skip_atom(text, pos, end)
        pos = skip_trivia(text, key_end, end)
        if pos >= end or text[pos] != "=":
            raise ManifestParseError(
                f"Expected '=' after key {text[key_start:key_end]!r} "
                f"at {_line_col(text, key_start)}"
            )
        pos += 1
        while pos < end and text[pos] in _WHITESPACE:
            pos += 1
        value_start = pos
        value_end = _value_end(text, pos, end)
        entries.append(RawEntry(leading_start, key_start, key_end, value_start, value_end))
        pos = value_end + 1


def split_array(text: str, start: int, end: int) -> list[str]:
    """Return the items of an array body ``text[start:end]`` without comments."""
    items: list[str] = []
    pos = start
    while True:
        pos = skip_trivia(text, pos, end)
        if pos >= end:
            return items
        if text[pos] in "{(":
            close = find_matching(text, pos, end)
            items.append(text[pos:close + 1])
            pos = close + 1
        else:
            item_end = _skip_atom(text, pos, end)
            items.append(text[pos:item_end])
            pos = item_end
        pos = skip_trivia(text, pos, end)
        if pos < end:
            if text[pos] != ",":
                raise ManifestParseError(f"Expected ',' at {_line_col(text, pos)}")
            pos += 1


def strip_comments(fragment: str) -> str:
    """Remove comments outside quoted strings and trim whitespace."""
    out: list[str] = []
    i = 0
    end = len(fragment)
    while i < end:
        ch = fragment[i]
        if ch == '"':
            close = skip_string(fragment, i, end)
            out.append(fragment[i:close])
            i = close
        elif fragment.startswith("/*", i):
            i = skip_block_comment(fragment, i, end)
        else:
            out.append(ch)
            i += 1
    return "".join(out).strip()


def root_span(text: str) -> tuple[int, int]:
    """Offsets of the outermost ``{`` and its matching ``}``."""
    pos = skip_trivia(text, 0, len(text))
    if pos >= len(text) or text[pos] != "{":
        raise ManifestParseError("Manifest does not start with a dictionary")
    close = find_matching(text, pos)
    if skip_trivia(text, close + 1, len(text)) != len(text):
        raise ManifestParseError(
            f"Unexpected content after root dictionary at {_line_col(text, close + 1)}"
        )
    return pos, close
