from __future__ import annotations

import re
from dataclasses import dataclass

PLACEHOLDER_MARKER = "?"

DEFAULT = "default"
SINGLE_QUOTE = "single_quote"
DOUBLE_QUOTE = "double_quote"
LINE_COMMENT = "line_comment"
BLOCK_COMMENT = "block_comment"

# "?" alone is the JDBC positional marker and is counted like "?N".
PLACEHOLDER_PATTERN = re.compile(r"\?\d*|:[^\W\d][\w$]*")
WHITESPACE_PATTERN = re.compile(r"\s+")
SUBSELECT_PATTERN = re.compile(r"\(\s*SELECT\b", re.IGNORECASE)


@dataclass(frozen=True)
class Placeholder:
    kind: str
    token: str


@dataclass(frozen=True)
class Segment:
    state: str
    start: int
    text: str


@dataclass(frozen=True)
class NormalizedSql:
    sql: str | None
    placeholders: tuple[Placeholder, ...]


def split_segments(sql: str) -> list[Segment]:
    """Split SQL into lexical regions in a single left-to-right pass.

    Quote and comment regions include their delimiters. An unterminated
    region runs to the end of the text.
    """
    segments: list[Segment] = []
    state = DEFAULT
    region_start = 0
    index = 0
    length = len(sql)

    def close_region(end: int) -> None:
        if end > region_start:
            segments.append(Segment(state, region_start, sql[region_start:end]))

    while index < length:
        char = sql[index]
        following = sql[index + 1] if index + 1 < length else ""

        if state == DEFAULT:
            if char == "-" and following == "-":
                opened, width = LINE_COMMENT, 2
            elif char == "/" and following == "*":
                opened, width = BLOCK_COMMENT, 2
            elif char == "'":
                opened, width = SINGLE_QUOTE, 1
            elif char == '"':
                opened, width = DOUBLE_QUOTE, 1
            else:
                index += 1
                continue
            close_region(index)
            state, region_start = opened, index
            index += width
            continue

        if state == LINE_COMMENT:
            index += 1
            if char == "\n":
                close_region(index)
                state, region_start = DEFAULT, index
            continue

        if state == BLOCK_COMMENT:
            if char == "*" and following == "/":
                index += 2
                close_region(index)
                state, region_start = DEFAULT, index
            else:
                index += 1
            continue

        quote = "'" if state == SINGLE_QUOTE else '"'
        if char == quote and following == quote:
            index += 2
            continue
        index += 1
        if char == quote:
            close_region(index)
            state, region_start = DEFAULT, index

    close_region(length)
    return segments


def normalize(sql: str | None) -> NormalizedSql:
    if sql is None:
        return NormalizedSql(sql=None, placeholders=())

    parts: list[str] = []
    placeholders: list[Placeholder] = []
    for segment in split_segments(sql):
        if segment.state != DEFAULT:
            parts.append(segment.text)
            continue
        position = 0
        for match in PLACEHOLDER_PATTERN.finditer(segment.text):
            token = match.group(0)
            kind = "named" if token.startswith(":") else "positional"
            placeholders.append(Placeholder(kind=kind, token=token))
            parts.append(segment.text[position : match.start()])
            parts.append(_marker_for(sql, segment.start + match.start()))
            position = match.end()
        parts.append(segment.text[position:])

    return NormalizedSql(sql="".join(parts), placeholders=tuple(placeholders))


def collapse_whitespace(sql: str | None) -> str | None:
    """Collapse whitespace runs outside literals and block comments.

    Line comments are dropped; quoted text keeps its inner whitespace.
    """
    if sql is None:
        return None

    parts: list[str] = []

    def append_code(text: str) -> None:
        if parts and parts[-1].endswith(" ") and text.startswith(" "):
            text = text[1:]
        if text:
            parts.append(text)

    for segment in split_segments(sql):
        if segment.state == DEFAULT:
            append_code(WHITESPACE_PATTERN.sub(" ", segment.text))
        elif segment.state == LINE_COMMENT:
            append_code(" ")
        else:
            parts.append(segment.text)

    return "".join(parts).strip()


def _marker_for(sql: str, start: int) -> str:
    if _needs_in_wrapping(sql, start):
        return f"({PLACEHOLDER_MARKER})"
    return PLACEHOLDER_MARKER


def _needs_in_wrapping(sql: str, start: int) -> bool:
    index = _skip_whitespace_backward(sql, start - 1)
    if index < 0 or sql[index] == "(":
        return False
    if index < 1 or sql[index - 1 : index + 1].upper() != "IN":
        return False
    before = index - 2
    if before >= 0 and _is_identifier_char(sql[before]):
        return False
    # IN (SELECT ...) keeps its own parentheses.
    return not SUBSELECT_PATTERN.match(sql, _skip_whitespace_forward(sql, index + 1))


def _skip_whitespace_backward(sql: str, index: int) -> int:
    while index >= 0 and sql[index].isspace():
        index -= 1
    return index


def _skip_whitespace_forward(sql: str, index: int) -> int:
    while index < len(sql) and sql[index].isspace():
        index += 1
    return index


def _is_identifier_char(char: str) -> bool:
    return char.isalnum() or char in "_$"
