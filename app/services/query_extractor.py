from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from app.services.dialect_rules import RuleHit, find_hits
from app.services.param_normalizer import Placeholder, collapse_whitespace, normalize

logger = logging.getLogger(__name__)

MAX_ANNOTATION_WINDOW = 20_000

MATCHED = "matched"
SKIPPED = "skipped"
SKIP_NOT_NATIVE = "not_native_query"
SKIP_NO_LITERAL = "no_string_literal"
SKIP_UNTERMINATED = "unterminated_arguments"

ANNOTATION_PATTERN = re.compile(r"@(?:[A-Za-z_$][\w$]*\s*\.\s*)*Query\s*\(")
STRING_LITERAL_PATTERN = re.compile(r'"""[\s\S]*?"""|"(?:\\.|[^\\"])*"')
CHAR_LITERAL_PATTERN = re.compile(r"'(?:\\.|[^\\'])*'")
NATIVE_QUERY_FLAG_PATTERN = re.compile(r"\bnativeQuery\s*=\s*true\b", re.IGNORECASE)
TYPE_PATTERN = re.compile(r"\b(?:class|interface)\s+([A-Za-z_$][\w$]*)")
METHOD_PATTERN = re.compile(r"(?<=[\w$>\]?])\s+([A-Za-z_$][\w$]*)\s*\(")
JAVA_ESCAPE_PATTERN = re.compile(
    r"\\(?:u+([0-9a-fA-F]{4})|([0-3][0-7]{0,2}|[4-7][0-7]?)|(\n)|(.))",
    re.DOTALL,
)
SIMPLE_ESCAPES = {
    "b": "\b",
    "t": "\t",
    "n": "\n",
    "f": "\f",
    "r": "\r",
    "s": " ",
    '"': '"',
    "'": "'",
    "\\": "\\",
}


@dataclass(frozen=True)
class QueryItem:
    id: str
    file: str
    repo_type_name: str
    method_name: str | None
    sql_raw: str
    sql_normalized: str
    placeholders: tuple[Placeholder, ...] = field(default_factory=tuple)
    rule_hits: tuple[RuleHit, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file": self.file,
            "repoTypeName": self.repo_type_name,
            "methodName": self.method_name,
            "sqlRaw": self.sql_raw,
            "sqlNormalized": self.sql_normalized,
            "placeholders": [
                {"kind": placeholder.kind, "token": placeholder.token}
                for placeholder in self.placeholders
            ],
            "ruleHits": [{"rule": hit.rule, "snippet": hit.snippet} for hit in self.rule_hits],
        }


@dataclass(frozen=True)
class AnnotationMatch:
    status: Literal["matched", "skipped"]
    start: int
    end: int
    literal: str | None = None
    reason: str | None = None


def read_content(path: str | Path) -> str:
    data = Path(path).read_bytes()
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    text = data.decode("utf-8", errors="replace")
    if any(ord(char) > 0x7F and char != "\ufffd" for char in text):
        return text
    # Not a single valid multi-byte sequence: treat as a single-byte charset.
    return data.decode("latin-1")


def find_annotations(content: str) -> list[AnnotationMatch]:
    outcomes: list[AnnotationMatch] = []
    position = 0
    while True:
        match = ANNOTATION_PATTERN.search(content, position)
        if match is None:
            break
        open_paren = match.end() - 1
        close_paren = _find_argument_end(content, open_paren)
        if close_paren is None:
            outcomes.append(
                AnnotationMatch(SKIPPED, match.start(), match.end(), reason=SKIP_UNTERMINATED)
            )
            position = match.end()
            continue

        body = content[open_paren + 1 : close_paren]
        end = close_paren + 1
        literal = STRING_LITERAL_PATTERN.search(body)
        if not NATIVE_QUERY_FLAG_PATTERN.search(STRING_LITERAL_PATTERN.sub('""', body)):
            outcomes.append(AnnotationMatch(SKIPPED, match.start(), end, reason=SKIP_NOT_NATIVE))
        elif literal is None:
            outcomes.append(AnnotationMatch(SKIPPED, match.start(), end, reason=SKIP_NO_LITERAL))
        else:
            outcomes.append(AnnotationMatch(MATCHED, match.start(), end, literal=literal.group(0)))
        position = end
    return outcomes


def extract(content: str, relative_path: str, *, collapse: bool = False) -> list[QueryItem]:
    fallback_name = _base_name(relative_path)
    items: list[QueryItem] = []
    skipped = 0
    for outcome in find_annotations(content):
        if outcome.status != MATCHED or outcome.literal is None:
            skipped += 1
            continue
        sql_raw = decode_literal(outcome.literal)
        if collapse:
            sql_raw = collapse_whitespace(sql_raw) or ""
        type_name = _detect_type_name(content, outcome.start) or fallback_name
        method_name = _detect_method_name(content, outcome.end)
        normalized = normalize(sql_raw)
        items.append(
            QueryItem(
                id=type_name if method_name is None else f"{type_name}#{method_name}",
                file=relative_path,
                repo_type_name=type_name,
                method_name=method_name,
                sql_raw=sql_raw,
                sql_normalized=normalized.sql or "",
                placeholders=normalized.placeholders,
                rule_hits=tuple(find_hits(sql_raw)),
            )
        )

    logger.debug(
        "extract: file=%s matched=%s skipped=%s", relative_path, len(items), skipped
    )
    return items


def extract_file(path: str | Path, relative_path: str, *, collapse: bool = False) -> list[QueryItem]:
    return extract(read_content(path), relative_path, collapse=collapse)


def decode_literal(raw_literal: str) -> str:
    if raw_literal.startswith('"""'):
        return _decode_text_block(raw_literal[3:-3])
    return _unescape_java(raw_literal[1:-1])


def _decode_text_block(content: str) -> str:
    content = content.replace("\r\n", "\n")
    if content.startswith("\n"):
        content = content[1:]
    lines = content.split("\n")
    indent = _common_indent(lines)
    if indent:
        lines = [_remove_indent(line, indent) for line in lines]
    return _unescape_java("\n".join(lines))


def _common_indent(lines: list[str]) -> int:
    indents = [len(line) - len(line.lstrip(" \t")) for line in lines if line.strip()]
    return min(indents, default=0)


def _remove_indent(line: str, indent: int) -> str:
    index = 0
    limit = min(indent, len(line))
    while index < limit and line[index] in " \t":
        index += 1
    return line[index:]


def _unescape_java(text: str) -> str:
    def replace(match: re.Match[str]) -> str:
        unicode_hex, octal, newline, other = match.groups()
        if unicode_hex:
            return chr(int(unicode_hex, 16))
        if octal:
            return chr(int(octal, 8))
        if newline:
            return ""
        return SIMPLE_ESCAPES.get(other, other)

    unescaped = JAVA_ESCAPE_PATTERN.sub(replace, text)
    if any("\ud800" <= char <= "\udfff" for char in unescaped):
        # \uXXXX pairs arrive as separate surrogates.
        unescaped = unescaped.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")
    return unescaped


def _find_argument_end(content: str, open_paren: int) -> int | None:
    limit = min(len(content), open_paren + MAX_ANNOTATION_WINDOW)
    depth = 0
    index = open_paren
    while index < limit:
        char = content[index]
        if char in "\"'":
            pattern = STRING_LITERAL_PATTERN if char == '"' else CHAR_LITERAL_PATTERN
            literal = pattern.match(content, index, limit)
            if literal is None:
                return None
            index = literal.end()
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return None


def _detect_type_name(content: str, before: int) -> str | None:
    match = TYPE_PATTERN.search(content, 0, before)
    return match.group(1) if match else None


def _detect_method_name(content: str, after: int) -> str | None:
    match = METHOD_PATTERN.search(content, after)
    return match.group(1) if match else None


def _base_name(relative_path: str) -> str:
    name = Path(relative_path).name
    dot = name.find(".")
    return name[:dot] if dot > 0 else name
