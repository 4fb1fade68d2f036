from __future__ import annotations

import logging
import os
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlglot import parse
from sqlglot.errors import ParseError, TokenError

from app.services.safe_sql import summarize_sql

logger = logging.getLogger(__name__)

SYNTAX_ERROR_SQL_STATE = "42000"
SYNTAX_ERROR_CODE = 42001

LINE_COLUMN_PATTERN = re.compile(r"\bline\s+(\d+),\s*col(?:umn)?:?\s*(\d+)", re.IGNORECASE)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def load_default_dialect() -> str | None:
    return os.getenv("MCP_PREPARE_DIALECT", "").strip() or None


def prepare_sql(
    sql: str,
    dialect: str | None = None,
    init_sql_paths: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Check that ``sql`` parses under the target dialect without running it.

    Init scripts are parsed first; missing script files are skipped. Parse
    failures come back as ``{"ok": False, "diagnostics": {...}}``.
    """
    read = dialect or load_default_dialect()
    summary = summarize_sql(sql)
    logger.info(
        "prepare_sql: sql_len=%s sql_hash=%s dialect=%s init_scripts=%s",
        summary["len"],
        summary["sha256_8"],
        read or "default",
        len(init_sql_paths or []),
    )

    for script_path in init_sql_paths or []:
        path = Path(script_path)
        if not path.exists():
            logger.info("prepare_sql: skipping missing init script=%s", path)
            continue
        script = path.read_text(encoding="utf-8")
        try:
            parse(script, read=read)
        except (ParseError, TokenError) as exc:
            return {"ok": False, "diagnostics": to_diagnostics(exc, prefix=f"{path}: ")}

    try:
        parse(sql, read=read)
    except (ParseError, TokenError) as exc:
        diagnostics = to_diagnostics(exc)
        logger.info(
            "prepare_sql: rejected sql_hash=%s line=%s column=%s",
            summary["sha256_8"],
            diagnostics["line"],
            diagnostics["column"],
        )
        return {"ok": False, "diagnostics": diagnostics}
    return {"ok": True, "diagnostics": None}


def to_diagnostics(exc: Exception, prefix: str = "") -> dict[str, Any]:
    raw_message = ANSI_ESCAPE_PATTERN.sub("", str(exc))
    message = raw_message.strip().splitlines()[0] if raw_message.strip() else type(exc).__name__
    line, column = _line_column(message, exc)
    return {
        "message": f"{prefix}{message}",
        "sqlState": SYNTAX_ERROR_SQL_STATE,
        "errorCode": SYNTAX_ERROR_CODE,
        "line": line,
        "column": column,
    }


def _line_column(message: str, exc: Exception) -> tuple[int | None, int | None]:
    match = LINE_COLUMN_PATTERN.search(message)
    if match:
        return int(match.group(1)), int(match.group(2))
    errors = getattr(exc, "errors", None) or []
    if errors and isinstance(errors[0], dict):
        line = errors[0].get("line")
        column = errors[0].get("col")
        return (
            line if isinstance(line, int) else None,
            column if isinstance(column, int) else None,
        )
    return None, None
