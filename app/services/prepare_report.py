from __future__ import annotations

import csv
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from app.services.safe_sql import summarize_sql

logger = logging.getLogger(__name__)

REPORT_FILE_NAME = "prepare-report.csv"
REPORT_HEADER = ("timestamp", "sql", "diagnosis")

_append_lock = threading.Lock()


def resolve_report_path() -> Path:
    env_value = os.getenv("MCP_PREPARE_REPORT_PATH", "").strip()
    return Path(env_value) if env_value else Path.cwd() / REPORT_FILE_NAME


def append_prepare_report(
    sql: str, diagnosis: str, report_path: str | Path | None = None
) -> dict[str, Any]:
    path = Path(report_path) if report_path else resolve_report_path()
    summary = summarize_sql(sql)
    timestamp = datetime.now(timezone.utc).isoformat()

    with _append_lock:
        new_file = not path.exists()
        if new_file:
            path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
            if new_file:
                handle.write(",".join(REPORT_HEADER) + "\n")
            writer.writerow((timestamp, sql, diagnosis))

    logger.info(
        "append_prepare_report: path=%s new_file=%s sql_len=%s sql_hash=%s",
        path,
        new_file,
        summary["len"],
        summary["sha256_8"],
    )
    return {"reportPath": str(path.resolve()), "appended": True}
