from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from typing import Any

from app.services.query_extractor import QueryItem
from app.services.safe_sql import summarize_items
from app.services.source_scanner import FileScanResult

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 500
ELLIPSIS = "…"


def aggregate(
    per_file_results: Iterable[FileScanResult],
    limit: int | None = None,
    cursor: int | None = None,
    max_length: int | None = None,
) -> dict[str, Any]:
    seen: set[tuple[str, str]] = set()
    unique: list[QueryItem] = []
    errors: list[str] = []
    for result in per_file_results:
        for item in result.items:
            key = (item.id, item.file)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)
        if result.error is not None:
            errors.append(result.error.render())

    unique.sort(key=_sort_key)
    total_count = len(unique)
    page_limit = clamp_limit(limit)
    page_cursor = min(max(cursor or 0, 0), total_count)
    page = unique[page_cursor : page_cursor + page_limit]
    if max_length is not None:
        page = [truncate_item(item, max_length) for item in page]

    summary = summarize_items(page)
    logger.info(
        "aggregate: total=%s cursor=%s limit=%s page=%s page_sql_len=%s errors=%s",
        total_count,
        page_cursor,
        page_limit,
        summary["count"],
        summary["total_len"],
        len(errors),
    )

    response: dict[str, Any] = {
        "queries": [item.as_dict() for item in page],
        "totalCount": total_count,
        "limit": page_limit,
        "cursor": page_cursor,
    }
    next_cursor = page_cursor + len(page)
    if next_cursor < total_count:
        response["nextCursor"] = next_cursor
    if errors:
        response["errors"] = errors
    return response


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return min(max(limit, 1), MAX_LIMIT)


def truncate_item(item: QueryItem, max_length: int) -> QueryItem:
    return dataclasses.replace(
        item,
        sql_raw=truncate_text(item.sql_raw, max_length),
        sql_normalized=truncate_text(item.sql_normalized, max_length),
    )


def truncate_text(text: str | None, max_length: int) -> str | None:
    if text is None or max_length < 1 or len(text) <= max_length:
        return text
    if max_length == 1:
        return ELLIPSIS
    return text[: max_length - 1] + ELLIPSIS


def _sort_key(item: QueryItem) -> tuple[bool, str, bool, str]:
    return (item.file is None, item.file or "", item.id is None, item.id or "")
