from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.services.safe_sql import summarize_sql

logger = logging.getLogger(__name__)

RULE_MINUS_TO_EXCEPT = "MINUS_TO_EXCEPT"
RULE_NVL_TO_COALESCE = "NVL_TO_COALESCE"
RULE_REMOVE_FROM_DUAL = "REMOVE_FROM_DUAL"
RULE_SYSDATE_TO_CURRENT_TIMESTAMP = "SYSDATE_TO_CURRENT_TIMESTAMP"
HINT_LEGACY_OUTER_JOIN = "LEGACY_OUTER_JOIN"
HINT_ROWNUM_USAGE = "ROWNUM_USAGE"
HINT_CONNECT_BY_USAGE = "CONNECT_BY_USAGE"
HINT_DECODE_USAGE = "DECODE_USAGE"


@dataclass(frozen=True)
class DialectRule:
    name: str
    pattern: re.Pattern[str]
    replacement: str | None = None

    @property
    def mutates(self) -> bool:
        return self.replacement is not None


@dataclass(frozen=True)
class RuleHit:
    rule: str
    snippet: str


@dataclass(frozen=True)
class RewriteResult:
    sql: str | None
    applied_rules: tuple[str, ...]


# Order matters: each rewrite sees the output of the ones before it.
REWRITE_RULES: tuple[DialectRule, ...] = (
    DialectRule(RULE_MINUS_TO_EXCEPT, re.compile(r"\bMINUS\b", re.IGNORECASE), "EXCEPT"),
    DialectRule(RULE_NVL_TO_COALESCE, re.compile(r"\bNVL\s*\(", re.IGNORECASE), "COALESCE("),
    DialectRule(RULE_REMOVE_FROM_DUAL, re.compile(r"\s+FROM\s+DUAL\b", re.IGNORECASE), ""),
    DialectRule(
        RULE_SYSDATE_TO_CURRENT_TIMESTAMP,
        re.compile(r"\bSYSDATE\b", re.IGNORECASE),
        "CURRENT_TIMESTAMP",
    ),
)

HINT_RULES: tuple[DialectRule, ...] = (
    DialectRule(HINT_LEGACY_OUTER_JOIN, re.compile(r"\(\+\)")),
    DialectRule(HINT_ROWNUM_USAGE, re.compile(r"\bROWNUM\b", re.IGNORECASE)),
    DialectRule(
        HINT_CONNECT_BY_USAGE,
        re.compile(r"\bCONNECT\s+BY\b|\bSTART\s+WITH\b", re.IGNORECASE),
    ),
    DialectRule(HINT_DECODE_USAGE, re.compile(r"\bDECODE\s*\(", re.IGNORECASE)),
)

ALL_RULES: tuple[DialectRule, ...] = REWRITE_RULES + HINT_RULES


def find_hits(sql: str | None) -> list[RuleHit]:
    if sql is None:
        return []
    hits: list[RuleHit] = []
    for rule in ALL_RULES:
        for match in rule.pattern.finditer(sql):
            hits.append(RuleHit(rule=rule.name, snippet=match.group(0).strip()))
    return hits


def rewrite(sql: str | None) -> RewriteResult:
    if sql is None:
        return RewriteResult(sql=None, applied_rules=())

    summary = summarize_sql(sql)
    updated = sql
    applied: list[str] = []
    for rule in REWRITE_RULES:
        updated, count = rule.pattern.subn(rule.replacement or "", updated)
        if count:
            applied.append(rule.name)

    logger.info(
        "rewrite: sql_len=%s sql_hash=%s applied=%s",
        summary["len"],
        summary["sha256_8"],
        ",".join(applied) or "-",
    )
    return RewriteResult(sql=updated, applied_rules=tuple(applied))
