# [파일 설명]
# - 목적: SQL 요약 정보를 계산해 안전한 로그 출력에 활용한다.
# - 제공 기능: SQL 길이/해시 요약과 추출 결과 집계 요약을 생성한다.
# - 입력/출력: 원문 SQL 또는 QueryItem 목록을 받아 요약 dict를 반환한다.
# - 주의 사항: 원문 SQL 자체는 반환하거나 로그에 남기지 않는다.
# - 연관 모듈: dialect_rules, result_aggregator, sql_prepare, prepare_report 로그에 사용된다.
from __future__ import annotations

import hashlib
from collections.abc import Iterable
from typing import Protocol


class _HasSql(Protocol):
    sql_raw: str


def summarize_sql(sql: str) -> dict[str, int | str]:
    sql_hash = hashlib.sha256(sql.encode("utf-8")).hexdigest()[:8]
    return {"len": len(sql), "sha256_8": sql_hash}


# [함수 설명]
# - 목적: 추출된 쿼리 목록을 개수/총 길이/결합 해시로 요약한다.
# - 입력: sql_raw 속성을 가진 항목 목록
# - 출력: count, total_len, sha256_8 키를 가진 dict
# - 결정론: 입력 순서대로 해시를 누적하므로 동일 입력에 동일 결과를 반환한다.
# - 보안: 원문 SQL 대신 해시만 노출한다.
def summarize_items(items: Iterable[_HasSql]) -> dict[str, int | str]:
    digest = hashlib.sha256()
    count = 0
    total_len = 0
    for item in items:
        count += 1
        total_len += len(item.sql_raw)
        digest.update(item.sql_raw.encode("utf-8"))
    return {"count": count, "total_len": total_len, "sha256_8": digest.hexdigest()[:8]}
