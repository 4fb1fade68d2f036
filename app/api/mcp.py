# [파일 설명]
# - 목적: MCP API 라우트를 정의하고 요청/응답 모델을 제공한다.
# - 제공 기능: 네이티브 쿼리 목록, SQL 재작성/정규화, 파싱 검증, 리포트 기록 POST 엔드포인트를 제공한다.
# - 입력/출력: Pydantic 모델로 요청을 수신하고 camelCase 필드의 응답 구조를 반환한다.
# - 주의 사항: 원문 SQL은 로그에 직접 남기지 않고 길이/해시 요약만 기록한다.
# - 연관 모듈: app.services.* 추출/정규화/규칙 엔진 서비스들과 연결된다.
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.services.dialect_rules import find_hits, rewrite
from app.services.param_normalizer import normalize
from app.services.prepare_report import append_prepare_report
from app.services.result_aggregator import aggregate
from app.services.source_scanner import RootScanError, scan_roots
from app.services.sql_prepare import prepare_sql

logger = logging.getLogger(__name__)

router = APIRouter()


# [클래스 설명]
# - 역할: camelCase 별칭을 공통으로 적용하는 기반 모델이다.
# - 사용 위치: 이 모듈의 모든 요청/응답 모델이 상속한다.
# - 핵심 동작: snake_case 필드를 camelCase JSON 키로 직렬화/검증한다.
# - 제약/주의: 필드 이름으로도 값을 채울 수 있도록 populate_by_name을 켠다.
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlaceholderModel(CamelModel):
    kind: str
    token: str


class RuleHitModel(CamelModel):
    rule: str
    snippet: str


# [클래스 설명]
# - 역할: 추출된 네이티브 쿼리 1건을 표현한다.
# - 사용 위치: ListNativeQueriesResponse.queries 항목으로 사용된다.
# - 핵심 동작: id는 타입 이름에 메서드 이름이 있으면 '#메서드'를 붙인 값이다.
# - 제약/주의: method_name이 없으면 null로 직렬화한다.
class QueryItemModel(CamelModel):
    id: str
    file: str
    repo_type_name: str
    method_name: str | None
    sql_raw: str
    sql_normalized: str
    placeholders: list[PlaceholderModel]
    rule_hits: list[RuleHitModel]


# [클래스 설명]
# - 역할: jpa.list_native_queries 요청 스키마를 정의한다.
# - 사용 위치: /jpa/native-queries 엔드포인트와 tools/call에서 사용된다.
# - 핵심 동작: root_dirs는 필수이며 cursor는 offset 별칭으로도 받는다.
# - 제약/주의: limit 상한(500)은 거부하지 않고 집계 단계에서 잘라낸다.
class ListNativeQueriesRequest(CamelModel):
    root_dirs: list[str] = Field(..., min_length=1)
    include_globs: list[str] | None = None
    exclude_globs: list[str] | None = None
    limit: int | None = Field(default=None, ge=1)
    cursor: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("cursor", "offset")
    )
    max_sql_length: int | None = Field(default=None, ge=1)
    collapse_whitespace: bool = False


class ListNativeQueriesResponse(CamelModel):
    queries: list[QueryItemModel]
    total_count: int
    limit: int
    cursor: int
    next_cursor: int | None = None
    errors: list[str] | None = None


class SqlRequest(CamelModel):
    sql: str = Field(..., min_length=1)


class RewriteResponse(CamelModel):
    sql: str
    applied_rules: list[str]
    rule_hits: list[RuleHitModel]


class NormalizeResponse(CamelModel):
    sql: str
    placeholders: list[PlaceholderModel]


class PrepareRequest(CamelModel):
    sql: str = Field(..., min_length=1)
    dialect: str | None = None
    init_sql_paths: list[str] | None = None


class PrepareDiagnostics(CamelModel):
    message: str
    sql_state: str | None
    error_code: int | None
    line: int | None
    column: int | None


class PrepareResponse(CamelModel):
    ok: bool
    diagnostics: PrepareDiagnostics | None


class PrepareReportRequest(CamelModel):
    sql: str = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)


class PrepareReportResponse(CamelModel):
    report_path: str
    appended: bool


# [함수 설명]
# - 목적: /jpa/native-queries 엔드포인트 요청을 처리한다.
# - 입력: 루트 디렉터리 목록, include/exclude glob, 페이지/절단 옵션
# - 출력: queries, totalCount, limit, cursor와 필요 시 nextCursor, errors를 반환한다.
# - 에러 처리: 파일 단위 읽기 실패는 errors에 담고, 루트 탐색 실패는 500으로 응답한다.
# - 결정론: file, id 순으로 정렬한 뒤 페이지를 자른다.
# - 보안: 로그에는 개수/길이/해시만 남긴다.
@router.post(
    "/jpa/native-queries",
    response_model=ListNativeQueriesResponse,
    response_model_exclude_unset=True,
)
def list_native_queries(request: ListNativeQueriesRequest) -> ListNativeQueriesResponse:
    try:
        per_file_results = scan_roots(
            request.root_dirs,
            request.include_globs,
            request.exclude_globs,
            collapse=request.collapse_whitespace,
        )
    except RootScanError as exc:
        logger.error("list_native_queries: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    result = aggregate(
        per_file_results,
        limit=request.limit,
        cursor=request.cursor,
        max_length=request.max_sql_length,
    )
    return ListNativeQueriesResponse.model_validate(result)


# [함수 설명]
# - 목적: /sql/rewrite 엔드포인트 요청을 처리한다.
# - 입력: 원본 방언 SQL
# - 출력: 재작성된 SQL, 적용된 규칙 이름, 원본 SQL의 규칙 히트 목록
# - 에러 처리: 규칙이 하나도 맞지 않으면 입력을 그대로 반환한다.
# - 결정론: 규칙은 선언 순서대로 적용된다.
@router.post("/sql/rewrite", response_model=RewriteResponse)
def sql_rewrite(request: SqlRequest) -> RewriteResponse:
    result = rewrite(request.sql)
    return RewriteResponse(
        sql=result.sql or "",
        applied_rules=list(result.applied_rules),
        rule_hits=[RuleHitModel(rule=hit.rule, snippet=hit.snippet) for hit in find_hits(request.sql)],
    )


@router.post("/sql/normalize", response_model=NormalizeResponse)
def sql_normalize(request: SqlRequest) -> NormalizeResponse:
    result = normalize(request.sql)
    return NormalizeResponse(
        sql=result.sql or "",
        placeholders=[
            PlaceholderModel(kind=placeholder.kind, token=placeholder.token)
            for placeholder in result.placeholders
        ],
    )


# [함수 설명]
# - 목적: /sql/prepare 엔드포인트 요청을 처리한다.
# - 입력: SQL, 선택적 sqlglot 방언 이름과 초기화 스크립트 경로 목록
# - 출력: ok 여부와 실패 시 message/sqlState/errorCode/line/column 진단 정보
# - 에러 처리: 파싱 실패는 진단 결과로 반환하고 예외로 전파하지 않는다.
# - 보안: 원문 SQL은 로그에 요약 정보로만 기록한다.
@router.post("/sql/prepare", response_model=PrepareResponse)
def sql_prepare(request: PrepareRequest) -> PrepareResponse:
    result = prepare_sql(request.sql, request.dialect, request.init_sql_paths)
    return PrepareResponse.model_validate(result)


@router.post("/sql/prepare/report", response_model=PrepareReportResponse)
def sql_prepare_report(request: PrepareReportRequest) -> PrepareReportResponse:
    result = append_prepare_report(request.sql, request.diagnosis)
    return PrepareReportResponse.model_validate(result)
