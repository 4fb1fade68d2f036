# [파일 설명]
# - 목적: Streamable HTTP MCP(JSON-RPC) 엔드포인트를 제공한다.
# - 제공 기능: initialize/tools/list/tools/call/ping 처리 및 Origin 검증을 수행한다.
# - 입력/출력: JSON-RPC 요청을 받아 표준 응답 또는 202/405를 반환한다.
# - 주의 사항: 알림 메시지는 202로 응답하며, 도구 실행 실패는 isError로 표시한다.
# - 연관 모듈: app.api.mcp 라우트 함수와 요청 모델을 재사용한다.
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from app.api.mcp import (
    ListNativeQueriesRequest,
    PrepareReportRequest,
    PrepareRequest,
    SqlRequest,
    list_native_queries,
    sql_normalize,
    sql_prepare,
    sql_prepare_report,
    sql_rewrite,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2025-11-25")


# [클래스 설명]
# - 역할: MCP 도구 1개의 이름/설명/요청 모델/처리 함수를 묶는다.
# - 사용 위치: tools/list 응답 생성과 tools/call 디스패치에 사용된다.
# - 핵심 동작: summarize는 structuredContent로부터 SQL 없는 요약 문장을 만든다.
# - 제약/주의: 목록은 모듈 로드 시 한 번 구성되는 불변 테이블이다.
@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    request_model: type[BaseModel]
    handler: Callable[[Any], BaseModel]
    summarize: Callable[[dict[str, Any]], str]


def _summarize_list(payload: dict[str, Any]) -> str:
    return (
        "Scan complete. "
        f"total={payload.get('totalCount', 0)}, returned={len(payload.get('queries', []))}, "
        f"errors={len(payload.get('errors', []))}."
    )


def _summarize_rewrite(payload: dict[str, Any]) -> str:
    return (
        "Rewrite complete. "
        f"applied_rules={len(payload.get('appliedRules', []))}, "
        f"rule_hits={len(payload.get('ruleHits', []))}."
    )


def _summarize_normalize(payload: dict[str, Any]) -> str:
    return f"Normalization complete. placeholders={len(payload.get('placeholders', []))}."


def _summarize_prepare(payload: dict[str, Any]) -> str:
    if payload.get("ok"):
        return "Prepare succeeded."
    diagnostics = payload.get("diagnostics") or {}
    return (
        "Prepare failed. "
        f"line={diagnostics.get('line')}, column={diagnostics.get('column')}."
    )


def _summarize_report(payload: dict[str, Any]) -> str:
    return f"Report appended. path={payload.get('reportPath')}."


TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="jpa.list_native_queries",
        description=(
            "Scan JPA repository sources and list native SQL queries with normalized "
            "placeholders and dialect rule hits."
        ),
        request_model=ListNativeQueriesRequest,
        handler=list_native_queries,
        summarize=_summarize_list,
    ),
    ToolSpec(
        name="sql.rewrite",
        description="Rewrite common Oracle SQL syntax to embedded-engine compatible equivalents.",
        request_model=SqlRequest,
        handler=sql_rewrite,
        summarize=_summarize_rewrite,
    ),
    ToolSpec(
        name="sql.normalize",
        description="Replace positional and named parameters with a single '?' marker.",
        request_model=SqlRequest,
        handler=sql_normalize,
        summarize=_summarize_normalize,
    ),
    ToolSpec(
        name="sql.prepare",
        description="Parse SQL under the target dialect without executing it.",
        request_model=PrepareRequest,
        handler=sql_prepare,
        summarize=_summarize_prepare,
    ),
    ToolSpec(
        name="sql.prepare.report",
        description="Append SQL and diagnostic feedback to the shared preparation report.",
        request_model=PrepareReportRequest,
        handler=sql_prepare_report,
        summarize=_summarize_report,
    ),
)

TOOLS_BY_NAME = {tool.name: tool for tool in TOOLS}


# [함수 설명]
# - 목적: 환경 변수 기반 지원 프로토콜 버전 목록을 구성한다.
# - 입력: MCP_SUPPORTED_PROTOCOL_VERSIONS 환경 변수 (콤마 구분)
# - 출력: 지원 버전 문자열 집합
# - 에러 처리: 빈 값은 기본 목록으로 대체한다.
# - 결정론: 동일 환경 입력에 대해 안정적인 결과를 반환한다.
def _load_supported_protocol_versions() -> set[str]:
    env_value = os.getenv("MCP_SUPPORTED_PROTOCOL_VERSIONS", "").strip()
    if not env_value:
        return set(DEFAULT_SUPPORTED_PROTOCOL_VERSIONS)
    return {item.strip() for item in env_value.split(",") if item.strip()}


def _origin_allowed(_: str | None) -> bool:
    return True


# [함수 설명]
# - 목적: MCP-Protocol-Version 헤더를 검증한다.
# - 입력: FastAPI headers
# - 출력: 협상된 프로토콜 버전 문자열
# - 에러 처리: 지원하지 않는 버전은 400으로 응답한다.
# - 보안: 프로토콜 버전 미스매치를 조기에 차단한다.
def _resolve_protocol_version(headers: Any) -> str:
    header_value = headers.get("MCP-Protocol-Version")
    if header_value:
        if header_value not in _load_supported_protocol_versions():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Unsupported MCP-Protocol-Version",
            )
        return header_value
    return DEFAULT_SUPPORTED_PROTOCOL_VERSIONS[0]


def _jsonrpc_response(
    request_id: Any, *, result: Any | None = None, error: Any | None = None
) -> JSONResponse:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return JSONResponse(status_code=status.HTTP_200_OK, content=payload)


def _handle_initialize(_: dict[str, Any]) -> dict[str, Any]:
    return {
        "protocolVersion": "2025-11-25",
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {
            "name": "jpa-native-sql-mcp-server",
            "version": "0.1.0",
            "description": "JPA native query extraction + Oracle-to-embedded SQL migration MCP server",
        },
        "instructions": (
            "Call jpa.list_native_queries to collect native SQL, then sql.rewrite and "
            "sql.prepare to migrate and check each statement."
        ),
    }


# [함수 설명]
# - 목적: MCP 도구 목록을 반환한다.
# - 입력: 없음
# - 출력: 도구별 name/description/inputSchema를 담은 tools/list 결과
# - 결정론: TOOLS 선언 순서대로 반환한다.
# - 보안: 도구 메타데이터만 노출한다.
def _handle_tools_list() -> dict[str, Any]:
    return {
        "tools": [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.request_model.model_json_schema(by_alias=True),
            }
            for tool in TOOLS
        ]
    }


def _build_tool_result(
    summary: str,
    structured_content: dict[str, Any] | None,
    *,
    is_error: bool = False,
) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": summary}],
        "structuredContent": structured_content or {},
        "isError": is_error,
    }


def _format_validation_error(exc: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
        for error in exc.errors()
    ]
    return "; ".join(problems)


# [함수 설명]
# - 목적: tools/call 요청을 처리한다.
# - 입력: params 딕셔너리 (name, arguments)
# - 출력: CallToolResult 딕셔너리
# - 에러 처리: 입력 검증 실패/루트 탐색 실패/기타 예외는 isError로 반환한다.
# - 결정론: 동일 입력에 대해 동일 결과를 반환한다.
# - 보안: 요약 텍스트에는 개수 정보만 담고 SQL 원문은 넣지 않는다.
def _handle_tools_call(params: dict[str, Any]) -> dict[str, Any]:
    name = params.get("name")
    arguments = params.get("arguments")
    if not name:
        return _build_tool_result("Tool name is required.", None, is_error=True)
    tool = TOOLS_BY_NAME.get(name)
    if tool is None:
        return _build_tool_result(f"Unknown tool: {name}.", None, is_error=True)
    if not isinstance(arguments, dict):
        return _build_tool_result("Tool arguments must be an object.", None, is_error=True)
    try:
        request_model = tool.request_model.model_validate(arguments)
        result = tool.handler(request_model)
        payload = result.model_dump(by_alias=True, exclude_unset=True)
        return _build_tool_result(tool.summarize(payload), payload, is_error=False)
    except ValidationError as exc:
        return _build_tool_result(
            f"Invalid arguments: {_format_validation_error(exc)}.", None, is_error=True
        )
    except HTTPException as exc:
        return _build_tool_result(f"Tool execution failed: {exc.detail}.", None, is_error=True)
    except Exception as exc:  # noqa: BLE001 - tool errors returned via isError
        logger.exception("tools/call failed: tool=%s", name)
        return _build_tool_result(f"Tool execution failed: {exc}.", None, is_error=True)


# [함수 설명]
# - 목적: Streamable HTTP MCP POST 요청을 처리한다.
# - 입력: JSON-RPC 메시지 객체
# - 출력: JSON-RPC 응답 또는 202 상태
# - 에러 처리: 잘못된 요청은 400으로 응답한다.
# - 보안: Origin/프로토콜 버전 검증을 수행한다.
@router.post("/mcp")
async def mcp_post(request: Request) -> Response:
    origin = request.headers.get("origin")
    if not _origin_allowed(origin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Origin not allowed")
    _resolve_protocol_version(request.headers)

    try:
        payload = await request.json()
    except Exception as exc:  # noqa: BLE001 - request validation
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        ) from exc

    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON-RPC payload",
        )

    method = payload.get("method")
    if method == "notifications/initialized":
        return Response(status_code=status.HTTP_202_ACCEPTED)

    request_id = payload.get("id")
    if method is None or request_id is None:
        return Response(status_code=status.HTTP_202_ACCEPTED)

    params = payload.get("params") or {}
    if not isinstance(params, dict):
        return _jsonrpc_response(
            request_id,
            error={"code": -32602, "message": "Invalid params"},
        )

    if method == "initialize":
        return _jsonrpc_response(request_id, result=_handle_initialize(params))
    if method == "tools/list":
        return _jsonrpc_response(request_id, result=_handle_tools_list())
    if method == "tools/call":
        return _jsonrpc_response(
            request_id, result=await run_in_threadpool(_handle_tools_call, params)
        )
    if method == "ping":
        return _jsonrpc_response(request_id, result={})

    return _jsonrpc_response(
        request_id,
        error={"code": -32601, "message": f"Method not found: {method}"},
    )


@router.get("/mcp")
def mcp_get() -> Response:
    return Response(status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
