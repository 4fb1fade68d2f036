# [파일 설명]
# - 목적: 테스트 실행 환경을 공통으로 준비한다.
# - 제공 기능: 저장소 루트를 import 경로에 추가하고 리포트 파일 경로를 임시 디렉터리로 격리한다.
# - 입력/출력: pytest 픽스처로 동작하며 별도 출력은 없다.
# - 주의 사항: 테스트가 작업 디렉터리에 prepare-report.csv를 남기지 않도록 한다.
# - 연관 모듈: app.services.prepare_report와 연동된다.
from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


@pytest.fixture(autouse=True)
def isolated_report_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    report_path = tmp_path / "reports" / "prepare-report.csv"
    monkeypatch.setenv("MCP_PREPARE_REPORT_PATH", str(report_path))
    return report_path
