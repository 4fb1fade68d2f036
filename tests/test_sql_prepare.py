from pathlib import Path

from app.services.sql_prepare import (
    SYNTAX_ERROR_CODE,
    SYNTAX_ERROR_SQL_STATE,
    prepare_sql,
    to_diagnostics,
)

BROKEN_SQL = "SELECT * FROM t WHERE (id = 1"


def test_prepare_accepts_parameterized_sql() -> None:
    result = prepare_sql("SELECT * FROM t WHERE id = ?")

    assert result == {"ok": True, "diagnostics": None}


def test_prepare_reports_syntax_error_position() -> None:
    result = prepare_sql(BROKEN_SQL)

    assert result["ok"] is False
    diagnostics = result["diagnostics"]
    assert diagnostics["sqlState"] == SYNTAX_ERROR_SQL_STATE
    assert diagnostics["errorCode"] == SYNTAX_ERROR_CODE
    assert diagnostics["line"] == 1
    assert isinstance(diagnostics["column"], int)
    assert "\x1b" not in diagnostics["message"]


def test_prepare_uses_requested_dialect() -> None:
    result = prepare_sql("SELECT NVL(a, 0) FROM DUAL WHERE ROWNUM <= 1", dialect="oracle")

    assert result["ok"] is True


def test_prepare_skips_missing_init_scripts(tmp_path: Path) -> None:
    schema = tmp_path / "schema.sql"
    schema.write_text("CREATE TABLE t (id INT);", encoding="utf-8")

    result = prepare_sql(
        "SELECT id FROM t",
        init_sql_paths=[str(tmp_path / "missing.sql"), str(schema)],
    )

    assert result["ok"] is True


def test_prepare_reports_broken_init_script(tmp_path: Path) -> None:
    schema = tmp_path / "schema.sql"
    schema.write_text(BROKEN_SQL, encoding="utf-8")

    result = prepare_sql("SELECT 1", init_sql_paths=[str(schema)])

    assert result["ok"] is False
    assert result["diagnostics"]["message"].startswith(f"{schema}: ")


def test_to_diagnostics_reads_position_from_message() -> None:
    diagnostics = to_diagnostics(ValueError("Syntax error at line 3, column 7 near FROM"))

    assert diagnostics["line"] == 3
    assert diagnostics["column"] == 7
    assert diagnostics["message"] == "Syntax error at line 3, column 7 near FROM"
