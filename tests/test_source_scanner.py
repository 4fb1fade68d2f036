from pathlib import Path

import pytest

from app.services import source_scanner
from app.services.source_scanner import (
    RootScanError,
    matches_glob,
    scan,
    scan_roots,
    should_include,
)


def _write_repository(path: Path, type_name: str, method_name: str = "load") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"interface {type_name} {{\n"
        f'    @Query(value = "SELECT * FROM {type_name.lower()} WHERE id = ?1", nativeQuery = true)\n'
        f"    Object {method_name}(Long id);\n"
        "}\n",
        encoding="utf-8",
    )


def test_matches_glob_double_star_spans_zero_or_more_directories() -> None:
    assert matches_glob("A.java", "**/*.java")
    assert matches_glob("src/main/A.java", "**/*.java")
    assert not matches_glob("src/main/A.kt", "**/*.java")
    assert matches_glob("src/A.java", "src/*.java")
    assert not matches_glob("src/main/A.java", "src/*.java")
    assert matches_glob("src/main/A.kt", "src/**/*.{java,kt}")
    assert matches_glob("gen/B1.java", "gen/B?.java")


def test_should_include_applies_excludes_after_includes() -> None:
    includes = ["**/*.java"]
    excludes = ["**/generated/**"]

    assert should_include("src/A.java", includes, excludes)
    assert not should_include("src/generated/A.java", includes, excludes)
    assert not should_include("README.md", includes, excludes)
    assert should_include("README.md", [], [])


def test_scan_collects_java_and_kotlin_sources(tmp_path: Path) -> None:
    _write_repository(tmp_path / "src" / "UserRepository.java", "UserRepository")
    _write_repository(tmp_path / "src" / "OrderRepository.kt", "OrderRepository")
    (tmp_path / "src" / "notes.txt").write_text("@Query(nativeQuery = true)", encoding="utf-8")

    items, errors = scan([str(tmp_path)])

    assert errors == []
    assert sorted(item.file for item in items) == [
        "src/OrderRepository.kt",
        "src/UserRepository.java",
    ]


def test_scan_prunes_build_directories_with_default_globs(tmp_path: Path) -> None:
    _write_repository(tmp_path / "src" / "UserRepository.java", "UserRepository")
    _write_repository(tmp_path / "target" / "UserRepository.java", "UserRepository")
    _write_repository(tmp_path / ".git" / "Stale.java", "Stale")

    items, _ = scan([str(tmp_path)])

    assert [item.file for item in items] == ["src/UserRepository.java"]


def test_scan_with_custom_globs_keeps_build_directories(tmp_path: Path) -> None:
    _write_repository(tmp_path / "build" / "Generated.java", "Generated")
    _write_repository(tmp_path / "src" / "UserRepository.java", "UserRepository")

    items, _ = scan([str(tmp_path)], ["build/**/*.java"])

    assert [item.file for item in items] == ["build/Generated.java"]


def test_scan_applies_exclude_globs(tmp_path: Path) -> None:
    _write_repository(tmp_path / "src" / "UserRepository.java", "UserRepository")
    _write_repository(tmp_path / "src" / "legacy" / "OldRepository.java", "OldRepository")

    items, _ = scan([str(tmp_path)], None, ["**/legacy/**"])

    assert [item.file for item in items] == ["src/UserRepository.java"]


def test_scan_records_unreadable_files_and_continues(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_repository(tmp_path / "Good.java", "Good")
    _write_repository(tmp_path / "Broken.java", "Broken")
    real_extract = source_scanner.extract_file

    def flaky_extract(path, relative_path, *, collapse=False):
        if relative_path == "Broken.java":
            raise PermissionError(13, "Permission denied")
        return real_extract(path, relative_path, collapse=collapse)

    monkeypatch.setattr(source_scanner, "extract_file", flaky_extract)

    items, errors = scan([str(tmp_path)])

    assert [item.id for item in items] == ["Good#load"]
    assert [error.render() for error in errors] == [
        "Failed to read 'Broken.java': Permission denied"
    ]


def test_scan_accepts_file_root(tmp_path: Path) -> None:
    _write_repository(tmp_path / "src" / "UserRepository.java", "UserRepository")
    (tmp_path / "notes.txt").write_text("@Query(nativeQuery = true)", encoding="utf-8")

    results = scan_roots(
        [str(tmp_path / "src" / "UserRepository.java"), str(tmp_path / "notes.txt")]
    )

    assert [result.file for result in results] == ["UserRepository.java"]
    assert [item.id for item in results[0].items] == ["UserRepository#load"]
    assert results[0].error is None


def test_scan_records_unexpected_worker_failures(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_repository(tmp_path / "Good.java", "Good")
    _write_repository(tmp_path / "Odd.java", "Odd")
    real_extract = source_scanner.extract_file

    def failing_extract(path, relative_path, *, collapse=False):
        if relative_path == "Odd.java":
            raise ValueError("unexpected token")
        return real_extract(path, relative_path, collapse=collapse)

    monkeypatch.setattr(source_scanner, "extract_file", failing_extract)

    items, errors = scan([str(tmp_path)])

    assert [item.id for item in items] == ["Good#load"]
    assert [error.render() for error in errors] == [
        "Failed to read 'Odd.java': unexpected token"
    ]


def test_scan_skips_missing_roots(tmp_path: Path) -> None:
    _write_repository(tmp_path / "Repo.java", "Repo")

    results = scan_roots([str(tmp_path / "missing"), str(tmp_path)])

    assert [result.file for result in results] == ["Repo.java"]


def test_scan_raises_root_scan_error_when_walk_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_walk(top, onerror=None):
        onerror(PermissionError(13, "Permission denied", str(top)))
        return iter(())

    monkeypatch.setattr(source_scanner.os, "walk", failing_walk)

    with pytest.raises(RootScanError):
        scan_roots([str(tmp_path)])


def test_scan_respects_worker_limit_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    for index in range(5):
        _write_repository(tmp_path / f"Repo{index}.java", f"Repo{index}")
    monkeypatch.setenv("MCP_SCAN_MAX_WORKERS", "2")

    results = scan_roots([str(tmp_path)])

    assert source_scanner.load_max_workers() == 2
    assert [result.file for result in results] == [f"Repo{index}.java" for index in range(5)]
