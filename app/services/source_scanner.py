from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from app.services.query_extractor import QueryItem, extract_file

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 15
DEFAULT_INCLUDE_GLOBS: tuple[str, ...] = ("**/*.java", "**/*.kt")
DEFAULT_SKIPPED_DIRECTORY_NAMES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".idea",
        ".vscode",
        ".gradle",
        ".mvn",
        "node_modules",
        "target",
        "build",
        "out",
        "bin",
        "dist",
        "tmp",
        "logs",
        "__pycache__",
    }
)


class RootScanError(RuntimeError):
    pass


@dataclass(frozen=True)
class ScanError:
    file: str
    message: str

    def render(self) -> str:
        return f"Failed to read '{self.file}': {self.message}"


@dataclass(frozen=True)
class FileScanResult:
    file: str
    items: tuple[QueryItem, ...] = field(default_factory=tuple)
    error: ScanError | None = None


def load_max_workers() -> int:
    env_value = os.getenv("MCP_SCAN_MAX_WORKERS", "").strip()
    if not env_value:
        return DEFAULT_MAX_WORKERS
    try:
        value = int(env_value)
    except ValueError:
        logger.warning("MCP_SCAN_MAX_WORKERS is not an integer: %s", env_value)
        return DEFAULT_MAX_WORKERS
    return value if value >= 1 else DEFAULT_MAX_WORKERS


def scan_roots(
    roots: Sequence[str],
    include_globs: Sequence[str] | None = None,
    exclude_globs: Sequence[str] | None = None,
    *,
    collapse: bool = False,
    max_workers: int | None = None,
) -> list[FileScanResult]:
    """Extract native queries from every matching file under each root.

    Roots are processed one after another; the files of a root are handed to
    a bounded thread pool and the call blocks until all of them are done.
    Unreadable files and other per-file failures become
    ``FileScanResult.error``. A root that is a regular file is scanned as a
    single candidate. A failing directory walk raises ``RootScanError``.
    """
    includes = [glob for glob in include_globs or [] if glob]
    using_default_includes = not includes or tuple(includes) == DEFAULT_INCLUDE_GLOBS
    if using_default_includes:
        includes = list(DEFAULT_INCLUDE_GLOBS)
    excludes = [glob for glob in exclude_globs or [] if glob]
    cap = max_workers or load_max_workers()

    results: list[FileScanResult] = []
    for root_value in roots:
        root = Path(_to_system_separators(root_value))
        if not root.exists():
            logger.info("scan_roots: skipping missing root=%s", root)
            continue
        base = root
        if root.is_file():
            base = root.parent
            files = [root] if should_include(root.name, includes, excludes) else []
        else:
            files = collect_candidate_files(root, includes, excludes, using_default_includes)
        if not files:
            continue
        workers = min(cap, len(files))
        logger.info("scan_roots: root=%s files=%s workers=%s", root, len(files), workers)
        executor = ThreadPoolExecutor(max_workers=workers)
        try:
            futures = [
                executor.submit(scan_file, base, path, collapse=collapse) for path in files
            ]
            results.extend(future.result() for future in futures)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    error_count = sum(1 for result in results if result.error is not None)
    item_count = sum(len(result.items) for result in results)
    logger.info(
        "scan_roots: roots=%s files=%s items=%s errors=%s",
        len(roots),
        len(results),
        item_count,
        error_count,
    )
    return results


def scan(
    roots: Sequence[str],
    include_globs: Sequence[str] | None = None,
    exclude_globs: Sequence[str] | None = None,
    *,
    collapse: bool = False,
) -> tuple[list[QueryItem], list[ScanError]]:
    items: list[QueryItem] = []
    errors: list[ScanError] = []
    for result in scan_roots(roots, include_globs, exclude_globs, collapse=collapse):
        items.extend(result.items)
        if result.error is not None:
            errors.append(result.error)
    return items, errors


def scan_file(root: Path, path: Path, *, collapse: bool = False) -> FileScanResult:
    relative = _to_unix_separators(str(path.relative_to(root)))
    try:
        items = extract_file(path, relative, collapse=collapse)
    except OSError as exc:
        reason = exc.strerror or str(exc) or type(exc).__name__
        logger.warning("scan_file: read failed file=%s error=%s", relative, reason)
        return FileScanResult(file=relative, error=ScanError(file=relative, message=reason))
    except Exception as exc:  # noqa: BLE001 - worker failures become per-file errors
        reason = str(exc) or type(exc).__name__
        logger.warning(
            "scan_file: extraction failed file=%s error=%s", relative, type(exc).__name__
        )
        return FileScanResult(file=relative, error=ScanError(file=relative, message=reason))
    return FileScanResult(file=relative, items=tuple(items))


def collect_candidate_files(
    root: Path,
    includes: Sequence[str],
    excludes: Sequence[str],
    prune_default_directories: bool,
) -> list[Path]:
    def fail(error: OSError) -> None:
        raise RootScanError(f"Failed to scan root: {root}: {error}") from error

    files: list[Path] = []
    for directory, dir_names, file_names in os.walk(root, onerror=fail):
        if prune_default_directories:
            dir_names[:] = [
                name for name in dir_names if name.lower() not in DEFAULT_SKIPPED_DIRECTORY_NAMES
            ]
        dir_names.sort()
        for file_name in sorted(file_names):
            path = Path(directory) / file_name
            if not path.is_file():
                continue
            relative = _to_unix_separators(str(path.relative_to(root)))
            if should_include(relative, includes, excludes):
                files.append(path)
    return files


def should_include(relative_path: str, includes: Iterable[str], excludes: Iterable[str]) -> bool:
    includes = list(includes)
    if includes and not any(matches_glob(relative_path, glob) for glob in includes):
        return False
    return not any(matches_glob(relative_path, glob) for glob in excludes)


def matches_glob(relative_path: str, glob: str) -> bool:
    return _compile_glob(_to_unix_separators(glob)).fullmatch(relative_path) is not None


@lru_cache(maxsize=256)
def _compile_glob(glob: str) -> re.Pattern[str]:
    parts: list[str] = []
    index = 0
    in_group = False
    while index < len(glob):
        char = glob[index]
        if glob.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
            continue
        if glob.startswith("**", index):
            parts.append(".*")
            index += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "{" and not in_group:
            parts.append("(?:")
            in_group = True
        elif char == "}" and in_group:
            parts.append(")")
            in_group = False
        elif char == "," and in_group:
            parts.append("|")
        elif char == "[":
            close = glob.find("]", index + 1)
            if close == -1:
                parts.append(re.escape(char))
            else:
                body = glob[index + 1 : close]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                index = close + 1
                continue
        else:
            parts.append(re.escape(char))
        index += 1
    if in_group:
        parts.append(")")
    return re.compile("".join(parts))


def _to_unix_separators(path: str) -> str:
    return path.replace("\\", "/")


def _to_system_separators(path: str) -> str:
    if os.sep == "\\":
        return path.replace("/", "\\")
    return path.replace("\\", "/")
