"""Path helpers for the table store and run reports."""

from __future__ import annotations

import re
from pathlib import Path

TABLE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
PART_FILE_PATTERN = re.compile(r"^part-(\d{8})\.parquet$")
BASE_MARKER_NAME = "_base.json"


def ensure_within_root(path: Path, root: Path) -> None:
    """Ensure the given path resolves under the provided root path."""
    resolved_path = path.resolve()
    resolved_root = root.resolve()
    try:
        resolved_path.relative_to(resolved_root)
    except ValueError as exc:
        raise ValueError(f"Path escapes root: {resolved_path} (root: {resolved_root})") from exc


def build_table_dir(store_root: Path, table: str) -> Path:
    """Return the directory holding the part files of `table`."""
    if not TABLE_NAME_PATTERN.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    table_dir = store_root / table
    ensure_within_root(table_dir, store_root)
    return table_dir


def build_part_path(table_dir: Path, sequence: int) -> Path:
    """Return the path of part file number `sequence` inside `table_dir`."""
    if sequence < 0:
        raise ValueError("Part sequence must be >= 0.")
    return table_dir / f"part-{sequence:08d}.parquet"


def build_staged_part_path(table_dir: Path, sequence: int) -> Path:
    """Return where a rewritten table waits until its base marker is committed."""
    if sequence < 0:
        raise ValueError("Part sequence must be >= 0.")
    return table_dir / f"base-{sequence:08d}.parquet"


def build_base_marker_path(table_dir: Path) -> Path:
    """Return the marker naming the first live part sequence of a table."""
    return table_dir / BASE_MARKER_NAME


def list_part_files(table_dir: Path) -> list[tuple[int, Path]]:
    """Return `(sequence, path)` for every committed part file, in sequence order."""
    if not table_dir.exists():
        return []
    if not table_dir.is_dir():
        raise NotADirectoryError(f"Table path is not a directory: {table_dir}")

    parts: list[tuple[int, Path]] = []
    for path in table_dir.iterdir():
        match = PART_FILE_PATTERN.match(path.name)
        if match and path.is_file():
            parts.append((int(match.group(1)), path))
    return sorted(parts)


def build_report_path(store_root: Path, run_id: str) -> Path:
    """Return the summary report path for one pipeline run."""
    report_path = store_root / "reports" / f"{run_id}.summary.json"
    ensure_within_root(report_path, store_root)
    return report_path
