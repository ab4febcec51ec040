"""Row sinks for the derived tables: an in-memory store and a parquet directory store."""

from __future__ import annotations

import abc
import json
import os
import threading
from collections.abc import Callable
from pathlib import Path

import pandas as pd

from core.io_atomic import atomic_write_json, atomic_write_parquet
from core.logging import get_logger
from core.paths import (
    build_base_marker_path,
    build_part_path,
    build_staged_part_path,
    build_table_dir,
    list_part_files,
)

LOGGER = get_logger(__name__)

Predicate = Callable[[pd.DataFrame], pd.Series]


def _sort_rows(frame: pd.DataFrame) -> pd.DataFrame:
    keys = [column for column in ("time", "delta", "name") if column in frame.columns]
    if not keys or frame.empty:
        return frame.reset_index(drop=True)
    return frame.sort_values(keys, kind="mergesort").reset_index(drop=True)


class TableStore(abc.ABC):
    """Appendable, queryable tables keyed by `time` (and `delta` where present).

    Subclasses provide chunk storage; row semantics live here. Appends may run
    concurrently from writer threads; structural changes (replace, update,
    delete, truncate) are serialized by the store lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abc.abstractmethod
    def _load(self, table: str) -> pd.DataFrame:
        """Every row of `table` in arbitrary order; empty frame when absent."""

    @abc.abstractmethod
    def _append_chunk(self, table: str, frame: pd.DataFrame) -> None:
        ...

    @abc.abstractmethod
    def _overwrite(self, table: str, frame: pd.DataFrame) -> None:
        ...

    @abc.abstractmethod
    def truncate(self, table: str) -> None:
        """Drop every row of `table`."""

    def read(self, table: str, *, after: int | None = None, delta: int | None = None) -> pd.DataFrame:
        """Rows sorted by key, optionally newer than `after` and for one `delta` only."""
        frame = self._load(table)
        if frame.empty:
            return frame
        if after is not None:
            frame = frame.loc[frame["time"] > after]
        if delta is not None:
            frame = frame.loc[frame["delta"] == delta]
        return _sort_rows(frame)

    def append(self, table: str, frame: pd.DataFrame) -> int:
        if frame.empty:
            return 0
        self._append_chunk(table, frame.reset_index(drop=True))
        return len(frame)

    def replace(self, table: str, frame: pd.DataFrame) -> None:
        """Drop and rebuild `table` from `frame`."""
        with self._lock:
            self._overwrite(table, _sort_rows(frame))

    def update(self, table: str, frame: pd.DataFrame, key: str = "time") -> int:
        """Overwrite the columns of `frame` for the rows matching its `key` values."""
        if frame.empty:
            return 0
        with self._lock:
            current = self._load(table)
            if current.empty:
                raise KeyError(f"Cannot update empty table: {table}")
            indexed = current.set_index(key)
            updates = frame.set_index(key)
            unknown = updates.index.difference(indexed.index)
            if len(unknown):
                raise KeyError(f"Unknown {key} values in update of {table}: {list(unknown[:5])}")
            for column in updates.columns:
                indexed.loc[updates.index, column] = updates[column]
            self._overwrite(table, _sort_rows(indexed.reset_index()))
        return len(updates)

    def delete_where(self, table: str, predicate: Predicate) -> int:
        """Delete rows for which `predicate(frame)` is true; return how many."""
        with self._lock:
            current = self._load(table)
            if current.empty:
                return 0
            mask = predicate(current).astype(bool)
            removed = int(mask.sum())
            if removed:
                self._overwrite(table, _sort_rows(current.loc[~mask]))
        if removed:
            LOGGER.info("Rows deleted | table=%s rows=%d", table, removed)
        return removed

    def max_time(self, table: str, delta: int | None = None) -> int | None:
        """High-water-mark of `table`, or None when it has no rows."""
        frame = self._load(table)
        if frame.empty:
            return None
        if delta is not None:
            frame = frame.loc[frame["delta"] == delta]
            if frame.empty:
                return None
        return int(frame["time"].max())

    def count(self, table: str) -> int:
        return len(self._load(table))


class MemoryTableStore(TableStore):
    """Keeps every table as a list of frames; handy for tests and dry runs."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: dict[str, list[pd.DataFrame]] = {}

    def _load(self, table: str) -> pd.DataFrame:
        with self._lock:
            chunks = list(self._chunks.get(table, []))
        if not chunks:
            return pd.DataFrame()
        return pd.concat(chunks, ignore_index=True)

    def _append_chunk(self, table: str, frame: pd.DataFrame) -> None:
        with self._lock:
            self._chunks.setdefault(table, []).append(frame.copy())

    def _overwrite(self, table: str, frame: pd.DataFrame) -> None:
        with self._lock:
            self._chunks[table] = [frame.copy()] if not frame.empty else []

    def truncate(self, table: str) -> None:
        with self._lock:
            self._chunks.pop(table, None)


class ParquetTableStore(TableStore):
    """One directory per table under `root`, each append committed as an atomic part file.

    Rewrites (replace, update, delete, truncate) stage the new content under a
    name the loader ignores, then atomically move the table's base marker past
    every older part. Parts below the base are dead even if a crash left them
    on disk, so a rewrite never shows up next to the rows it replaced.
    """

    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._next_part: dict[str, int] = {}

    @staticmethod
    def _read_base(table_dir: Path) -> int | None:
        marker = build_base_marker_path(table_dir)
        if not marker.exists():
            return None
        payload = json.loads(marker.read_text(encoding="utf-8"))
        return int(payload["base"])

    def _allocate_sequence(self, table: str) -> int:
        table_dir = build_table_dir(self.root, table)
        with self._lock:
            if table not in self._next_part:
                parts = list_part_files(table_dir)
                base = self._read_base(table_dir)
                candidates = [parts[-1][0] + 1 if parts else 0, base + 1 if base is not None else 0]
                self._next_part[table] = max(candidates)
            sequence = self._next_part[table]
            self._next_part[table] = sequence + 1
        return sequence

    def _live_paths(self, table_dir: Path) -> list[Path]:
        base = self._read_base(table_dir)
        if base is None:
            return [path for _, path in list_part_files(table_dir)]
        paths = [path for sequence, path in list_part_files(table_dir) if sequence >= base]
        staged = build_staged_part_path(table_dir, base)
        if staged.exists() and not build_part_path(table_dir, base).exists():
            paths.insert(0, staged)
        return paths

    def _load(self, table: str) -> pd.DataFrame:
        with self._lock:
            paths = self._live_paths(build_table_dir(self.root, table))
            if not paths:
                return pd.DataFrame()
            return pd.concat([pd.read_parquet(path) for path in paths], ignore_index=True)

    def _append_chunk(self, table: str, frame: pd.DataFrame) -> None:
        table_dir = build_table_dir(self.root, table)
        atomic_write_parquet(frame, build_part_path(table_dir, self._allocate_sequence(table)))

    def _overwrite(self, table: str, frame: pd.DataFrame) -> None:
        table_dir = build_table_dir(self.root, table)
        with self._lock:
            base = self._allocate_sequence(table)
            staged = build_staged_part_path(table_dir, base)
            if not frame.empty:
                atomic_write_parquet(frame, staged)
            else:
                staged.unlink(missing_ok=True)
            atomic_write_json({"base": base}, build_base_marker_path(table_dir))
            self._settle(table_dir, base)

    @staticmethod
    def _settle(table_dir: Path, base: int) -> None:
        """Promote the staged part of `base` and remove parts and stages it superseded."""
        staged = build_staged_part_path(table_dir, base)
        if staged.exists():
            os.replace(staged, build_part_path(table_dir, base))
        for sequence, path in list_part_files(table_dir):
            if sequence < base:
                path.unlink()
        for path in table_dir.glob("base-*.parquet"):
            path.unlink()

    def truncate(self, table: str) -> None:
        table_dir = build_table_dir(self.root, table)
        with self._lock:
            if not table_dir.exists():
                return
            self._overwrite(table, pd.DataFrame())
