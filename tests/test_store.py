"""Tests for the memory and parquet table stores."""

from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from barstats import store as store_module
from barstats.store import MemoryTableStore, ParquetTableStore, TableStore


@pytest.fixture(params=["memory", "parquet"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> TableStore:
    if request.param == "memory":
        return MemoryTableStore()
    return ParquetTableStore(tmp_path / "store")


def _rows(times: list[int], delta: int = 0) -> pd.DataFrame:
    return pd.DataFrame({"time": times, "delta": [delta] * len(times), "value": [float(t) for t in times]})


def test_append_read_sorted_and_max_time(store: TableStore) -> None:
    assert store.max_time("raw") is None
    assert store.count("raw") == 0

    store.append("raw", _rows([3, 4]))
    store.append("raw", _rows([1, 2]))
    store.append("raw", _rows([1, 2, 3, 4, 5], delta=1))

    frame = store.read("raw")
    assert frame[["time", "delta"]].values.tolist()[:3] == [[1, 0], [1, 1], [2, 0]]
    assert store.count("raw") == 9
    assert store.max_time("raw") == 5
    assert store.max_time("raw", delta=0) == 4
    assert store.max_time("raw", delta=7) is None
    assert store.read("raw", after=3, delta=0)["time"].tolist() == [4]


def test_delete_where_update_and_replace(store: TableStore) -> None:
    store.append("source", pd.DataFrame({"time": [1, 2, 3], "pivot": [0, 0, 0], "label": ["", "", ""]}))

    assert store.delete_where("source", lambda frame: frame["time"] >= 3) == 1
    assert store.max_time("source") == 2

    updated = store.update("source", pd.DataFrame({"time": [2], "pivot": [1], "label": ["0"]}))
    assert updated == 1
    frame = store.read("source")
    assert frame["pivot"].tolist() == [0, 1]
    assert frame["label"].tolist() == ["", "0"]

    with pytest.raises(KeyError, match="Unknown time"):
        store.update("source", pd.DataFrame({"time": [9], "pivot": [1]}))

    store.replace("ranges", pd.DataFrame({"name": ["b", "a"], "delta": [0, 0], "average": [1.0, 2.0]}))
    store.replace("ranges", pd.DataFrame({"name": ["c"], "delta": [0], "average": [3.0]}))
    assert store.read("ranges")["name"].tolist() == ["c"]


def test_truncate_empties_table(store: TableStore) -> None:
    store.append("normalized", _rows([1, 2]))
    store.truncate("normalized")
    assert store.count("normalized") == 0
    assert store.max_time("normalized") is None
    store.append("normalized", _rows([7]))
    assert store.read("normalized")["time"].tolist() == [7]


def test_parquet_store_persists_across_instances(tmp_path: Path) -> None:
    root = tmp_path / "store"
    first = ParquetTableStore(root)
    first.append("raw", _rows([1, 2]))
    first.append("raw", _rows([3]))

    parts = sorted(path.name for path in (root / "raw").iterdir())
    assert parts == ["part-00000000.parquet", "part-00000001.parquet"]

    second = ParquetTableStore(root)
    second.append("raw", _rows([4]))
    assert second.read("raw")["time"].tolist() == [1, 2, 3, 4]
    assert (root / "raw" / "part-00000002.parquet").exists()

    with pytest.raises(ValueError, match="Invalid table name"):
        second.append("../escape", _rows([1]))


def test_parquet_rewrite_interrupted_after_commit_never_duplicates(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    root = tmp_path / "store"
    store = ParquetTableStore(root)
    store.append("source", _rows([1, 2]))
    store.append("source", _rows([3]))

    # the rewrite is committed, but old parts and the staged file are left behind
    monkeypatch.setattr(ParquetTableStore, "_settle", staticmethod(lambda table_dir, base: None))
    store.replace("source", _rows([1, 2, 3]).assign(value=9.0))
    monkeypatch.undo()

    reopened = ParquetTableStore(root)
    frame = reopened.read("source")
    assert frame["time"].tolist() == [1, 2, 3]
    assert frame["value"].tolist() == [9.0, 9.0, 9.0]

    reopened.append("source", _rows([4]))
    assert reopened.read("source")["time"].tolist() == [1, 2, 3, 4]

    reopened.delete_where("source", lambda rows: rows["time"] == 4)
    assert reopened.read("source")["time"].tolist() == [1, 2, 3]
    assert sorted(path.name for path in (root / "source").glob("*.parquet")) == ["part-00000004.parquet"]


def test_parquet_rewrite_interrupted_before_commit_keeps_old_rows(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    root = tmp_path / "store"
    store = ParquetTableStore(root)
    store.append("ranges", _rows([1, 2]))

    def lose_marker(payload: dict, dest: Path) -> None:
        raise OSError("power loss")

    monkeypatch.setattr(store_module, "atomic_write_json", lose_marker)
    with pytest.raises(OSError, match="power loss"):
        store.replace("ranges", _rows([5]))
    with pytest.raises(OSError, match="power loss"):
        store.truncate("ranges")
    monkeypatch.undo()

    reopened = ParquetTableStore(root)
    assert reopened.read("ranges")["time"].tolist() == [1, 2]
    reopened.truncate("ranges")
    assert reopened.count("ranges") == 0
    assert list((root / "ranges").glob("*.parquet")) == []
