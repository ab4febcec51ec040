"""Tests for pipeline config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import load_config


def _write_config(tmp_path: Path, body: str) -> Path:
    (tmp_path / "bars.csv").write_text("time,open,high,low,close\n1,1,1,1,1\n", encoding="utf-8")
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


def test_load_config_resolves_relative_paths(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        "bars_path: bars.csv\nstore_root: store\nwriter:\n  threads: 2\n  queue_size: 8\n  batch_rows: 50\n",
    )

    cfg = load_config(path)
    assert cfg.bars_path == (tmp_path / "bars.csv").resolve()
    assert cfg.store_root == (tmp_path / "store").resolve()
    assert cfg.run_mode == "continue"
    assert (cfg.writer_threads, cfg.writer_queue_size, cfg.batch_rows) == (2, 8, 50)


def test_load_config_rejects_bad_values(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="run_mode"):
        load_config(_write_config(tmp_path, "bars_path: bars.csv\nstore_root: store\nrun_mode: resume\n"))
    with pytest.raises(ValueError, match="threads"):
        load_config(_write_config(tmp_path, "bars_path: bars.csv\nstore_root: store\nwriter: {threads: 0}\n"))
    with pytest.raises(KeyError, match="store_root"):
        load_config(_write_config(tmp_path, "bars_path: bars.csv\n"))
    with pytest.raises(FileNotFoundError, match="bars_path"):
        load_config(_write_config(tmp_path, "bars_path: nope.csv\nstore_root: store\n"))
