"""Atomic file writing utilities."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any

import pandas as pd


def _tmp_path(dest: Path) -> Path:
    """Return a temp path next to `dest`, unique per process and thread."""
    return dest.with_name(f".{dest.name}.{os.getpid()}.{threading.get_ident()}.tmp")


def _discard(tmp: Path) -> None:
    if tmp.exists():
        tmp.unlink()


def atomic_write_parquet(df: pd.DataFrame, dest: Path) -> None:
    """Write `df` to parquet so that readers only ever see a complete file."""
    tmp = _tmp_path(dest)
    tmp.parent.mkdir(parents=True, exist_ok=True)

    try:
        df.to_parquet(tmp, index=False)
        os.replace(tmp, dest)
    except Exception as exc:
        _discard(tmp)
        raise RuntimeError(f"Failed to atomically write parquet: {dest}") from exc


def atomic_write_json(payload: dict[str, Any], dest: Path) -> None:
    """Write a JSON document atomically."""
    tmp = _tmp_path(dest)
    tmp.parent.mkdir(parents=True, exist_ok=True)

    try:
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        os.replace(tmp, dest)
    except Exception as exc:
        _discard(tmp)
        raise RuntimeError(f"Failed to atomically write json: {dest}") from exc
