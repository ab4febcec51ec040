"""Pipeline configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

RUN_MODES = ("continue", "restart")
BAR_FILE_SUFFIXES = (".csv", ".parquet")


@dataclass(frozen=True)
class PipelineConfig:
    """Where bars come from, where derived tables go, and how writes are pooled."""

    bars_path: Path
    store_root: Path
    run_mode: str = "continue"
    writer_threads: int = 4
    writer_queue_size: int = 32
    batch_rows: int = 500


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else (base_dir / path).resolve()


def _get_required(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise KeyError(f"Missing required config key: {key}")
    return data[key]


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Read a YAML file whose top level must be a mapping."""
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")
    return raw


def load_config(path: Path) -> PipelineConfig:
    """Load and validate pipeline config from YAML."""
    raw = read_yaml_mapping(path)
    base_dir = path.resolve().parent
    writer = raw.get("writer") or {}
    if not isinstance(writer, dict):
        raise ValueError("writer must be a mapping.")

    cfg = PipelineConfig(
        bars_path=_resolve_path(str(_get_required(raw, "bars_path")), base_dir),
        store_root=_resolve_path(str(_get_required(raw, "store_root")), base_dir),
        run_mode=str(raw.get("run_mode", "continue")),
        writer_threads=int(writer.get("threads", 4)),
        writer_queue_size=int(writer.get("queue_size", 32)),
        batch_rows=int(writer.get("batch_rows", 500)),
    )
    validate_config(cfg)
    return cfg


def validate_config(cfg: PipelineConfig) -> None:
    """Validate config fields and semantic constraints."""
    if not cfg.bars_path.exists():
        raise FileNotFoundError(f"bars_path does not exist: {cfg.bars_path}")
    if not cfg.bars_path.is_file():
        raise ValueError(f"bars_path is not a file: {cfg.bars_path}")
    if cfg.bars_path.suffix.lower() not in BAR_FILE_SUFFIXES:
        raise ValueError(f"bars_path must be one of {BAR_FILE_SUFFIXES}: {cfg.bars_path}")
    if cfg.store_root.exists() and not cfg.store_root.is_dir():
        raise NotADirectoryError(f"store_root is not a directory: {cfg.store_root}")
    if cfg.run_mode not in RUN_MODES:
        raise ValueError(f"run_mode must be one of {RUN_MODES}, got {cfg.run_mode!r}.")
    if cfg.writer_threads <= 0:
        raise ValueError("writer.threads must be > 0.")
    if cfg.writer_queue_size <= 0:
        raise ValueError("writer.queue_size must be > 0.")
    if cfg.batch_rows <= 0:
        raise ValueError("writer.batch_rows must be > 0.")
