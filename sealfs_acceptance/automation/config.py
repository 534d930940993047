#!/usr/bin/env python3
"""Load the harness YAML configuration and apply overrides."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, Optional

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "io500.yaml"
ALLOWED_KEYS = {
    "log_level",
    "binaries",
    "paths",
    "manager",
    "cluster",
    "volume",
    "daemon",
    "benchmark",
    "readiness",
    "modes",
}


def deep_merge(base: Dict, extra: Dict) -> Dict:
    result = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _warn_unknown_keys(label: str, mapping: Dict) -> None:
    unknown = sorted(set(mapping.keys()) - ALLOWED_KEYS)
    if unknown:
        print(
            f"[config] warning: unrecognized top-level keys {unknown} in {label}; they will be ignored",
            file=sys.stderr,
        )


def _read_yaml(path: Path) -> Dict:
    if not path.exists():
        raise FileNotFoundError(f"harness config not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"harness config {path} must be a mapping")
    return raw


def load_config(override_path: Optional[str] = None, overrides: Optional[Dict] = None) -> Dict:
    """Defaults, then the user's YAML file, then CLI overrides."""
    cfg = _read_yaml(DEFAULT_CONFIG_PATH)
    if override_path:
        user = _read_yaml(Path(override_path))
        _warn_unknown_keys(override_path, user)
        cfg = deep_merge(cfg, user)
    if overrides:
        cfg = deep_merge(cfg, overrides)
    return cfg


def expand_path(value: str) -> Path:
    return Path(os.path.expanduser(os.path.expandvars(str(value))))


def mount_point(cfg: Dict) -> Path:
    return expand_path(cfg["paths"]["mount_point"])


def benchmark_workdir(cfg: Dict) -> Path:
    return expand_path(cfg["benchmark"]["workdir"])
