#!/usr/bin/env python3
"""Best-effort removal of state left behind by previous runs.

Nothing in here raises: a missing mount, socket or directory is the normal
case on a clean machine, so every failure is collected as a warning.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, List, Optional

from sealfs_acceptance.automation.config import benchmark_workdir, expand_path, mount_point
from sealfs_acceptance.automation.process_utils import log_progress, run_relaxed

NODE_DIR_PATTERNS = ("database*", "storage*")


def _unlink(path: Path, warnings: List[str]) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        warnings.append(f"remove {path}: {exc}")


def _rmtree(path: Path, privileged_remove: List[str], warnings: List[str]) -> None:
    if not path.exists() and not path.is_symlink():
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return
    except PermissionError as exc:
        if not privileged_remove:
            warnings.append(f"remove {path}: {exc}")
            return
    except OSError as exc:
        warnings.append(f"remove {path}: {exc}")
        return
    # Leftovers written by root-owned processes (FUSE, mpirun under sudo).
    warning = run_relaxed("privileged remove", [*privileged_remove, str(path)])
    if warning:
        warnings.append(warning)


def reset_environment(cfg: Dict, base_path: Path, artifact_dir: Optional[Path] = None) -> List[str]:
    paths = cfg["paths"]
    warnings: List[str] = []
    mnt = mount_point(cfg)
    privileged_remove = list(paths.get("privileged_remove") or [])

    umount_cmd = list(paths.get("umount") or [])
    if umount_cmd:
        warning = run_relaxed("umount", [*umount_cmd, str(mnt)])
        if warning:
            warnings.append(warning)

    for key in ("socket", "index"):
        if paths.get(key):
            _unlink(expand_path(paths[key]), warnings)

    _rmtree(benchmark_workdir(cfg), privileged_remove, warnings)
    if base_path.is_dir():
        for pattern in NODE_DIR_PATTERNS:
            for stale in sorted(base_path.glob(pattern)):
                _rmtree(stale, privileged_remove, warnings)

    try:
        mnt.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        warnings.append(f"mkdir {mnt}: {exc}")

    for warning in warnings:
        log_progress(artifact_dir, "reset", f"ignored: {warning}")
    log_progress(artifact_dir, "reset", f"environment reset ({len(warnings)} warnings)")
    return warnings
