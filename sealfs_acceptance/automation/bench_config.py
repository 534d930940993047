#!/usr/bin/env python3
"""Stage the IO500 working directory and write its minimal config."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict

from sealfs_acceptance.automation.config import benchmark_workdir, expand_path, mount_point
from sealfs_acceptance.automation.process_utils import ProcessLaunchError, log_progress, run_step

STAGE_STRATEGIES = ("copy", "clone", "none")


def stage_benchmark(cfg: Dict, artifact_dir: Path) -> Path:
    bench = cfg["benchmark"]
    workdir = benchmark_workdir(cfg)
    strategy = str(bench.get("stage", "copy"))
    if strategy not in STAGE_STRATEGIES:
        raise ValueError(f"unknown benchmark stage strategy {strategy}")
    if strategy == "copy":
        source = expand_path(bench["source"])
        if not source.is_dir():
            raise ProcessLaunchError(f"self-hosted benchmark not found: {source}")
        try:
            shutil.copytree(source, workdir, symlinks=True, dirs_exist_ok=True)
        except OSError as exc:
            # shutil.Error is an OSError
            raise ProcessLaunchError(f"could not copy benchmark {source} to {workdir}: {exc}") from exc
    elif strategy == "clone":
        run_step("io500-clone", ["git", "clone", str(bench["repo"]), str(workdir)], log_path=artifact_dir / "io500_clone.log")
        run_step("io500-prepare", ["./prepare.sh"], log_path=artifact_dir / "io500_prepare.log", cwd=workdir)
    else:
        try:
            workdir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProcessLaunchError(f"could not create benchmark workdir {workdir}: {exc}") from exc
    log_progress(artifact_dir, "benchmark", f"staged {workdir} via {strategy}")
    return workdir


def render_benchmark_config(datadir: str, stonewall_time: int) -> str:
    lines = [
        "[global]",
        f"datadir = {datadir}",
        "",
        "[debug]",
        f"stonewall-time = {stonewall_time}",
    ]
    return "\n".join(lines) + "\n"


def write_benchmark_config(cfg: Dict, artifact_dir: Path) -> Path:
    bench = cfg["benchmark"]
    cfg_path = benchmark_workdir(cfg) / bench.get("config_name", "config-minimal.ini")
    text = render_benchmark_config(str(mount_point(cfg)), int(bench.get("stonewall_time", 2)))
    try:
        cfg_path.parent.mkdir(parents=True, exist_ok=True)
        cfg_path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ProcessLaunchError(f"could not write benchmark config {cfg_path}: {exc}") from exc
    log_progress(artifact_dir, "benchmark", f"wrote {cfg_path}")
    return cfg_path
