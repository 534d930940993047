#!/usr/bin/env python3
"""Bring up a local SealFS cluster and run IO500 through the FUSE and intercept clients.

Typical usage (from the SealFS checkout, after `cargo build`):
  python3 -m sealfs_acceptance.automation.run_io500 /data

  # Only the interception path, with a shorter time bound
  python3 -m sealfs_acceptance.automation.run_io500 /data --modes intercept --timeout 60

  # Print the launch plan without starting anything
  python3 -m sealfs_acceptance.automation.run_io500 /data --dry-run

Outputs:
  - artifacts/io500/io500_<ts>/ (plan.json, progress.log, per-process logs, run_result.json)

Exit status: 0 when every mode passed, 1 when a mode failed or no base path
was given, 2 when cluster setup failed, 128+N when stopped by signal N.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from sealfs_acceptance.automation.bench_config import (
    render_benchmark_config,
    stage_benchmark,
    write_benchmark_config,
)
from sealfs_acceptance.automation.cluster import (
    build_cluster_commands,
    build_manager_command,
    launch_cluster,
    topology_from_config,
)
from sealfs_acceptance.automation.config import load_config, mount_point
from sealfs_acceptance.automation.env_reset import reset_environment
from sealfs_acceptance.automation.modes import BenchmarkMode, ModeContext, resolve_modes
from sealfs_acceptance.automation.process_utils import (
    HarnessInterrupted,
    ProcessLaunchError,
    ProcessRegistry,
    log_progress,
    teardown_on_signals,
)
from sealfs_acceptance.automation.readiness import STRATEGIES, ReadinessPolicy
from sealfs_acceptance.automation.results import ResultRecorder, aggregate_exit_status
from sealfs_acceptance.automation.volume import build_create_volume_command, provision_volume

ARTIFACT_ROOT = Path("artifacts/io500")


def ensure_artifact_dir(artifact_root: Optional[Path] = None) -> Path:
    root = artifact_root or ARTIFACT_ROOT
    root.mkdir(parents=True, exist_ok=True)
    base = f"io500_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"

    # Avoid collisions when multiple runs start within the same second.
    for attempt in range(0, 1000):
        suffix = "" if attempt == 0 else f"_{attempt}"
        path = root / f"{base}{suffix}"
        try:
            path.mkdir(parents=True, exist_ok=False)
            return path
        except FileExistsError:
            continue

    raise RuntimeError(f"failed to allocate unique artifact dir under {root} for {base}")


def build_plan(cfg: Dict, base_path: Path, modes: List[BenchmarkMode]) -> Dict:
    topology = topology_from_config(cfg, base_path)
    bench = cfg["benchmark"]
    return {
        "base_path": str(base_path),
        "manager": asdict(build_manager_command(cfg)),
        "servers": [asdict(spec) for spec in build_cluster_commands(cfg, topology)],
        "create_volume": build_create_volume_command(cfg),
        "benchmark_config": render_benchmark_config(str(mount_point(cfg)), int(bench.get("stonewall_time", 2))),
        "modes": {mode.name: mode.describe(cfg) for mode in modes},
        "config": cfg,
    }


def execute_run(
    cfg: Dict,
    base_path: Path,
    dry_run: bool = False,
    artifact_root: Optional[Path] = None,
    readiness: Optional[ReadinessPolicy] = None,
) -> int:
    modes = resolve_modes([str(name) for name in cfg.get("modes") or []])
    if not modes:
        raise ValueError("no benchmark modes selected")
    artifact_dir = ensure_artifact_dir(artifact_root)
    plan = build_plan(cfg, base_path, modes)
    (artifact_dir / "plan.json").write_text(json.dumps(plan, indent=2, default=str), encoding="utf-8")
    log_progress(artifact_dir, "run_io500", f"base_path={base_path} modes={[m.name for m in modes]} artifacts={artifact_dir}")

    if dry_run:
        log_progress(artifact_dir, "run_io500", "dry-run mode; no processes launched")
        try:
            print(json.dumps(plan, indent=2, default=str))
        except BrokenPipeError:
            # Common when piping to `head`; exit cleanly.
            pass
        return 0

    readiness = readiness or ReadinessPolicy.from_config(cfg, artifact_dir=artifact_dir)
    recorder = ResultRecorder(artifact_dir, plan)
    registry = ProcessRegistry(artifact_dir=artifact_dir)
    try:
        with teardown_on_signals(), registry:
            reset_environment(cfg, base_path, artifact_dir)
            launch_cluster(cfg, topology_from_config(cfg, base_path), registry, readiness, artifact_dir)
            provision_volume(cfg, artifact_dir)
            stage_benchmark(cfg, artifact_dir)
            write_benchmark_config(cfg, artifact_dir)

            ctx = ModeContext(cfg=cfg, registry=registry, readiness=readiness, artifact_dir=artifact_dir)
            for mode in modes:
                recorder.record_mode(mode.run(ctx))
        recorder.exit_status = aggregate_exit_status(recorder.modes)
    except BaseException as exc:
        recorder.record_exception(exc)
        log_progress(artifact_dir, "run_io500", f"aborted: {type(exc).__name__}: {exc}")
        raise
    finally:
        recorder.record_processes(registry.describe())
        recorder.finalize()

    log_progress(artifact_dir, "run_io500", f"exit status {recorder.exit_status}")
    return recorder.exit_status


def _cli_overrides(args: argparse.Namespace) -> Dict:
    overrides: Dict = {}
    if args.modes:
        overrides["modes"] = [m.strip() for m in args.modes.split(",") if m.strip()]
    if args.timeout is not None:
        overrides.setdefault("benchmark", {})["timeout_s"] = args.timeout
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.readiness:
        overrides.setdefault("readiness", {})["strategy"] = args.readiness
    return overrides


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run IO500 against a freshly started SealFS cluster")
    parser.add_argument("base_path", nargs="?", help="Directory for per-server database/storage dirs")
    parser.add_argument("--config", help="YAML file merged over the default harness config")
    parser.add_argument("--modes", help="Comma-separated benchmark modes (default: mount,intercept)")
    parser.add_argument("--timeout", type=float, help="Benchmark time bound in seconds per mode")
    parser.add_argument("--log-level", help="Log level passed to every SealFS process")
    parser.add_argument("--readiness", choices=STRATEGIES, help="Readiness strategy override")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument(
        "--artifact-root",
        default=None,
        help="Override artifact root (default: artifacts/io500).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if not args.base_path:
        print("no argument", file=sys.stderr)
        return 1
    base_path = Path(os.path.abspath(os.path.expanduser(args.base_path)))
    artifact_root = Path(args.artifact_root) if args.artifact_root else None
    try:
        cfg = load_config(args.config, _cli_overrides(args))
        return execute_run(cfg, base_path, dry_run=args.dry_run, artifact_root=artifact_root)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[run_io500] error: {exc}", file=sys.stderr)
        return 2
    except ProcessLaunchError as exc:
        print(f"[run_io500] error: {exc}", file=sys.stderr)
        print("[run_io500] hint: check artifacts/io500/<run>/*.log for details", file=sys.stderr)
        return 2
    except HarnessInterrupted as exc:
        print(f"[run_io500] {exc}; background processes stopped", file=sys.stderr)
        return exc.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
