#!/usr/bin/env python3
"""Benchmark modes: FUSE mount and LD_PRELOAD interception."""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from sealfs_acceptance.automation.config import benchmark_workdir, expand_path, mount_point
from sealfs_acceptance.automation.process_utils import (
    ProcessRegistry,
    log_progress,
    run_step,
    run_with_timeout,
)
from sealfs_acceptance.automation.readiness import ReadinessPolicy, unix_socket_probe
from sealfs_acceptance.automation.results import ModeResult


@dataclass
class ModeContext:
    cfg: Dict
    registry: ProcessRegistry
    readiness: ReadinessPolicy
    artifact_dir: Path


def _client_bin(cfg: Dict) -> str:
    return str(expand_path(cfg["binaries"]["client"]))


def build_benchmark_command(cfg: Dict) -> List[str]:
    bench = cfg["benchmark"]
    cmd = str(bench["command"]).format(
        processes=int(bench.get("processes", 5)),
        config=shlex.quote(str(bench.get("config_name", "config-minimal.ini"))),
    )
    return shlex.split(cmd)


class BenchmarkMode:
    """Shared timeout + timing logic; subclasses differ in prepare/env only."""

    name = "base"
    label = "base"

    def prepare(self, ctx: ModeContext) -> None:
        return None

    def benchmark_env(self, cfg: Dict) -> Optional[Dict[str, str]]:
        return None

    def describe(self, cfg: Dict) -> Dict[str, object]:
        return {"benchmark": build_benchmark_command(cfg), "env": self.benchmark_env(cfg)}

    def run(self, ctx: ModeContext) -> ModeResult:
        tag = f"mode:{self.name}"
        self.prepare(ctx)
        timeout_s = float(ctx.cfg["benchmark"].get("timeout_s", 200))
        argv = build_benchmark_command(ctx.cfg)
        log_progress(ctx.artifact_dir, tag, f"running {' '.join(argv)} (timeout {timeout_s}s)")
        start = time.monotonic()
        returncode, timed_out = run_with_timeout(
            f"io500[{self.name}]",
            argv,
            timeout_s,
            log_path=ctx.artifact_dir / f"io500_{self.name}.log",
            cwd=benchmark_workdir(ctx.cfg),
            env=self.benchmark_env(ctx.cfg),
        )
        duration_s = time.monotonic() - start
        result = ModeResult(mode=self.name, returncode=returncode, duration_s=duration_s, timed_out=timed_out)
        if timed_out:
            log_progress(ctx.artifact_dir, tag, f"benchmark killed after {timeout_s}s")
        log_progress(ctx.artifact_dir, tag, f"{self.label} tests finish, cost: {result.duration_ms}ms")
        log_progress(ctx.artifact_dir, tag, f"{self.label} result: {returncode}")
        return result


class MountMode(BenchmarkMode):
    name = "mount"
    label = "fuse"

    @staticmethod
    def daemon_command(cfg: Dict) -> List[str]:
        return [_client_bin(cfg), "--log-level", str(cfg["log_level"]), "daemon"]

    @staticmethod
    def mount_command(cfg: Dict) -> List[str]:
        # The client takes the mount point first, then the volume name.
        return [
            _client_bin(cfg),
            "--log-level",
            str(cfg["log_level"]),
            "mount",
            str(mount_point(cfg)),
            str(cfg["volume"]["name"]),
        ]

    def describe(self, cfg: Dict) -> Dict[str, object]:
        return {"daemon": self.daemon_command(cfg), "mount": self.mount_command(cfg), **super().describe(cfg)}

    def prepare(self, ctx: ModeContext) -> None:
        daemon = ctx.registry.spawn(
            "client-daemon",
            self.daemon_command(ctx.cfg),
            role="client-daemon",
            log_path=ctx.artifact_dir / "client_daemon.log",
        )
        socket_path = ctx.cfg["paths"].get("socket")
        probe = unix_socket_probe(str(expand_path(socket_path))) if socket_path else None
        ctx.readiness.wait("client daemon", float(ctx.cfg["daemon"].get("settle_s", 3)), probe)
        ctx.registry.ensure_alive([daemon])
        run_step("mount", self.mount_command(ctx.cfg), log_path=ctx.artifact_dir / "mount.log")
        log_progress(
            ctx.artifact_dir,
            f"mode:{self.name}",
            f"mounted {ctx.cfg['volume']['name']} at {mount_point(ctx.cfg)}",
        )


class InterceptMode(BenchmarkMode):
    name = "intercept"
    label = "intercept"

    def benchmark_env(self, cfg: Dict) -> Optional[Dict[str, str]]:
        env = {
            "SEALFS_LOG_LEVEL": str(cfg["log_level"]),
            "SEALFS_VOLUME_NAME": str(cfg["volume"]["name"]),
            "SEALFS_MOUNT_POINT": str(mount_point(cfg)),
        }
        lib = cfg["binaries"].get("intercept_lib")
        if lib:
            # The benchmark runs from its own workdir, so the preload path must be absolute.
            env["LD_PRELOAD"] = str(expand_path(lib).resolve())
        return env


MODES: Dict[str, BenchmarkMode] = {
    "mount": MountMode(),
    "intercept": InterceptMode(),
}


def resolve_modes(names: List[str]) -> List[BenchmarkMode]:
    modes: List[BenchmarkMode] = []
    for name in names:
        mode = MODES.get(name)
        if mode is None:
            raise ValueError(f"unknown benchmark mode {name}")
        modes.append(mode)
    return modes
