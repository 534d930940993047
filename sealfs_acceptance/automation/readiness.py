#!/usr/bin/env python3
"""Readiness strategies: poll a probe with backoff, or sleep a fixed settle delay."""

from __future__ import annotations

import socket
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from sealfs_acceptance.automation.process_utils import ProcessLaunchError, log_progress

Probe = Callable[[], bool]

STRATEGIES = ("poll", "delay")


def split_address(address: str) -> Tuple[str, int]:
    host, _, port = address.rpartition(":")
    return host or "127.0.0.1", int(port)


def tcp_probe(address: str, timeout_s: float = 1.0) -> Probe:
    host, port = split_address(address)

    def _probe() -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout_s):
                return True
        except OSError:
            return False

    return _probe


def unix_socket_probe(path: str, timeout_s: float = 1.0) -> Probe:
    def _probe() -> bool:
        if not Path(path).exists():
            return False
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout_s)
            return sock.connect_ex(path) == 0

    return _probe


def all_probes(*probes: Probe) -> Probe:
    def _probe() -> bool:
        return all(probe() for probe in probes)

    return _probe


class ReadinessPolicy:
    """Wait until a launch stage is ready.

    With strategy "poll" a stage's probe is retried with exponential backoff
    until the deadline; stages without a probe fall back to their settle
    delay. Strategy "delay" always sleeps the settle delay.
    """

    def __init__(
        self,
        strategy: str = "poll",
        timeout_s: float = 30.0,
        initial_interval_s: float = 0.1,
        max_interval_s: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        artifact_dir: Optional[Path] = None,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown readiness strategy {strategy}")
        self.strategy = strategy
        self.timeout_s = timeout_s
        self.initial_interval_s = initial_interval_s
        self.max_interval_s = max_interval_s
        self.sleep = sleep
        self.clock = clock
        self.artifact_dir = artifact_dir

    @classmethod
    def from_config(cls, cfg: Dict, artifact_dir: Optional[Path] = None, **kwargs) -> "ReadinessPolicy":
        readiness = cfg.get("readiness") or {}
        return cls(
            strategy=str(readiness.get("strategy", "poll")),
            timeout_s=float(readiness.get("timeout_s", 30.0)),
            initial_interval_s=float(readiness.get("initial_interval_s", 0.1)),
            max_interval_s=float(readiness.get("max_interval_s", 2.0)),
            artifact_dir=artifact_dir,
            **kwargs,
        )

    def wait(self, stage: str, settle_s: float, probe: Optional[Probe] = None) -> None:
        if self.strategy == "delay" or probe is None:
            if settle_s > 0:
                log_progress(self.artifact_dir, "readiness", f"{stage}: settling {settle_s}s")
                self.sleep(settle_s)
            return
        deadline = self.clock() + self.timeout_s
        interval = self.initial_interval_s
        attempts = 0
        while True:
            attempts += 1
            if probe():
                log_progress(self.artifact_dir, "readiness", f"{stage}: ready after {attempts} probe(s)")
                return
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ProcessLaunchError(f"{stage} not ready after {self.timeout_s}s ({attempts} probes)")
            self.sleep(min(interval, remaining))
            interval = min(interval * 2, self.max_interval_s)
