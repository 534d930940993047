#!/usr/bin/env python3
"""Helpers for aggregating benchmark mode results."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional


@dataclass
class ModeResult:
    mode: str
    returncode: int
    duration_s: float
    timed_out: bool = False

    @property
    def failed(self) -> bool:
        return self.returncode != 0

    @property
    def duration_ms(self) -> int:
        return int(self.duration_s * 1000)


def aggregate_exit_status(results: Iterable[ModeResult]) -> int:
    """0 when every mode passed, 1 otherwise."""
    return 1 if any(result.failed for result in results) else 0


@dataclass
class ResultRecorder:
    artifact_dir: Path
    plan: Dict
    modes: List[ModeResult] = field(default_factory=list)
    processes: Dict[str, Dict] = field(default_factory=dict)
    exception: Optional[Dict[str, str]] = None
    exit_status: Optional[int] = None

    def record_mode(self, result: ModeResult) -> None:
        self.modes.append(result)

    def record_processes(self, processes: Dict[str, Dict]) -> None:
        self.processes.update(processes)

    def record_exception(self, exc: BaseException) -> None:
        self.exception = {"type": type(exc).__name__, "message": str(exc)}

    def finalize(self) -> Path:
        payload = {
            "plan": self.plan,
            "modes": [dict(asdict(result), failed=result.failed) for result in self.modes],
            "processes": self.processes,
            "exit_status": self.exit_status,
            "runner_exception": self.exception,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        out = self.artifact_dir / "run_result.json"
        out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return out
