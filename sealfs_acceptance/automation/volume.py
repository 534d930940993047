#!/usr/bin/env python3
"""Create the volume both benchmark modes run against."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from sealfs_acceptance.automation.config import expand_path
from sealfs_acceptance.automation.process_utils import log_progress, run_step


def build_create_volume_command(cfg: Dict) -> List[str]:
    volume = cfg["volume"]
    return [
        str(expand_path(cfg["binaries"]["client"])),
        "--log-level",
        cfg["log_level"],
        "create-volume",
        str(volume["name"]),
        str(volume["capacity"]),
    ]


def provision_volume(cfg: Dict, artifact_dir: Path) -> None:
    volume = cfg["volume"]
    run_step("create-volume", build_create_volume_command(cfg), log_path=artifact_dir / "create_volume.log")
    log_progress(artifact_dir, "volume", f"created volume {volume['name']} capacity={volume['capacity']}")
