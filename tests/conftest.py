import stat
import sys
from pathlib import Path
from typing import Callable, Dict

import pytest

from sealfs_acceptance.automation.config import load_config

# Stands in for manager, server and client: one-shot subcommands exit, everything
# else behaves like a long-running service.
FAKE_SEALFS = """
import os, sys, time
args = sys.argv[1:]
log = os.environ.get("FAKE_SEALFS_LOG")
if log:
    with open(log, "a") as f:
        f.write(" ".join([os.path.basename(sys.argv[0])] + args) + "\\n")
for cmd in ("create-volume", "mount"):
    if cmd in args:
        sys.exit(int(os.environ.get("FAKE_SEALFS_%s_EXIT" % cmd.upper().replace("-", "_"), "0")))
time.sleep(600)
"""

BENCH_PASS = "import sys; sys.exit(0)\n"
BENCH_FAIL = "import sys; sys.exit(3)\n"
BENCH_HANG = "import time; time.sleep(600)\n"
BENCH_DUMP_ENV = """
import json, os
keys = ["SEALFS_LOG_LEVEL", "SEALFS_VOLUME_NAME", "SEALFS_MOUNT_POINT"]
with open("env.json", "w") as f:
    json.dump({k: os.environ.get(k) for k in keys}, f)
"""


@pytest.fixture
def write_script(tmp_path) -> Callable[[str, str], Path]:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture
def fake_log(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "fake_sealfs.log"
    monkeypatch.setenv("FAKE_SEALFS_LOG", str(path))
    return path


@pytest.fixture
def harness_overrides(tmp_path, write_script) -> Dict:
    fake = write_script("sealfs", FAKE_SEALFS)
    bench = write_script("io500", BENCH_PASS)
    return {
        "binaries": {
            "manager": str(fake),
            "server": str(fake),
            "client": str(fake),
            "intercept_lib": None,
        },
        "paths": {
            "mount_point": str(tmp_path / "fs"),
            "socket": str(tmp_path / "sealfs.sock"),
            "index": str(tmp_path / "sealfs.index"),
            "umount": [],
            "privileged_remove": [],
        },
        "manager": {"config_dir": str(tmp_path), "address": None, "settle_s": 0},
        "cluster": {"settle_s": 0},
        "daemon": {"settle_s": 0},
        "benchmark": {
            "workdir": str(tmp_path / "io500"),
            "stage": "none",
            "command": f"{sys.executable} {bench}",
            "timeout_s": 20,
        },
        "readiness": {"strategy": "delay"},
    }


@pytest.fixture
def harness_cfg(harness_overrides) -> Dict:
    return load_config(overrides=harness_overrides)


@pytest.fixture
def base_path(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path
