import json
import sys
import time
from pathlib import Path

import pytest

from conftest import BENCH_DUMP_ENV, BENCH_FAIL, BENCH_HANG
from sealfs_acceptance.automation.config import load_config
from sealfs_acceptance.automation.modes import (
    MODES,
    InterceptMode,
    ModeContext,
    MountMode,
    build_benchmark_command,
    resolve_modes,
)
from sealfs_acceptance.automation.process_utils import (
    KILLED_EXIT_CODE,
    ProcessLaunchError,
    ProcessRegistry,
)
from sealfs_acceptance.automation.readiness import ReadinessPolicy


@pytest.fixture
def registry():
    with ProcessRegistry() as reg:
        yield reg


@pytest.fixture
def ctx(harness_cfg, registry, tmp_path):
    (tmp_path / "io500").mkdir()
    return ModeContext(
        cfg=harness_cfg,
        registry=registry,
        readiness=ReadinessPolicy(strategy="delay"),
        artifact_dir=tmp_path / "artifacts",
    )


def _use_benchmark(ctx, write_script, body, timeout_s=20):
    script = write_script("bench", body)
    ctx.cfg["benchmark"]["command"] = f"{sys.executable} {script}"
    ctx.cfg["benchmark"]["timeout_s"] = timeout_s


def test_default_benchmark_command():
    assert build_benchmark_command(load_config()) == ["mpirun", "-np", "5", "./io500", "config-minimal.ini"]


def test_mount_mode_passes(ctx, fake_log, tmp_path):
    result = MountMode().run(ctx)

    assert result.mode == "mount"
    assert result.returncode == 0
    assert not result.timed_out
    assert result.duration_s > 0

    daemon = ctx.registry.handles[0]
    assert daemon.role == "client-daemon"
    assert daemon.alive()
    calls = fake_log.read_text().splitlines()
    assert f"sealfs --log-level warn mount {tmp_path / 'fs'} test1" in calls
    assert (ctx.artifact_dir / "io500_mount.log").exists()


def test_mount_mode_daemon_stopped_by_teardown(ctx):
    MountMode().run(ctx)
    ctx.registry.kill_all()
    assert all(h.proc.poll() is not None for h in ctx.registry.handles)


def test_mount_failure_aborts(ctx, monkeypatch):
    monkeypatch.setenv("FAKE_SEALFS_MOUNT_EXIT", "1")
    with pytest.raises(ProcessLaunchError, match="mount failed with code 1"):
        MountMode().run(ctx)


def test_benchmark_failure_is_a_result(ctx, write_script):
    _use_benchmark(ctx, write_script, BENCH_FAIL)
    result = InterceptMode().run(ctx)
    assert result.returncode == 3
    assert result.failed
    assert not result.timed_out


def test_hanging_benchmark_is_killed_at_bound(ctx, write_script):
    _use_benchmark(ctx, write_script, BENCH_HANG, timeout_s=1)
    started = time.monotonic()
    result = InterceptMode().run(ctx)
    elapsed = time.monotonic() - started

    assert result.timed_out
    assert result.returncode == KILLED_EXIT_CODE
    assert result.failed
    assert 1.0 <= result.duration_s < 10
    assert elapsed < 10


def test_intercept_env_reaches_benchmark(ctx, write_script, tmp_path):
    _use_benchmark(ctx, write_script, BENCH_DUMP_ENV)
    result = InterceptMode().run(ctx)
    assert result.returncode == 0
    env = json.loads((tmp_path / "io500" / "env.json").read_text())
    assert env == {
        "SEALFS_LOG_LEVEL": "warn",
        "SEALFS_VOLUME_NAME": "test1",
        "SEALFS_MOUNT_POINT": str(tmp_path / "fs"),
    }
    assert ctx.registry.handles == []


def test_intercept_preloads_absolute_library(harness_cfg, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    harness_cfg["binaries"]["intercept_lib"] = "./target/debug/libintercept.so"
    env = InterceptMode().benchmark_env(harness_cfg)
    assert env["LD_PRELOAD"] == str(tmp_path / "target" / "debug" / "libintercept.so")
    assert Path(env["LD_PRELOAD"]).is_absolute()


def test_mount_mode_has_no_benchmark_env(harness_cfg):
    assert MountMode().benchmark_env(harness_cfg) is None


def test_resolve_modes():
    assert resolve_modes(["mount", "intercept"]) == [MODES["mount"], MODES["intercept"]]
    with pytest.raises(ValueError):
        resolve_modes(["nfs"])
