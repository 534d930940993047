#!/usr/bin/env python3
"""Utility helpers for launching cluster processes and guaranteeing their cleanup."""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO, Dict, Iterator, List, Optional, Sequence, Tuple

# `timeout -s SIGKILL` reports a killed child as 128 + 9.
KILLED_EXIT_CODE = 128 + signal.SIGKILL
TEARDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class ProcessLaunchError(RuntimeError):
    pass


class HarnessInterrupted(BaseException):
    """Raised from a signal handler so that teardown runs on the way out."""

    def __init__(self, signum: int):
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum

    @property
    def exit_code(self) -> int:
        return 128 + self.signum


def log_progress(artifact_dir: Optional[Path], tag: str, message: str) -> None:
    """Print a progress line and append it to the run's progress.log."""
    ts = datetime.now().isoformat(timespec="seconds")
    line = f"[{ts}] [{tag}] {message}"
    print(line, flush=True)
    if artifact_dir is None:
        return
    try:
        log_path = artifact_dir / "progress.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError:
        # Best-effort only: don't break the run if logging fails.
        pass


def _open_log(log_path: Optional[Path], name: str, argv: Sequence[str]) -> Optional[IO[str]]:
    if not log_path:
        return None
    log_path.parent.mkdir(parents=True, exist_ok=True)
    stdout = open(log_path, "w", encoding="utf-8")
    # Write a small header so users can see what was launched.
    stdout.write(f"[launcher] starting {name}: {' '.join(argv)}\n")
    stdout.flush()
    return stdout


def _merged_env(env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if not env:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


@dataclass
class ProcessHandle:
    name: str
    role: str
    argv: List[str]
    proc: subprocess.Popen
    log_file: Optional[IO[str]] = None
    signaled: bool = False

    @property
    def pid(self) -> int:
        return self.proc.pid

    def alive(self) -> bool:
        return self.proc.poll() is None


def _kill_process_group(proc: subprocess.Popen) -> None:
    # A reaped leader's pid may already belong to an unrelated process group.
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.kill()


@dataclass
class ProcessRegistry:
    """Tracks every background process of a run and force-kills them on exit.

    Each child is started in its own session so the whole group it spawns
    (mpirun ranks, FUSE helpers) goes down with it.
    """

    artifact_dir: Optional[Path] = None
    handles: List[ProcessHandle] = field(default_factory=list)

    def spawn(
        self,
        name: str,
        argv: List[str],
        role: str,
        log_path: Optional[Path] = None,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessHandle:
        stdout = _open_log(log_path, name, argv)
        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env=_merged_env(env),
                stdout=stdout if stdout else subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            if stdout:
                stdout.close()
            raise ProcessLaunchError(f"failed to start {name}: {exc}") from exc
        handle = ProcessHandle(name=name, role=role, argv=list(argv), proc=proc, log_file=stdout)
        self.handles.append(handle)
        log_progress(self.artifact_dir, "launcher", f"started {name} role={role} pid={proc.pid}")
        return handle

    def ensure_alive(self, handles: Optional[List[ProcessHandle]] = None) -> None:
        for handle in handles if handles is not None else self.handles:
            if not handle.alive():
                raise ProcessLaunchError(f"{handle.name} exited early with code {handle.proc.returncode}")

    def kill_all(self) -> None:
        # Signals arriving mid-teardown are delivered once every handle is stopped.
        blocked = signal.pthread_sigmask(signal.SIG_BLOCK, TEARDOWN_SIGNALS)
        try:
            for handle in reversed(self.handles):
                if handle.signaled:
                    continue
                handle.signaled = True
                try:
                    _kill_process_group(handle.proc)
                    handle.proc.wait(timeout=5.0)
                except (OSError, subprocess.TimeoutExpired) as exc:
                    log_progress(self.artifact_dir, "teardown", f"could not stop {handle.name}: {exc}")
                finally:
                    if handle.log_file:
                        handle.log_file.close()
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, blocked)
        if self.handles:
            log_progress(self.artifact_dir, "teardown", f"stopped {len(self.handles)} background processes")

    def describe(self) -> Dict[str, Dict[str, object]]:
        return {
            handle.name: {"pid": handle.pid, "role": handle.role, "returncode": handle.proc.returncode}
            for handle in self.handles
        }

    def __enter__(self) -> "ProcessRegistry":
        return self

    def __exit__(self, *exc_info) -> None:
        self.kill_all()


@contextlib.contextmanager
def teardown_on_signals(signals: Tuple[int, ...] = TEARDOWN_SIGNALS) -> Iterator[None]:
    """Turn termination signals into HarnessInterrupted for the enclosed block."""

    def _raise(signum, _frame):
        raise HarnessInterrupted(signum)

    previous = {}
    for signum in signals:
        previous[signum] = signal.signal(signum, _raise)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def run_step(
    name: str,
    argv: List[str],
    log_path: Optional[Path] = None,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> None:
    """Run a synchronous setup step; any failure aborts the run."""
    stdout = _open_log(log_path, name, argv)
    try:
        cp = subprocess.run(
            argv,
            cwd=cwd,
            env=_merged_env(env),
            stdout=stdout if stdout else None,
            stderr=subprocess.STDOUT if stdout else None,
            check=False,
        )
    except OSError as exc:
        raise ProcessLaunchError(f"{name} could not be started: {exc}") from exc
    finally:
        if stdout:
            stdout.close()
    if cp.returncode != 0:
        raise ProcessLaunchError(f"{name} failed with code {cp.returncode}")


def run_relaxed(name: str, argv: List[str]) -> Optional[str]:
    """Run a cleanup command; return a warning instead of raising on failure."""
    try:
        cp = subprocess.run(argv, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True, check=False)
    except OSError as exc:
        return f"{name}: {exc}"
    if cp.returncode != 0:
        detail = (cp.stderr or "").strip()
        return f"{name}: exit {cp.returncode}" + (f" ({detail})" if detail else "")
    return None


def run_with_timeout(
    name: str,
    argv: List[str],
    timeout_s: float,
    log_path: Optional[Path] = None,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> Tuple[int, bool]:
    """Run argv to completion, SIGKILLing its process group at the deadline.

    Returns (returncode, timed_out). A process that could not be started is
    reported as a failed result rather than raised.
    """
    stdout = _open_log(log_path, name, argv)
    try:
        proc = subprocess.Popen(
            argv,
            cwd=cwd,
            env=_merged_env(env),
            stdout=stdout if stdout else None,
            stderr=subprocess.STDOUT if stdout else None,
            start_new_session=True,
        )
    except OSError as exc:
        if stdout:
            stdout.write(f"[launcher] failed to start {name}: {exc}\n")
            stdout.close()
        return 127, False
    try:
        try:
            return proc.wait(timeout=timeout_s), False
        except subprocess.TimeoutExpired:
            _kill_process_group(proc)
            proc.wait()
            return KILLED_EXIT_CODE, True
    except BaseException:
        # Interrupted while waiting: never leave the benchmark group behind.
        _kill_process_group(proc)
        proc.wait()
        raise
    finally:
        if stdout:
            stdout.close()
