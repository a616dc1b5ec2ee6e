"""
Process — run one external command with pass-through output.

The verification script and every coverage step go through
``run_command``.  Output is not captured: stdout/stderr go straight to the
parent's streams for human consumption.  A deadline or a set cancel event
terminates the child (then kills it after a grace period).
"""
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum, unique
from pathlib import Path
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
KILL_GRACE = 5.0


@unique
class Termination(str, Enum):
    EXITED = "EXITED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    LAUNCH_ERROR = "LAUNCH_ERROR"


@dataclass(frozen=True)
class CommandOutcome:
    """How a command ended.  ``exit_code`` is -1 unless it exited on its own."""

    termination: Termination
    exit_code: int = -1
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.termination == Termination.EXITED and self.exit_code == 0


def _stop(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=KILL_GRACE)
    except subprocess.TimeoutExpired:
        logger.warning("pid %d ignored SIGTERM, killing", proc.pid)
        proc.kill()
        proc.wait()


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> CommandOutcome:
    """
    Run *cmd* and block until it finishes, times out, or is cancelled.

    Parameters
    ----------
    cmd : sequence of str
        Argument vector; no shell is involved.
    cwd : Path, optional
        Working directory.
    env : mapping, optional
        Complete environment for the child.  Defaults to ``os.environ``.
    timeout : float, optional
        Seconds before the child is terminated.
    cancel : threading.Event, optional
        When set, the child is terminated at the next poll.
    """
    start = time.monotonic()
    logger.debug("exec: %s (cwd=%s)", " ".join(cmd), cwd)

    if cancel is not None and cancel.is_set():
        return CommandOutcome(Termination.CANCELLED, error="cancelled before launch")

    try:
        proc = subprocess.Popen(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else dict(os.environ),
        )
    except OSError as e:
        return CommandOutcome(Termination.LAUNCH_ERROR, error=str(e))

    deadline = start + timeout if timeout else None
    while True:
        try:
            code = proc.wait(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass

        if cancel is not None and cancel.is_set():
            _stop(proc)
            return CommandOutcome(
                Termination.CANCELLED,
                duration_ms=int((time.monotonic() - start) * 1000),
                error="cancelled",
            )
        if deadline is not None and time.monotonic() >= deadline:
            _stop(proc)
            return CommandOutcome(
                Termination.TIMEOUT,
                duration_ms=int((time.monotonic() - start) * 1000),
                error=f"timed out after {timeout}s",
            )

    return CommandOutcome(
        Termination.EXITED,
        exit_code=code,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
