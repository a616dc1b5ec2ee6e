"""
Instrumentation tool — capability interface and the kcov implementation.

The pipeline only sees the ``InstrumentationTool`` protocol:

    acquire()                        -> ToolHandle
    run(handle, binary, output_dir)  -> ArtifactCoverage

``KcovTool`` fetches the kcov source tarball, builds it with
cmake → make → make install into a local staging root, and then invokes
the staged binary once per artifact.  Any acquire/build failure raises
``CoveragePrerequisiteError``.
"""
import logging
import os
import shutil
import tarfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

import httpx

from ci_matrix.core.process import CommandOutcome, Termination, run_command
from cov_pipeline.core.debuginfo import inspect_debug_info
from cov_pipeline.io.schema import ArtifactCoverage
from cov_pipeline.policy.profile import CoverageProfile
from cov_pipeline.policy.verdict import (
    ArtifactFailureReason,
    ArtifactStatus,
    CoveragePrerequisiteError,
)

logger = logging.getLogger(__name__)

_ARTIFACT_REASONS = {
    Termination.EXITED: ArtifactFailureReason.INSTRUMENTATION_FAILED,
    Termination.LAUNCH_ERROR: ArtifactFailureReason.LAUNCH_ERROR,
    Termination.TIMEOUT: ArtifactFailureReason.TIMEOUT,
    Termination.CANCELLED: ArtifactFailureReason.CANCELLED,
}


@dataclass(frozen=True)
class ToolHandle:
    """A ready-to-run instrumentation tool."""

    executable: Path
    staging_root: Optional[Path] = None


class InstrumentationTool(Protocol):
    def acquire(self) -> ToolHandle:
        ...

    def run(
        self,
        handle: ToolHandle,
        binary: Path,
        output_dir: Path,
        cancel: Optional[threading.Event] = None,
    ) -> ArtifactCoverage:
        ...


def artifact_from_outcome(
    binary: Path, output_dir: Path, outcome: CommandOutcome
) -> ArtifactCoverage:
    """Translate one tool invocation into an ArtifactCoverage record."""
    debug = inspect_debug_info(binary)
    if outcome.ok:
        status, reason = ArtifactStatus.OK, None
    else:
        status = ArtifactStatus.FAILED
        reason = _ARTIFACT_REASONS[outcome.termination].value
    return ArtifactCoverage(
        binary_name=binary.name,
        binary_path=str(binary),
        output_dir=str(output_dir),
        status=status.value,
        exit_code=outcome.exit_code,
        reason=reason,
        duration_ms=outcome.duration_ms,
        has_debug_info=debug.has_debug_info,
        debug_sections=debug.debug_sections,
    )


class KcovTool:
    """Build kcov from source and run it per binary."""

    def __init__(
        self,
        profile: CoverageProfile,
        workspace: Path,
        cancel: Optional[threading.Event] = None,
    ):
        self.profile = profile
        self.workspace = Path(workspace)
        self.cancel = cancel
        self.num_jobs = os.cpu_count() or 4

    # ── acquire ──────────────────────────────────────────────────────────────

    def _download(self, dest: Path) -> None:
        url = self.profile.tool_source_url
        logger.info("Fetching instrumentation tool source from %s", url)
        try:
            with httpx.stream(
                "GET", url, follow_redirects=True, timeout=self.profile.build_timeout
            ) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in resp.iter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise CoveragePrerequisiteError(f"Download failed: {e}") from e

    def _extract(self, tarball: Path, dest: Path) -> Path:
        try:
            with tarfile.open(tarball, "r:gz") as tar:
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise CoveragePrerequisiteError(f"Extract failed: {e}") from e

        roots = [p for p in dest.iterdir() if p.is_dir()]
        if len(roots) != 1:
            raise CoveragePrerequisiteError(
                f"Expected one source directory in tarball, found {len(roots)}"
            )
        return roots[0]

    def _step(self, name: str, cmd: List[str], cwd: Path) -> None:
        outcome = run_command(
            cmd, cwd=cwd, timeout=self.profile.build_timeout, cancel=self.cancel
        )
        if not outcome.ok:
            detail = outcome.error or f"exit code {outcome.exit_code}"
            raise CoveragePrerequisiteError(f"{name} failed: {detail}")

    def acquire(self) -> ToolHandle:
        self.workspace.mkdir(parents=True, exist_ok=True)
        staging = (self.workspace / self.profile.tool_dir).resolve()
        src_root = self.workspace / "kcov-src"
        tarball = self.workspace / "kcov-master.tar.gz"

        shutil.rmtree(src_root, ignore_errors=True)
        src_root.mkdir(parents=True)
        try:
            self._download(tarball)
            source_dir = self._extract(tarball, src_root)

            build_dir = source_dir / "build"
            build_dir.mkdir()
            self._step("configure", ["cmake", ".."], build_dir)
            self._step("compile", ["make", f"-j{self.num_jobs}"], build_dir)
            self._step("install", ["make", "install", f"DESTDIR={staging}"], build_dir)
        finally:
            shutil.rmtree(src_root, ignore_errors=True)
            tarball.unlink(missing_ok=True)

        executable = staging / "usr" / "local" / "bin" / "kcov"
        if not os.access(executable, os.X_OK):
            raise CoveragePrerequisiteError(f"Tool not installed at {executable}")

        logger.info("Instrumentation tool ready at %s", executable)
        return ToolHandle(executable=executable, staging_root=staging)

    # ── run ──────────────────────────────────────────────────────────────────

    def command(self, handle: ToolHandle, binary: Path, output_dir: Path) -> List[str]:
        cmd = [str(handle.executable)]
        if self.profile.exclude_patterns:
            cmd.append("--exclude-pattern=" + ",".join(self.profile.exclude_patterns))
        if self.profile.verify:
            cmd.append("--verify")
        cmd.extend([str(output_dir), str(binary)])
        return cmd

    def run(
        self,
        handle: ToolHandle,
        binary: Path,
        output_dir: Path,
        cancel: Optional[threading.Event] = None,
    ) -> ArtifactCoverage:
        outcome = run_command(
            self.command(handle, binary, output_dir),
            timeout=self.profile.instrument_timeout,
            cancel=cancel or self.cancel,
        )
        return artifact_from_outcome(binary, output_dir, outcome)
