"""
Shared pytest fixtures for ci_matrix and cov_pipeline tests.

Provides:
  - ``make_exe``: write an executable shell script into tmp_path.
  - Fake instrumentation tool and uploader implementing the capability
    protocols, so the orchestration logic runs without kcov or network.
"""
import stat
import threading
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

from cov_pipeline.core.tool import ToolHandle
from cov_pipeline.io.schema import ArtifactCoverage
from cov_pipeline.policy.verdict import (
    ArtifactFailureReason,
    ArtifactStatus,
    CoveragePrerequisiteError,
    UploadError,
)


def write_exe(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeTool:
    """Instrumentation tool double.  Binaries named in *failing* fail --verify."""

    def __init__(self, fail_acquire: bool = False, failing: Iterable[str] = ()):
        self.fail_acquire = fail_acquire
        self.failing = set(failing)
        self.acquire_calls = 0
        self.runs: List[str] = []
        self._lock = threading.Lock()

    def acquire(self) -> ToolHandle:
        self.acquire_calls += 1
        if self.fail_acquire:
            raise CoveragePrerequisiteError("cmake failed: exit code 1")
        return ToolHandle(executable=Path("/opt/fake/kcov"))

    def run(self, handle, binary, output_dir, cancel=None) -> ArtifactCoverage:
        with self._lock:
            self.runs.append(binary.name)
        failed = binary.name in self.failing
        return ArtifactCoverage(
            binary_name=binary.name,
            binary_path=str(binary),
            output_dir=str(output_dir),
            status=ArtifactStatus.FAILED.value if failed else ArtifactStatus.OK.value,
            exit_code=1 if failed else 0,
            reason=ArtifactFailureReason.INSTRUMENTATION_FAILED.value if failed else None,
        )


class FakeUploader:
    """Uploader double recording each call; optionally fails."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[List[Path]] = []

    def upload(self, coverage_root, report_dirs, cancel: Optional[threading.Event] = None):
        self.calls.append(list(report_dirs))
        if self.fail:
            raise UploadError("codecov returned 503")


@pytest.fixture
def make_exe():
    """Factory: ``make_exe(path, body) -> path`` with the executable bit set."""
    return write_exe


@pytest.fixture
def fake_tool():
    """Factory for FakeTool instances."""
    return FakeTool


@pytest.fixture
def fake_uploader():
    """Factory for FakeUploader instances."""
    return FakeUploader
