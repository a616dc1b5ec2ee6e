"""
Uploader — hand merged coverage output to the reporting service.

``CodecovUploader`` downloads the Codecov bash uploader and runs it
against the coverage root.  Only success or failure of the transfer is
consulted; failures raise ``UploadError`` for the pipeline to record.
"""
import logging
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Protocol

import httpx

from ci_matrix.core.process import run_command
from cov_pipeline.policy.profile import CoverageProfile
from cov_pipeline.policy.verdict import UploadError

logger = logging.getLogger(__name__)


class CoverageUploader(Protocol):
    def upload(
        self,
        coverage_root: Path,
        report_dirs: List[Path],
        cancel: Optional[threading.Event] = None,
    ) -> None:
        ...


class CodecovUploader:
    """Run the Codecov bash uploader from the project checkout."""

    def __init__(self, profile: CoverageProfile, project_dir: Path):
        self.profile = profile
        self.project_dir = Path(project_dir)

    def _fetch_script(self) -> str:
        try:
            resp = httpx.get(
                self.profile.uploader_url,
                follow_redirects=True,
                timeout=self.profile.upload_timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise UploadError(f"Could not fetch uploader: {e}") from e
        return resp.text

    def upload(
        self,
        coverage_root: Path,
        report_dirs: List[Path],
        cancel: Optional[threading.Event] = None,
    ) -> None:
        script = self._fetch_script()

        with tempfile.TemporaryDirectory(prefix="codecov-") as tmp:
            script_path = Path(tmp) / "codecov.sh"
            script_path.write_text(script)

            # -s accumulates search dirs; only the successful reports are listed
            cmd = ["bash", str(script_path)]
            for d in report_dirs:
                cmd.extend(["-s", str(d)])
            if self.profile.upload_token:
                cmd.extend(["-t", self.profile.upload_token])

            logger.info(
                "Uploading %d coverage reports from %s", len(report_dirs), coverage_root
            )
            outcome = run_command(
                cmd,
                cwd=self.project_dir,
                timeout=self.profile.upload_timeout,
                cancel=cancel,
            )

        if not outcome.ok:
            raise UploadError(outcome.error or f"uploader exited {outcome.exit_code}")
        logger.info("Uploaded code coverage")
