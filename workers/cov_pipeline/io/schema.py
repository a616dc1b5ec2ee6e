"""
Schema — Pydantic models for coverage outcomes.

One ArtifactCoverage per instrumented binary, merged into one
CoverageOutcome per variant.  Both are embedded in the matrix report.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from cov_pipeline import PACKAGE_NAME, PIPELINE_VERSION, SCHEMA_VERSION


# ── Per-binary result ────────────────────────────────────────────────────────

class ArtifactCoverage(BaseModel):
    """Instrumentation result for a single binary."""

    binary_name: str
    binary_path: str
    output_dir: str

    status: str                     # OK | FAILED
    exit_code: int = -1
    reason: Optional[str] = None
    duration_ms: int = 0

    # Informational; kcov --verify is the authority on debug info
    has_debug_info: Optional[bool] = None
    debug_sections: List[str] = Field(default_factory=list)


# ── Per-variant outcome ──────────────────────────────────────────────────────

class CoverageOutcome(BaseModel):
    """Everything the coverage side channel did for one variant."""

    package_name: str = PACKAGE_NAME
    pipeline_version: str = PIPELINE_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    state: str                      # COVERAGE_DONE | COVERAGE_SKIPPED_OR_FAILED
    reason: Optional[str] = None
    error: Optional[str] = None

    tool_path: Optional[str] = None
    artifacts: List[ArtifactCoverage] = Field(default_factory=list)
    merged_dirs: List[str] = Field(default_factory=list)

    upload_status: str = "SKIPPED"  # UPLOADED | FAILED | SKIPPED
    upload_error: Optional[str] = None

    @property
    def succeeded_count(self) -> int:
        return sum(1 for a in self.artifacts if a.status == "OK")

    @property
    def failed_count(self) -> int:
        return sum(1 for a in self.artifacts if a.status != "OK")
