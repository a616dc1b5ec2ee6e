"""
Schema — Pydantic models for the matrix declaration and the matrix report.

Input:
  MatrixDeclaration  — ordered list of {toolchain, flags} entries.

Output (matrix_report.json):
  MatrixReport       — one VariantResult per declared variant, in
                       declaration order, plus the overall exit code.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ci_matrix import PACKAGE_NAME, RUNNER_VERSION, SCHEMA_VERSION
from cov_pipeline.io.schema import CoverageOutcome


# ── Declaration ──────────────────────────────────────────────────────────────

class VariantSpec(BaseModel):
    """One declared matrix entry, before toolchain resolution."""

    toolchain: str
    flags: Dict[str, Union[bool, str]] = Field(default_factory=dict)

    @field_validator("toolchain", mode="before")
    @classmethod
    def _require_string(cls, v: object) -> object:
        # 1.40 as a number is 1.4; a pinned version must be quoted
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            raise ValueError(
                f"toolchain {v!r} is a number; quote pinned versions (\"1.40.0\")"
            )
        return v


class MatrixDeclaration(BaseModel):
    """The static matrix for one pipeline invocation."""

    variants: List[VariantSpec]
    single_coverage_variant: bool = True


# ── Report ───────────────────────────────────────────────────────────────────

class VariantResult(BaseModel):
    """Execution result for one variant."""

    variant_id: str
    index: int
    toolchain: str
    flags: Dict[str, Union[bool, str]] = Field(default_factory=dict)

    status: str                       # PENDING | RUNNING | SUCCEEDED | FAILED
    exit_code: int = -1
    failure_reason: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0

    workspace: Optional[str] = None
    produced_artifacts: List[str] = Field(default_factory=list)

    # Observational only; never feeds back into ``status``
    coverage: Optional[CoverageOutcome] = None


class MatrixReport(BaseModel):
    """Top-level report — matrix_report.json."""

    package_name: str = PACKAGE_NAME
    runner_version: str = RUNNER_VERSION
    schema_version: str = SCHEMA_VERSION

    run_id: str
    started_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    finished_at: Optional[str] = None

    variants: List[VariantResult] = Field(default_factory=list)

    overall_status: str = "PENDING"  # PENDING | SUCCEEDED | FAILED
    exit_code: int = -1
