"""
Coverage pipeline — top-level orchestration for one succeeded variant.

    acquire tool ─► discover binaries ─► instrument each (isolated) ─► join ─► upload

Steps 1–2 (acquire/build) gate everything after them.  A failing binary
never blocks its siblings.  Upload failure is recorded, not raised.
Nothing in this module can change the variant's own verdict.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from ci_matrix.core.variant import Variant
from ci_matrix.policy.verdict import VariantStatus
from cov_pipeline.core.discovery import discover_binaries
from cov_pipeline.core.tool import InstrumentationTool, ToolHandle
from cov_pipeline.core.uploader import CoverageUploader
from cov_pipeline.io.schema import ArtifactCoverage, CoverageOutcome
from cov_pipeline.policy.gate import should_run_coverage, skip_reason
from cov_pipeline.policy.profile import CoverageProfile
from cov_pipeline.policy.verdict import (
    ArtifactFailureReason,
    ArtifactStatus,
    CoveragePrerequisiteError,
    CoverageReason,
    CoverageState,
    UploadError,
    UploadStatus,
)

logger = logging.getLogger(__name__)


def _finish(
    outcome: CoverageOutcome, reason: CoverageReason, error: Optional[str] = None
) -> CoverageOutcome:
    outcome.state = CoverageState.COVERAGE_SKIPPED_OR_FAILED.value
    outcome.reason = reason.value
    outcome.error = error
    return outcome


def _instrument_one(
    tool: InstrumentationTool,
    handle: ToolHandle,
    binary: Path,
    output_dir: Path,
    cancel: Optional[threading.Event],
) -> ArtifactCoverage:
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        result = tool.run(handle, binary, output_dir, cancel)
    except Exception as e:
        logger.error("Instrumentation of %s crashed: %s", binary, e, exc_info=True)
        return ArtifactCoverage(
            binary_name=binary.name,
            binary_path=str(binary),
            output_dir=str(output_dir),
            status=ArtifactStatus.FAILED.value,
            reason=ArtifactFailureReason.INTERNAL_ERROR.value,
        )

    if result.status == ArtifactStatus.OK.value:
        logger.info("Instrumented %s → %s", binary.name, output_dir)
    else:
        logger.warning(
            "Instrumentation failed for %s (%s, exit %d)",
            binary.name, result.reason, result.exit_code,
        )
    return result


def run_coverage_pipeline(
    artifacts_dir: Path,
    coverage_root: Path,
    tool: InstrumentationTool,
    uploader: CoverageUploader,
    profile: Optional[CoverageProfile] = None,
    cancel: Optional[threading.Event] = None,
) -> CoverageOutcome:
    """
    Run the coverage side channel for one variant.

    Parameters
    ----------
    artifacts_dir : Path
        Directory the variant's build left its binaries in.
    coverage_root : Path
        Parent for the per-binary output directories
        (``<coverage_root>/<binary_name>``).
    tool, uploader
        Capability objects; see ``cov_pipeline.core``.
    profile : CoverageProfile, optional
        Defaults to ``CoverageProfile.default()``.
    cancel : threading.Event, optional
        When set, in-flight steps stop and nothing is uploaded.
    """
    if profile is None:
        profile = CoverageProfile.default()

    outcome = CoverageOutcome(
        profile_id=profile.profile_id,
        state=CoverageState.COVERAGE_RUNNING.value,
    )

    # ── Steps 1–2: acquire + build the tool ──────────────────────────
    try:
        handle = tool.acquire()
    except CoveragePrerequisiteError as e:
        logger.error("Coverage prerequisite failed: %s", e)
        return _finish(outcome, CoverageReason.PREREQUISITE_FAILED, str(e))
    except Exception as e:
        logger.error("Coverage prerequisite crashed: %s", e, exc_info=True)
        return _finish(outcome, CoverageReason.PREREQUISITE_FAILED, str(e))
    outcome.tool_path = str(handle.executable)

    if cancel is not None and cancel.is_set():
        return _finish(outcome, CoverageReason.CANCELLED)

    # ── Step 3: discover ─────────────────────────────────────────────
    binaries = discover_binaries(artifacts_dir, profile.binary_prefix)
    if not binaries:
        return _finish(outcome, CoverageReason.NO_BINARIES)

    # ── Step 4: instrument, one isolated output dir per binary ───────
    workers = max(1, profile.instrument_concurrency)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="instrument") as pool:
        futures = [
            pool.submit(
                _instrument_one, tool, handle, b, coverage_root / b.name, cancel
            )
            for b in binaries
        ]
        # join barrier; results stay in discovery order
        outcome.artifacts = [f.result() for f in futures]

    if cancel is not None and cancel.is_set():
        return _finish(outcome, CoverageReason.CANCELLED)

    ok_dirs: List[Path] = [
        Path(a.output_dir)
        for a in outcome.artifacts
        if a.status == ArtifactStatus.OK.value
    ]
    logger.info(
        "Instrumentation finished: %d ok, %d failed",
        outcome.succeeded_count, outcome.failed_count,
    )
    if not ok_dirs:
        return _finish(outcome, CoverageReason.NO_SUCCESSFUL_ARTIFACTS)
    outcome.merged_dirs = [str(d) for d in ok_dirs]

    # ── Step 5: upload (best effort) ─────────────────────────────────
    try:
        uploader.upload(coverage_root, ok_dirs, cancel)
    except UploadError as e:
        logger.error("Coverage upload failed: %s", e)
        outcome.upload_status = UploadStatus.FAILED.value
        outcome.upload_error = str(e)
    except Exception as e:
        logger.error("Coverage upload crashed: %s", e, exc_info=True)
        outcome.upload_status = UploadStatus.FAILED.value
        outcome.upload_error = str(e)
    else:
        outcome.upload_status = UploadStatus.UPLOADED.value

    if outcome.upload_status == UploadStatus.UPLOADED.value:
        outcome.state = CoverageState.COVERAGE_DONE.value
    else:
        outcome.state = CoverageState.COVERAGE_SKIPPED_OR_FAILED.value
    return outcome


def coverage_for_variant(
    variant: Variant,
    status: VariantStatus,
    artifacts_dir: Path,
    coverage_root: Path,
    tool: InstrumentationTool,
    uploader: CoverageUploader,
    profile: Optional[CoverageProfile] = None,
    cancel: Optional[threading.Event] = None,
) -> Optional[CoverageOutcome]:
    """
    Apply the two-part gate, then run the pipeline.

    Returns None when the variant does not collect coverage.  A failed
    coverage variant gets a skipped outcome and no instrumentation.
    """
    if profile is None:
        profile = CoverageProfile.default()

    if not should_run_coverage(variant, status):
        reason = skip_reason(variant, status)
        if reason is None:
            return None
        logger.info("Skipping coverage for %s: %s", variant.variant_id, reason.value)
        return CoverageOutcome(
            profile_id=profile.profile_id,
            state=CoverageState.COVERAGE_SKIPPED_OR_FAILED.value,
            reason=reason.value,
        )

    logger.info("Starting coverage pipeline for %s", variant.variant_id)
    return run_coverage_pipeline(
        artifacts_dir, coverage_root, tool, uploader, profile=profile, cancel=cancel
    )
