"""
Matrix runner — top-level orchestration: declared matrix → matrix report.

Each variant runs the verification script once, in its own workspace,
with its flags and resolved toolchain exposed as environment variables.
A variant that succeeded and collects coverage is handed to
``cov_pipeline`` right after its own script finishes.

The overall exit code is 1 iff some variant's script failed.  Coverage
outcomes are recorded in the report and never change that code.

Usage::

    ci-matrix --matrix .travis.yml --project-dir . --script ./contrib/test.sh
"""
from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import signal
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ci_matrix.core.process import run_command
from ci_matrix.core.variant import Variant
from ci_matrix.errors import MatrixConfigError
from ci_matrix.io.loader import load_matrix
from ci_matrix.io.schema import MatrixReport, VariantResult
from ci_matrix.io.writer import write_report
from ci_matrix.policy.verdict import (
    VariantFailureReason,
    VariantStatus,
    judge_variant,
    overall_exit_code,
)
from cov_pipeline.core.discovery import discover_binaries
from cov_pipeline.core.tool import InstrumentationTool, KcovTool
from cov_pipeline.core.uploader import CodecovUploader, CoverageUploader
from cov_pipeline.io.schema import CoverageOutcome
from cov_pipeline.pipeline import coverage_for_variant
from cov_pipeline.policy.profile import CoverageProfile
from cov_pipeline.policy.verdict import CoverageState

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT = ("./contrib/test.sh",)
DEFAULT_CONCURRENCY = 1

_UNSAFE_RUN_ID_RE = re.compile(r"[^A-Za-z0-9._-]+")

ToolFactory = Callable[[Path], InstrumentationTool]


@dataclass(frozen=True)
class RunOptions:
    """Per-invocation settings.  Passed explicitly; never read from globals."""

    project_dir: Path
    workspace_root: Path
    script: Sequence[str] = DEFAULT_SCRIPT
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: Optional[float] = None
    coverage_enabled: bool = True
    report_dir: Optional[Path] = None

    toolchain_env: str = "RUSTUP_TOOLCHAIN"
    target_dir_env: str = "CARGO_TARGET_DIR"
    base_env: Optional[Mapping[str, str]] = None
    profile: CoverageProfile = field(default_factory=CoverageProfile.default)


# ── Per-variant layout ───────────────────────────────────────────────────────

def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def variant_workspace(variant: Variant, options: RunOptions, run_id: str) -> Path:
    """``<workspace_root>/<run_id>/<variant_id>``; never shared between runs."""
    run_dir = Path(options.workspace_root) / _UNSAFE_RUN_ID_RE.sub("_", run_id)
    return run_dir / variant.variant_id


def target_dir(variant: Variant, options: RunOptions, run_id: str) -> Path:
    return variant_workspace(variant, options, run_id) / "target"


def variant_env(variant: Variant, options: RunOptions, run_id: str) -> Dict[str, str]:
    """Inherited environment + flags + toolchain + isolated target dir."""
    env = dict(options.base_env if options.base_env is not None else os.environ)
    # to_env() sets every alias, so inherited DO_* values never reach the script
    env.update(variant.flags.to_env())
    env[options.toolchain_env] = variant.toolchain_name
    env[options.target_dir_env] = str(target_dir(variant, options, run_id))
    env["CI_VARIANT_ID"] = variant.variant_id
    env["CI_RUN_ID"] = run_id
    return env


# ── Single variant ───────────────────────────────────────────────────────────

def run_variant(
    variant: Variant,
    options: RunOptions,
    cancel: Optional[threading.Event] = None,
    run_id: Optional[str] = None,
) -> VariantResult:
    """
    Run the verification script once for *variant* and judge the exit.

    The target dir starts empty, so discovery only ever sees what this
    invocation of the script produced.
    """
    run_id = run_id or new_run_id()
    workspace = variant_workspace(variant, options, run_id)
    target = target_dir(variant, options, run_id)
    if target.exists():
        logger.warning("Variant %s: clearing stale target dir %s", variant.variant_id, target)
        shutil.rmtree(target)
    target.mkdir(parents=True)

    logger.info(
        "Variant %s: running %s (toolchain=%s, flags=%s)",
        variant.variant_id, " ".join(options.script),
        variant.toolchain_name, variant.flags.as_dict(),
    )
    outcome = run_command(
        options.script,
        cwd=Path(options.project_dir),
        env=variant_env(variant, options, run_id),
        timeout=options.timeout,
        cancel=cancel,
    )
    status, reason = judge_variant(outcome)

    artifacts: List[str] = []
    if status == VariantStatus.SUCCEEDED:
        artifacts_dir = target / options.profile.artifacts_subdir
        artifacts = [
            str(p) for p in discover_binaries(artifacts_dir, options.profile.binary_prefix)
        ]
        logger.info("Variant %s: SUCCEEDED", variant.variant_id)
    else:
        logger.error(
            "Variant %s: FAILED (%s, exit %d)",
            variant.variant_id, reason.value, outcome.exit_code,
        )

    return VariantResult(
        variant_id=variant.variant_id,
        index=variant.index,
        toolchain=variant.toolchain_name,
        flags=variant.flags.as_dict(),
        status=status.value,
        exit_code=outcome.exit_code,
        failure_reason=reason.value if reason else None,
        error=outcome.error,
        duration_ms=outcome.duration_ms,
        workspace=str(workspace),
        produced_artifacts=artifacts,
    )


def _failed_result(
    variant: Variant, options: RunOptions, run_id: str, error: str
) -> VariantResult:
    return VariantResult(
        variant_id=variant.variant_id,
        index=variant.index,
        toolchain=variant.toolchain_name,
        flags=variant.flags.as_dict(),
        status=VariantStatus.FAILED.value,
        failure_reason=VariantFailureReason.INTERNAL_ERROR.value,
        error=error,
        workspace=str(variant_workspace(variant, options, run_id)),
    )


def _execute(
    variant: Variant,
    options: RunOptions,
    tool_factory: ToolFactory,
    uploader: CoverageUploader,
    cancel: Optional[threading.Event],
    run_id: str,
) -> VariantResult:
    """Verification, then (maybe) coverage.  Always returns a terminal result."""
    try:
        result = run_variant(variant, options, cancel, run_id)
    except Exception as e:
        logger.error("Variant %s crashed: %s", variant.variant_id, e, exc_info=True)
        return _failed_result(variant, options, run_id, str(e))

    if not options.coverage_enabled:
        return result

    workspace = variant_workspace(variant, options, run_id)
    target = target_dir(variant, options, run_id)
    try:
        result.coverage = coverage_for_variant(
            variant,
            VariantStatus(result.status),
            artifacts_dir=target / options.profile.artifacts_subdir,
            coverage_root=target / options.profile.coverage_subdir,
            tool=tool_factory(workspace),
            uploader=uploader,
            profile=options.profile,
            cancel=cancel,
        )
    except Exception as e:
        logger.error(
            "Coverage for %s crashed: %s", variant.variant_id, e, exc_info=True
        )
        result.coverage = CoverageOutcome(
            profile_id=options.profile.profile_id,
            state=CoverageState.COVERAGE_SKIPPED_OR_FAILED.value,
            error=str(e),
        )
    return result


# ── Matrix ───────────────────────────────────────────────────────────────────

def run_matrix(
    variants: Sequence[Variant],
    options: RunOptions,
    tool_factory: Optional[ToolFactory] = None,
    uploader: Optional[CoverageUploader] = None,
    cancel: Optional[threading.Event] = None,
    run_id: Optional[str] = None,
) -> MatrixReport:
    """
    Run every variant independently and collect one result per variant.

    Parameters
    ----------
    variants : sequence of Variant
        The static, already-validated matrix.
    options : RunOptions
        Script, directories, concurrency and coverage profile.
    tool_factory : callable, optional
        ``workspace -> InstrumentationTool``.  Defaults to ``KcovTool``.
    uploader : CoverageUploader, optional
        Defaults to ``CodecovUploader`` run from the project directory.
    cancel : threading.Event, optional
        Shared abort signal; in-flight processes are terminated.

    Returns
    -------
    MatrixReport with results in declaration order.
    """
    profile = options.profile
    if tool_factory is None:
        tool_factory = lambda ws: KcovTool(profile, ws, cancel)  # noqa: E731
    if uploader is None:
        uploader = CodecovUploader(profile, Path(options.project_dir))

    report = MatrixReport(run_id=run_id or new_run_id())
    logger.info(
        "Matrix run %s: %d variants, concurrency=%d",
        report.run_id, len(variants), options.concurrency,
    )

    workers = max(1, options.concurrency)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="variant") as pool:
        futures = [
            pool.submit(
                _execute, v, options, tool_factory, uploader, cancel, report.run_id
            )
            for v in variants
        ]
        report.variants = [f.result() for f in futures]

    report.exit_code = overall_exit_code(
        VariantStatus(r.status) for r in report.variants
    )
    report.overall_status = (
        VariantStatus.SUCCEEDED.value if report.exit_code == 0
        else VariantStatus.FAILED.value
    )
    report.finished_at = datetime.now(timezone.utc).isoformat()

    if options.report_dir:
        path = write_report(report, options.report_dir)
        logger.info("Wrote matrix report to %s", path)

    logger.info(
        "Matrix run %s finished: %s (%d/%d variants succeeded)",
        report.run_id, report.overall_status,
        sum(1 for r in report.variants if r.status == VariantStatus.SUCCEEDED.value),
        len(report.variants),
    )
    return report


# ── CLI ──────────────────────────────────────────────────────────────────────

def _install_cancel_handlers(cancel: threading.Event) -> None:
    def _handler(signum, frame):
        logger.warning("Received signal %d, cancelling in-flight variants", signum)
        cancel.set()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for ci_matrix."""
    parser = argparse.ArgumentParser(
        description="ci-matrix — run a verification script once per matrix variant",
    )
    parser.add_argument(
        "--matrix",
        required=True,
        help="Matrix declaration (.json, or .travis.yml style .yml/.yaml)",
    )
    parser.add_argument(
        "--project-dir",
        default=os.getenv("CI_MATRIX_PROJECT_DIR", "."),
        help="Checkout the script runs in (default: cwd)",
    )
    parser.add_argument(
        "--script",
        default=os.getenv("CI_MATRIX_SCRIPT", DEFAULT_SCRIPT[0]),
        help="Verification script (default: ./contrib/test.sh)",
    )
    parser.add_argument(
        "--workspace",
        default=os.getenv("CI_MATRIX_WORKSPACE", "/tmp/ci_matrix"),
        help="Root for per-variant workspaces",
    )
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Per-variant script timeout in seconds",
    )
    parser.add_argument("--report-dir", default=None, help="Write matrix_report.json here")
    parser.add_argument(
        "--no-coverage", action="store_true",
        help="Never run the coverage pipeline",
    )
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )

    try:
        variants = load_matrix(Path(args.matrix))
    except MatrixConfigError as e:
        logger.error("Invalid matrix: %s", e)
        return 2

    profile = CoverageProfile.default()
    token = os.getenv("CODECOV_TOKEN")
    if token:
        profile = replace(profile, upload_token=token)

    options = RunOptions(
        project_dir=Path(args.project_dir).resolve(),
        workspace_root=Path(args.workspace).resolve(),
        script=(args.script,),
        concurrency=args.concurrency,
        timeout=args.timeout,
        coverage_enabled=not args.no_coverage,
        report_dir=Path(args.report_dir) if args.report_dir else None,
        profile=profile,
    )

    cancel = threading.Event()
    _install_cancel_handlers(cancel)
    report = run_matrix(variants, options, cancel=cancel, run_id=args.run_id)

    print("\n" + "=" * 60)
    print("MATRIX SUMMARY")
    print("=" * 60)
    for r in report.variants:
        cov = r.coverage.state if r.coverage else "-"
        print(f"  {r.variant_id:20s}: {r.status:10s} coverage={cov}")
    print(f"  {'overall':20s}: {report.overall_status}")

    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
