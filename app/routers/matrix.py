"""
Matrix Router
Submit a declared variant matrix and read back its report.

Runs execute in the background (one at a time per submission); the
report is written to MATRIX_REPORT_DIR/<run_id>/matrix_report.json and
served from disk once finished.
"""
import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel

from app.config import Settings
from ci_matrix import PACKAGE_NAME, RUNNER_VERSION, SCHEMA_VERSION  # type: ignore
from ci_matrix.core.variant import Variant  # type: ignore
from ci_matrix.errors import MatrixConfigError  # type: ignore
from ci_matrix.io.loader import build_variants  # type: ignore
from ci_matrix.io.schema import MatrixDeclaration, MatrixReport  # type: ignore
from ci_matrix.io.writer import REPORT_FILENAME, read_report  # type: ignore
from ci_matrix.runner import run_matrix  # type: ignore

logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

def get_settings() -> Settings:
    return Settings()


# =============================================================================
# Request/Response Models
# =============================================================================

class MatrixRunResponse(BaseModel):
    """Response after submitting a matrix run."""
    package_name: str = PACKAGE_NAME
    runner_version: str = RUNNER_VERSION
    schema_version: str = SCHEMA_VERSION
    run_id: str
    status: str
    variants: int


class MatrixRunStatus(BaseModel):
    """Status of a run that has not produced a report yet."""
    run_id: str
    status: str


# =============================================================================
# Run registry (process-local)
# =============================================================================

_active_runs: Dict[str, threading.Event] = {}
_registry_lock = threading.Lock()


def active_run_ids() -> List[str]:
    with _registry_lock:
        return sorted(_active_runs)


def cancel_all() -> None:
    with _registry_lock:
        for cancel in _active_runs.values():
            cancel.set()


def _execute_run(run_id: str, variants: List[Variant], settings: Settings) -> None:
    with _registry_lock:
        cancel = _active_runs.setdefault(run_id, threading.Event())
    try:
        run_matrix(variants, settings.run_options(), cancel=cancel, run_id=run_id)
    except Exception as e:
        logger.error("Matrix run %s crashed: %s", run_id, e, exc_info=True)
    finally:
        with _registry_lock:
            _active_runs.pop(run_id, None)


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.post("/runs", response_model=MatrixRunResponse, status_code=status.HTTP_202_ACCEPTED)
def submit_run(
    declaration: MatrixDeclaration,
    background: BackgroundTasks,
    settings: Settings = Depends(get_settings),
):
    """Validate a matrix declaration and run it in the background."""
    try:
        variants = build_variants(declaration)
    except MatrixConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    run_id = uuid.uuid4().hex[:12]
    with _registry_lock:
        _active_runs[run_id] = threading.Event()
    background.add_task(_execute_run, run_id, variants, settings)

    logger.info("Queued matrix run %s (%d variants)", run_id, len(variants))
    return MatrixRunResponse(run_id=run_id, status="QUEUED", variants=len(variants))


@router.get("/runs", response_model=List[str])
def list_runs(settings: Settings = Depends(get_settings)):
    """Run ids with a finished report on disk."""
    root = Path(settings.MATRIX_REPORT_DIR)
    if not root.is_dir():
        return []
    return sorted(p.parent.name for p in root.glob(f"*/{REPORT_FILENAME}"))


@router.get("/runs/{run_id}", response_model=MatrixReport)
def get_run(run_id: str, settings: Settings = Depends(get_settings)):
    """Finished report, or 409 while the run is still in flight."""
    report = read_report(Path(settings.MATRIX_REPORT_DIR), run_id)
    if report is not None:
        return report

    with _registry_lock:
        running = run_id in _active_runs
    if running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {run_id} is still running",
        )
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Run {run_id} not found",
    )


@router.post("/runs/{run_id}/cancel", response_model=MatrixRunStatus)
def cancel_run(run_id: str):
    """Terminate in-flight processes of a running matrix."""
    with _registry_lock:
        cancel = _active_runs.get(run_id)
    if cancel is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} is not running",
        )
    cancel.set()
    return MatrixRunStatus(run_id=run_id, status="CANCELLING")
