"""
Writer — serialize the matrix report to JSON.

Filesystem layout:
    <report_dir>/<run_id>/matrix_report.json
"""
import json
from pathlib import Path
from typing import Optional

from ci_matrix.io.schema import MatrixReport

REPORT_FILENAME = "matrix_report.json"


def report_path(report_dir: Path, run_id: str) -> Path:
    return Path(report_dir) / run_id / REPORT_FILENAME


def write_report(report: MatrixReport, report_dir: Path) -> Path:
    """Write the report under *report_dir*/<run_id>/ and return its path."""
    path = report_path(report_dir, report.run_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return path


def read_report(report_dir: Path, run_id: str) -> Optional[MatrixReport]:
    path = report_path(report_dir, run_id)
    if not path.exists():
        return None
    return MatrixReport.model_validate_json(path.read_text())
