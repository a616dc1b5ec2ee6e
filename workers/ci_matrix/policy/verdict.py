"""
Verdict — variant status, failure reasons, and the overall exit code.

Only the verification script decides a variant's status.  Coverage
outcomes are recorded beside it and are never consulted here.
"""
from enum import Enum, unique
from typing import Iterable, Optional, Tuple

from ci_matrix.core.process import CommandOutcome, Termination


@unique
class VariantStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({VariantStatus.SUCCEEDED, VariantStatus.FAILED})


@unique
class VariantFailureReason(str, Enum):
    NONZERO_EXIT = "NONZERO_EXIT"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    LAUNCH_ERROR = "LAUNCH_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_TERMINATION_REASONS = {
    Termination.TIMEOUT: VariantFailureReason.TIMEOUT,
    Termination.CANCELLED: VariantFailureReason.CANCELLED,
    Termination.LAUNCH_ERROR: VariantFailureReason.LAUNCH_ERROR,
}


def judge_variant(
    outcome: CommandOutcome,
) -> Tuple[VariantStatus, Optional[VariantFailureReason]]:
    """Exit code 0 → SUCCEEDED; anything else → FAILED with a reason."""
    if outcome.ok:
        return VariantStatus.SUCCEEDED, None
    if outcome.termination == Termination.EXITED:
        return VariantStatus.FAILED, VariantFailureReason.NONZERO_EXIT
    return VariantStatus.FAILED, _TERMINATION_REASONS[outcome.termination]


def overall_exit_code(statuses: Iterable[VariantStatus]) -> int:
    """1 if any variant failed, else 0."""
    return 1 if any(s == VariantStatus.FAILED for s in statuses) else 0
