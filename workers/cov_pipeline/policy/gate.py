"""
Gate — the two-part coverage precondition.

Coverage runs only when the variant asked for it AND its verification
script succeeded.  The guard is evaluated once per variant.
"""
from typing import Optional

from ci_matrix.core.variant import Variant
from ci_matrix.policy.verdict import VariantStatus
from cov_pipeline.policy.verdict import CoverageReason


def should_run_coverage(variant: Variant, status: VariantStatus) -> bool:
    return variant.collects_coverage and status == VariantStatus.SUCCEEDED


def skip_reason(variant: Variant, status: VariantStatus) -> Optional[CoverageReason]:
    """
    Why coverage was not started, or None if the variant never asked for it
    (or the gate is open).
    """
    if not variant.collects_coverage:
        return None
    if status != VariantStatus.SUCCEEDED:
        return CoverageReason.VARIANT_FAILED
    return None
