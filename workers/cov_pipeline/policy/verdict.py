"""
Verdict — coverage states and reason enums.

Coverage failures are contained: every reason here lives in the coverage
outcome of a variant and never reaches the variant's own status.
"""
from enum import Enum, unique


@unique
class CoverageState(str, Enum):
    COVERAGE_RUNNING = "COVERAGE_RUNNING"
    COVERAGE_DONE = "COVERAGE_DONE"
    COVERAGE_SKIPPED_OR_FAILED = "COVERAGE_SKIPPED_OR_FAILED"


@unique
class CoverageReason(str, Enum):
    VARIANT_FAILED = "VARIANT_FAILED"
    PREREQUISITE_FAILED = "PREREQUISITE_FAILED"
    NO_BINARIES = "NO_BINARIES"
    NO_SUCCESSFUL_ARTIFACTS = "NO_SUCCESSFUL_ARTIFACTS"
    CANCELLED = "CANCELLED"


@unique
class ArtifactStatus(str, Enum):
    OK = "OK"
    FAILED = "FAILED"


@unique
class ArtifactFailureReason(str, Enum):
    INSTRUMENTATION_FAILED = "INSTRUMENTATION_FAILED"
    LAUNCH_ERROR = "LAUNCH_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@unique
class UploadStatus(str, Enum):
    UPLOADED = "UPLOADED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class CoveragePrerequisiteError(RuntimeError):
    """The instrumentation tool could not be fetched or built."""


class UploadError(RuntimeError):
    """The reporting service submission did not complete."""
