"""
Profile — coverage policy knobs.

Everything the pipeline treats as fixed policy (tool location, exclusion
list, strict verification, binary naming prefix) lives here so the
pipeline itself carries no opinions.
"""
from dataclasses import dataclass, field
from typing import List, Optional

KCOV_SOURCE_URL = "https://github.com/SimonKagstrom/kcov/archive/master.tar.gz"
CODECOV_UPLOADER_URL = "https://codecov.io/bash"


@dataclass(frozen=True)
class CoverageProfile:
    """Describes how binaries are discovered, instrumented and uploaded."""

    profile_id: str

    # Tool acquisition
    tool_source_url: str = KCOV_SOURCE_URL
    tool_dir: str = "kcov-build"          # staging root, relative to the variant workspace

    # Discovery
    binary_prefix: str = "bitcoin-"
    artifacts_subdir: str = "debug"       # scanned below the variant's target dir

    # Instrumentation
    exclude_patterns: List[str] = field(default_factory=list)
    verify: bool = True
    coverage_subdir: str = "cov"          # per-binary outputs live in <target>/cov/<name>
    instrument_concurrency: int = 1
    instrument_timeout: Optional[float] = 600.0
    build_timeout: Optional[float] = 1800.0

    # Upload
    uploader_url: str = CODECOV_UPLOADER_URL
    upload_token: Optional[str] = None
    upload_timeout: Optional[float] = 300.0

    @classmethod
    def default(cls) -> "CoverageProfile":
        """kcov built from master, cargo cache and system libs excluded."""
        return cls(
            profile_id="kcov-master-codecov",
            exclude_patterns=["/.cargo", "/usr/lib"],
            verify=True,
        )
