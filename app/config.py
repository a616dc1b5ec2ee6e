"""
Application configuration
"""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

from ci_matrix.runner import RunOptions
from cov_pipeline.policy.profile import (
    CODECOV_UPLOADER_URL,
    KCOV_SOURCE_URL,
    CoverageProfile,
)


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "CI Matrix API"
    API_VERSION: str = "0.1.0"

    # Matrix runs
    MATRIX_PROJECT_DIR: str = "/src/project"
    MATRIX_SCRIPT: str = "./contrib/test.sh"
    MATRIX_WORKSPACE: str = "/tmp/ci_matrix"
    MATRIX_REPORT_DIR: str = "/files/matrix_reports"
    MATRIX_CONCURRENCY: int = 1
    MATRIX_TIMEOUT: Optional[float] = None  # seconds, per variant
    MATRIX_TOOLCHAIN_ENV: str = "RUSTUP_TOOLCHAIN"
    MATRIX_TARGET_DIR_ENV: str = "CARGO_TARGET_DIR"

    # Coverage
    COVERAGE_ENABLED: bool = True
    COVERAGE_TOOL_URL: str = KCOV_SOURCE_URL
    COVERAGE_BINARY_PREFIX: str = "bitcoin-"
    COVERAGE_EXCLUDE_PATTERNS: List[str] = ["/.cargo", "/usr/lib"]
    COVERAGE_INSTRUMENT_CONCURRENCY: int = 1
    CODECOV_URL: str = CODECOV_UPLOADER_URL
    CODECOV_TOKEN: Optional[str] = None

    def coverage_profile(self) -> CoverageProfile:
        return CoverageProfile(
            profile_id="kcov-master-codecov",
            tool_source_url=self.COVERAGE_TOOL_URL,
            binary_prefix=self.COVERAGE_BINARY_PREFIX,
            exclude_patterns=list(self.COVERAGE_EXCLUDE_PATTERNS),
            verify=True,
            instrument_concurrency=self.COVERAGE_INSTRUMENT_CONCURRENCY,
            uploader_url=self.CODECOV_URL,
            upload_token=self.CODECOV_TOKEN,
        )

    def run_options(self) -> RunOptions:
        return RunOptions(
            project_dir=Path(self.MATRIX_PROJECT_DIR),
            workspace_root=Path(self.MATRIX_WORKSPACE),
            script=(self.MATRIX_SCRIPT,),
            concurrency=self.MATRIX_CONCURRENCY,
            timeout=self.MATRIX_TIMEOUT,
            coverage_enabled=self.COVERAGE_ENABLED,
            report_dir=Path(self.MATRIX_REPORT_DIR),
            toolchain_env=self.MATRIX_TOOLCHAIN_ENV,
            target_dir_env=self.MATRIX_TARGET_DIR_ENV,
            profile=self.coverage_profile(),
        )

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
