"""
ci_matrix — Variant-matrix verification runner.

Runs one verification script per declared variant (toolchain selector +
environment flag set) and hands successful coverage variants to
cov_pipeline.  Overall status is the OR of variant failures only.
"""

__version__ = "0.1.0"
RUNNER_VERSION = "v0"
PACKAGE_NAME = "ci_matrix"
SCHEMA_VERSION = "0.1"
