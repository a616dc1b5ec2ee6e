"""
cov_pipeline — Post-success coverage pipeline for matrix variants.

Acquires and builds the instrumentation tool (kcov), discovers produced
binaries, instruments each one in isolation, and uploads the merged result.
Coverage is a side channel: nothing here changes a variant's verdict.
"""

__version__ = "0.1.0"
PIPELINE_VERSION = "v0"
PACKAGE_NAME = "cov_pipeline"
SCHEMA_VERSION = "0.1"
