"""
Discovery — find candidate binaries in a variant's artifacts directory.

A candidate is a regular file directly inside the directory whose name
starts with the project prefix and which carries an executable bit.
Everything else (dep files, rlibs, directories, decoys) is skipped
without error.
"""
import logging
import os
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


def is_candidate(path: Path, prefix: str) -> bool:
    if not path.name.startswith(prefix):
        return False
    if not path.is_file():
        return False
    return os.access(path, os.X_OK)


def discover_binaries(artifacts_dir: Path, prefix: str) -> List[Path]:
    """Return matching executables in *artifacts_dir*, sorted by name."""
    if not artifacts_dir.is_dir():
        logger.warning("Artifacts directory %s does not exist", artifacts_dir)
        return []

    found = sorted(
        (p for p in artifacts_dir.iterdir() if is_candidate(p, prefix)),
        key=lambda p: p.name,
    )
    logger.info(
        "Discovered %d binaries with prefix %r in %s", len(found), prefix, artifacts_dir
    )
    return found
