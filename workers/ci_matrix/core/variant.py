"""
Variant — one immutable matrix entry.
"""
import re
from dataclasses import dataclass

from ci_matrix.core.flags import FlagSet
from ci_matrix.core.toolchain import ToolchainSelector, resolve

_UNSAFE_ID_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class Variant:
    """A toolchain selector plus its flag set, at a fixed matrix position."""

    index: int
    toolchain: ToolchainSelector
    flags: FlagSet

    @property
    def toolchain_name(self) -> str:
        return resolve(self.toolchain)

    @property
    def variant_id(self) -> str:
        """Filesystem-safe id, unique within a matrix: ``"<index>-<toolchain>"``."""
        return f"{self.index}-{_UNSAFE_ID_RE.sub('_', self.toolchain_name)}"

    @property
    def collects_coverage(self) -> bool:
        return self.flags.collect_coverage
