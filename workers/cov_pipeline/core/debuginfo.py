"""
Debug info — record DWARF section presence for a binary.

Purely informational: the instrumentation tool's own strict verification
decides whether a binary can be instrumented.  Non-ELF files report
``has_debug_info=None``.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile


@dataclass(frozen=True)
class DebugInfo:
    has_debug_info: Optional[bool]
    debug_sections: List[str] = field(default_factory=list)


def inspect_debug_info(path: Path) -> DebugInfo:
    try:
        with open(path, "rb") as f:
            elffile = ELFFile(f)
            names = [s.name for s in elffile.iter_sections()]
    except (ELFError, OSError):
        return DebugInfo(has_debug_info=None)

    debug_sections = [n for n in names if n.startswith(".debug_")]
    return DebugInfo(
        has_debug_info=".debug_info" in names,
        debug_sections=debug_sections,
    )
