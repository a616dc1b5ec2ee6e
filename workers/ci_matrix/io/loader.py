"""
Loader — matrix declaration files → immutable Variant list.

Accepted inputs:
  *.json          {"variants": [{"toolchain": "stable", "flags": {...}}, ...]}
  *.yml / *.yaml  a .travis.yml style file: ``matrix.include`` (or
                  ``jobs.include``) entries with ``rust:`` and ``env:``.

All validation happens here.  Anything that cannot be executed as
declared raises MatrixConfigError before a single variant runs.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from ci_matrix.core.flags import FlagSet
from ci_matrix.core.toolchain import parse_selector
from ci_matrix.core.variant import Variant
from ci_matrix.errors import MatrixConfigError
from ci_matrix.io.schema import MatrixDeclaration, VariantSpec

logger = logging.getLogger(__name__)


def build_variants(declaration: MatrixDeclaration) -> List[Variant]:
    """Resolve selectors, freeze flags, enforce the coverage designation."""
    if not declaration.variants:
        raise MatrixConfigError("Matrix declares no variants")

    variants = [
        Variant(
            index=i,
            toolchain=parse_selector(spec.toolchain),
            flags=FlagSet(spec.flags),
        )
        for i, spec in enumerate(declaration.variants)
    ]

    coverage_ids = [v.variant_id for v in variants if v.collects_coverage]
    if declaration.single_coverage_variant and len(coverage_ids) > 1:
        raise MatrixConfigError(
            f"Only one variant may collect coverage, found {len(coverage_ids)}: "
            f"{', '.join(coverage_ids)}"
        )
    return variants


def _env_lines(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    raise MatrixConfigError(f"Unsupported env entry: {value!r}")


def declaration_from_travis(payload: Dict[str, Any]) -> MatrixDeclaration:
    """Translate the ``matrix.include`` section of a .travis.yml payload."""
    section = payload.get("matrix") or payload.get("jobs") or {}
    include = section.get("include") if isinstance(section, dict) else None
    if not include:
        raise MatrixConfigError("No matrix.include entries found")

    global_env: List[str] = []
    top_env = payload.get("env")
    if isinstance(top_env, dict):
        global_env = _env_lines(top_env.get("global"))

    specs: List[VariantSpec] = []
    for entry in include:
        if not isinstance(entry, dict) or "rust" not in entry:
            raise MatrixConfigError(f"Matrix entry without toolchain: {entry!r}")
        flags: Dict[str, Any] = {}
        for line in global_env + _env_lines(entry.get("env")):
            flags.update(FlagSet.from_env_string(line).as_dict())
        specs.append(VariantSpec(toolchain=entry["rust"], flags=flags))
    return MatrixDeclaration(variants=specs)


def load_declaration(path: Path) -> MatrixDeclaration:
    path = Path(path)
    if not path.exists():
        raise MatrixConfigError(f"Matrix file not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yml", ".yaml"):
            payload = yaml.safe_load(text) or {}
            if not isinstance(payload, dict):
                raise MatrixConfigError(f"{path}: expected a mapping at top level")
            declaration = declaration_from_travis(payload)
        else:
            declaration = MatrixDeclaration.model_validate(json.loads(text))
    except (json.JSONDecodeError, yaml.YAMLError, ValidationError) as e:
        raise MatrixConfigError(f"{path}: {e}") from e

    logger.info("Loaded %d variants from %s", len(declaration.variants), path)
    return declaration


def load_matrix(path: Path) -> List[Variant]:
    return build_variants(load_declaration(path))
