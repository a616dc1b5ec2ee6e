"""
Flags — the per-variant environment flag set.

A FlagSet is an immutable mapping from canonical flag name to a bool or
string value.  The same set is read by the orchestrator (coverage gate)
and exposed to the verification script as process environment variables.

Canonical names and their process-visible aliases:

    run_fuzzing          DO_FUZZ
    collect_coverage     DO_COV
    is_dependency_check  AS_DEPENDENCY
    run_benchmarks       DO_BENCH

Flags without an alias are exposed under their upper-cased name.  The four
aliases are always exported, ``false`` when undeclared.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Dict, Iterator, Union

from ci_matrix.errors import MatrixConfigError

FlagValue = Union[bool, str]

RUN_FUZZING = "run_fuzzing"
COLLECT_COVERAGE = "collect_coverage"
IS_DEPENDENCY_CHECK = "is_dependency_check"
RUN_BENCHMARKS = "run_benchmarks"

ENV_ALIASES: Dict[str, str] = {
    RUN_FUZZING: "DO_FUZZ",
    COLLECT_COVERAGE: "DO_COV",
    IS_DEPENDENCY_CHECK: "AS_DEPENDENCY",
    RUN_BENCHMARKS: "DO_BENCH",
}
_ALIAS_TO_NAME: Dict[str, str] = {v: k for k, v in ENV_ALIASES.items()}

_FLAG_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _coerce(value: object) -> FlagValue:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        return value
    raise MatrixConfigError(
        f"Flag values must be bool or str, got {type(value).__name__}"
    )


def canonical_name(name: str) -> str:
    """
    Map an env alias (``DO_COV``, ``do_cov``) or canonical name to the
    canonical name.  Known names match case-insensitively, since the
    exported name of any flag is its upper-cased form.
    """
    if name.upper() in _ALIAS_TO_NAME:
        return _ALIAS_TO_NAME[name.upper()]
    if name.lower() in ENV_ALIASES:
        return name.lower()
    return name


class FlagSet(Mapping):
    """Read-only flag mapping; item assignment raises ``TypeError``."""

    __slots__ = ("_data",)

    def __init__(self, flags: Mapping[str, object] | None = None):
        data: Dict[str, FlagValue] = {}
        for raw_name, raw_value in (flags or {}).items():
            if not isinstance(raw_name, str) or not _FLAG_NAME_RE.match(raw_name):
                raise MatrixConfigError(f"Invalid flag name: {raw_name!r}")
            data[canonical_name(raw_name)] = _coerce(raw_value)

        exported: Dict[str, str] = {}
        for name in data:
            key = ENV_ALIASES.get(name, name.upper())
            if key in exported:
                raise MatrixConfigError(
                    f"Flags {exported[key]!r} and {name!r} both export as {key}"
                )
            exported[key] = name
        object.__setattr__(self, "_data", MappingProxyType(data))

    def __setattr__(self, name, value):
        raise TypeError("FlagSet is immutable")

    def __getitem__(self, key: str) -> FlagValue:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        return hash(frozenset(self._data.items()))

    def __eq__(self, other) -> bool:
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"FlagSet({dict(self._data)!r})"

    def enabled(self, name: str) -> bool:
        """True only for a boolean ``True`` value; missing flags are off."""
        return self._data.get(name) is True

    @property
    def collect_coverage(self) -> bool:
        return self.enabled(COLLECT_COVERAGE)

    @property
    def run_fuzzing(self) -> bool:
        return self.enabled(RUN_FUZZING)

    @property
    def is_dependency_check(self) -> bool:
        return self.enabled(IS_DEPENDENCY_CHECK)

    @property
    def run_benchmarks(self) -> bool:
        return self.enabled(RUN_BENCHMARKS)

    def to_env(self) -> Dict[str, str]:
        """
        Render the flags as process environment name/value pairs.

        All four aliases are always present; undeclared ones are ``"false"``.
        """
        env: Dict[str, str] = {alias: "false" for alias in ENV_ALIASES.values()}
        for name, value in sorted(self._data.items()):
            key = ENV_ALIASES.get(name, name.upper())
            if isinstance(value, bool):
                env[key] = "true" if value else "false"
            else:
                env[key] = value
        return env

    def as_dict(self) -> Dict[str, FlagValue]:
        return dict(self._data)

    @classmethod
    def from_env_string(cls, text: str) -> "FlagSet":
        """
        Parse a CI ``env:`` line such as ``"DO_FUZZ=true DO_COV=true"``.

        Tokens must have the form ``NAME=VALUE``; anything else is a
        configuration error.
        """
        flags: Dict[str, str] = {}
        for token in text.split():
            name, sep, value = token.partition("=")
            if not sep or not name:
                raise MatrixConfigError(f"Malformed env token: {token!r}")
            flags[name] = value.strip("'\"")
        return cls(flags)
