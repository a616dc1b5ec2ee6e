"""
Toolchain — selector parsing and resolution.

A selector is one of the release channels (stable / beta / nightly) or a
pinned ``MAJOR.MINOR[.PATCH]`` version.  Parsing happens when the matrix is
loaded, so an unresolvable selector surfaces as a configuration error
before any variant starts.
"""
import re
from dataclasses import dataclass
from enum import Enum, unique
from typing import Optional

from ci_matrix.errors import MatrixConfigError

_VERSION_RE = re.compile(r"^\d+\.\d+(?:\.\d+)?$")


@unique
class Channel(str, Enum):
    STABLE = "stable"
    BETA = "beta"
    NIGHTLY = "nightly"
    PINNED = "pinned"


@dataclass(frozen=True)
class ToolchainSelector:
    """A channel, or ``PINNED`` plus an exact version."""

    channel: Channel
    version: Optional[str] = None

    def __post_init__(self):
        if self.channel == Channel.PINNED:
            if not self.version or not _VERSION_RE.match(self.version):
                raise MatrixConfigError(
                    f"Pinned toolchain needs a MAJOR.MINOR[.PATCH] version, got {self.version!r}"
                )
        elif self.version is not None:
            raise MatrixConfigError(
                f"Channel {self.channel.value!r} does not take a version"
            )

    def __str__(self) -> str:
        return resolve(self)


def parse_selector(text: object) -> ToolchainSelector:
    """
    Parse ``stable`` / ``beta`` / ``nightly`` / ``1.37.0``.

    Only strings are accepted.  A YAML or JSON number such as ``1.40``
    has already lost its trailing zero, so it is rejected rather than
    pinned to the wrong release.
    """
    if not isinstance(text, str):
        raise MatrixConfigError(
            f"Toolchain selector must be a string, got {text!r}; quote pinned versions"
        )

    value = text.strip()
    lowered = value.lower()
    for channel in (Channel.STABLE, Channel.BETA, Channel.NIGHTLY):
        if lowered == channel.value:
            return ToolchainSelector(channel)

    if _VERSION_RE.match(value):
        return ToolchainSelector(Channel.PINNED, value)

    raise MatrixConfigError(f"Unresolvable toolchain selector: {text!r}")


def resolve(selector: ToolchainSelector) -> str:
    """Return the single concrete toolchain name handed to the script."""
    if selector.channel == Channel.PINNED:
        return selector.version  # type: ignore[return-value]
    return selector.channel.value
