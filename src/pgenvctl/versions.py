"""PostgreSQL version identifiers.

Two grammars are accepted:

* ``MAJOR.MINOR[.PATCH]`` for releases (``10.1``, ``9.5.4``);
* ``MAJOR(beta|rc)[N]`` for pre-releases (``11beta1``, ``12rc``).

Parsing never produces a partially valid value: :func:`parse_version`
returns a :class:`VersionParseResult` that either carries a version or an
error message.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from packaging.version import InvalidVersion, Version

from .errors import UserInputError

_NUMBER = r"(?:0|[1-9][0-9]*)"
_RELEASE_RE = re.compile(
    rf"^(?P<major>[1-9][0-9]*)\.(?P<minor>{_NUMBER})(?:\.(?P<patch>{_NUMBER}))?$"
)
_PRERELEASE_RE = re.compile(r"^(?P<major>[1-9][0-9]*)(?P<kind>beta|rc)(?P<number>[1-9][0-9]*)?$")


class VersionError(UserInputError):
    """Raised when a version string does not match either grammar."""


@dataclass(frozen=True, slots=True)
class Release:
    """A released version such as ``9.6.4`` or ``12.1``."""

    major: int
    minor: int
    patch: int | None = None

    def __str__(self) -> str:
        """Return the canonical textual form."""
        text = f"{self.major}.{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        return text


@dataclass(frozen=True, slots=True)
class PreRelease:
    """A beta or release-candidate version such as ``11beta1``."""

    major: int
    kind: Literal["beta", "rc"]
    number: int | None = None

    def __str__(self) -> str:
        """Return the canonical textual form."""
        suffix = "" if self.number is None else str(self.number)
        return f"{self.major}{self.kind}{suffix}"


VersionID = Release | PreRelease


@dataclass(frozen=True, slots=True)
class VersionParseResult:
    """Outcome of :func:`parse_version`."""

    text: str
    version: VersionID | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return ``True`` when parsing succeeded."""
        return self.version is not None


def parse_version(text: str) -> VersionParseResult:
    """Parse *text* into a :data:`VersionID`."""
    candidate = text.strip()
    match = _RELEASE_RE.match(candidate)
    if match:
        patch = match.group("patch")
        return VersionParseResult(
            text=candidate,
            version=Release(
                major=int(match.group("major")),
                minor=int(match.group("minor")),
                patch=int(patch) if patch is not None else None,
            ),
        )
    match = _PRERELEASE_RE.match(candidate)
    if match:
        number = match.group("number")
        kind: Literal["beta", "rc"] = "beta" if match.group("kind") == "beta" else "rc"
        return VersionParseResult(
            text=candidate,
            version=PreRelease(
                major=int(match.group("major")),
                kind=kind,
                number=int(number) if number is not None else None,
            ),
        )
    return VersionParseResult(
        text=candidate,
        error=(
            f"'{candidate}' is not a valid PostgreSQL version. "
            "Expected MAJOR.MINOR[.PATCH] (e.g. 9.6.4, 12.1) or MAJOR(beta|rc)[N] (e.g. 11beta1)."
        ),
    )


def require_version(text: str) -> VersionID:
    """Return the parsed version for *text* or raise :class:`VersionError`."""
    result = parse_version(text)
    if result.version is None:
        raise VersionError(result.error or f"Invalid version '{text}'.")
    return result.version


def is_valid_version(text: str) -> bool:
    """Return ``True`` when *text* matches one of the accepted grammars."""
    return parse_version(text).ok


def version_sort_key(text: str) -> tuple[int, Version | str]:
    """Return a key that orders version strings naturally.

    Strings that PEP 440 cannot interpret sort after every valid one.
    """
    try:
        return (0, Version(text))
    except InvalidVersion:
        return (1, text)


def sort_versions(versions: Iterable[str]) -> list[str]:
    """Return *versions* sorted in natural version order."""
    return sorted(set(versions), key=version_sort_key)


__all__ = [
    "PreRelease",
    "Release",
    "VersionError",
    "VersionID",
    "VersionParseResult",
    "is_valid_version",
    "parse_version",
    "require_version",
    "sort_versions",
    "version_sort_key",
]
