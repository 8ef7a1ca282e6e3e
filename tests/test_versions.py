"""Version identifier parsing tests."""
from __future__ import annotations

import pytest

from pgenvctl.errors import UserInputError
from pgenvctl.versions import (
    PreRelease,
    Release,
    VersionError,
    is_valid_version,
    parse_version,
    require_version,
    sort_versions,
)


@pytest.mark.parametrize(
    "text",
    ["10.1", "9.5.4", "9.6.24", "16.0", "7.4.30", "11beta1", "12rc", "12rc1", "15beta10"],
)
def test_accepts_both_grammars(text: str) -> None:
    """Releases and pre-releases validate and round-trip textually."""
    result = parse_version(text)

    assert result.ok
    assert str(result.version) == text


@pytest.mark.parametrize(
    "text",
    ["10", "0.9", "abc", "", "9.", "9.6.4.1", "09.6", "9.06", "11alpha1", "beta1", "12rc0", "v12.1"],
)
def test_rejects_everything_else(text: str) -> None:
    """Anything outside the two grammars is invalid."""
    result = parse_version(text)

    assert not result.ok
    assert result.version is None
    assert result.error
    assert is_valid_version(text) is False


def test_parse_returns_tagged_variants() -> None:
    """Releases and pre-releases map to distinct types."""
    assert parse_version("9.6.4").version == Release(major=9, minor=6, patch=4)
    assert parse_version("12.1").version == Release(major=12, minor=1)
    assert parse_version("11beta2").version == PreRelease(major=11, kind="beta", number=2)
    assert parse_version("12rc").version == PreRelease(major=12, kind="rc")


def test_require_version_raises_user_input_error() -> None:
    """Invalid input surfaces as a user input error with guidance."""
    with pytest.raises(VersionError) as excinfo:
        require_version("10")

    assert isinstance(excinfo.value, UserInputError)
    assert "MAJOR.MINOR" in str(excinfo.value)


def test_versions_are_hashable() -> None:
    """Parsed versions can be used as dictionary keys."""
    versions = {require_version("9.6.4"), require_version("9.6.4"), require_version("11beta1")}

    assert len(versions) == 2


def test_sort_versions_uses_natural_order() -> None:
    """Numeric components compare numerically, pre-releases precede releases."""
    ordered = sort_versions(["9.6.10", "10.1", "9.6.9", "11beta1", "11.0", "9.6.9"])

    assert ordered == ["9.6.9", "9.6.10", "10.1", "11beta1", "11.0"]
