"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pgenvctl.providers.pg_ctl import ServerControlError
from pgenvctl.state import ConfigCascade, InstallationRegistry


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeServerControl:
    """In-memory stand-in for :class:`pgenvctl.providers.ServerControl`.

    Tracks whether "the server" runs and records every side effect.
    """

    def __init__(self, *, running: bool = False, fail_start: bool = False) -> None:
        """Initialise the fake with the given server state."""
        self.running = running
        self.fail_start = fail_start
        self.calls: list[tuple[str, str]] = []

    def status(self, data_dir: Path) -> bool:
        return self.running

    def initdb(self, data_dir: Path, *, options: str = "") -> None:
        self.calls.append(("initdb", options))
        data_dir.mkdir(parents=True, exist_ok=True)

    def start(self, data_dir: Path, *, log_file: Path, options: str = "") -> None:
        self.calls.append(("start", options))
        if self.fail_start:
            raise ServerControlError("pg_ctl start failed (exit 1): could not start server")
        self.running = True

    def stop(self, data_dir: Path, *, options: str = "") -> None:
        self.calls.append(("stop", options))
        self.running = False

    def restart(self, data_dir: Path, *, log_file: Path, options: str = "") -> None:
        self.calls.append(("restart", options))
        self.running = True

    def count(self, name: str) -> int:
        """Return how many times *name* was invoked."""
        return sum(1 for call, _ in self.calls if call == name)


@pytest.fixture
def registry(tmp_path: Path) -> InstallationRegistry:
    """Return a registry rooted in a temporary state directory."""
    return InstallationRegistry(tmp_path / "root")


@pytest.fixture
def cascade(registry: InstallationRegistry) -> ConfigCascade:
    """Return a configuration cascade living under the registry root."""
    return ConfigCascade(registry.root / "config")


@pytest.fixture
def install(registry: InstallationRegistry):
    """Return a factory creating fake installation directories."""

    def _install(version: str) -> Path:
        target = registry.installation_dir(version)
        (target / "bin").mkdir(parents=True, exist_ok=True)
        return target

    return _install


@pytest.fixture
def control() -> FakeServerControl:
    """Return a stopped fake server."""
    return FakeServerControl()
