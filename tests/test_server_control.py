"""Tests for the pg_ctl/initdb provider."""
from __future__ import annotations

from pathlib import Path

import pytest

from pgenvctl.providers.pg_ctl import ServerControl, ServerControlError


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Capture commands and answer with a configurable exit status."""
    recorded: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        recorded.append(list(args))
        code = 3 if args[1:2] == ["status"] else 0
        return DummyResult(returncode=code)

    monkeypatch.setattr("pgenvctl.providers.pg_ctl.subprocess.run", fake_run)
    return recorded


def test_commands_use_bin_dir_and_data_dir(calls: list[list[str]], tmp_path: Path) -> None:
    """Every invocation addresses the binaries and data directory explicitly."""
    control = ServerControl(tmp_path / "pgsql" / "bin")
    data = tmp_path / "pgsql" / "data"
    log = data / "server.log"

    control.initdb(data, options="-U postgres --locale en_US.UTF-8 --encoding UNICODE")
    control.start(data, log_file=log, options="-w")
    control.stop(data, options="-m fast")
    control.restart(data, log_file=log, options="-m fast")

    bin_dir = str(tmp_path / "pgsql" / "bin")
    assert calls == [
        [
            f"{bin_dir}/initdb",
            "-D",
            str(data),
            "-U",
            "postgres",
            "--locale",
            "en_US.UTF-8",
            "--encoding",
            "UNICODE",
        ],
        [f"{bin_dir}/pg_ctl", "start", "-D", str(data), "-l", str(log), "-w"],
        [f"{bin_dir}/pg_ctl", "stop", "-D", str(data), "-m", "fast"],
        [f"{bin_dir}/pg_ctl", "restart", "-D", str(data), "-l", str(log), "-m", "fast"],
    ]


def test_status_maps_exit_code(calls: list[list[str]], tmp_path: Path) -> None:
    """Non-zero status means not running; no exception is raised."""
    control = ServerControl(tmp_path)

    assert control.status(tmp_path / "data") is False


def test_status_treats_missing_binary_as_not_running(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """An installation without pg_ctl cannot be running."""

    def missing(*args: object, **kwargs: object) -> DummyResult:
        raise FileNotFoundError("pg_ctl")

    monkeypatch.setattr("pgenvctl.providers.pg_ctl.subprocess.run", missing)

    assert ServerControl(tmp_path).status(tmp_path / "data") is False


def test_failed_start_raises_with_output(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Non-zero exits surface the command's stderr."""

    def fail(args: list[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="pg_ctl: could not start server\n")

    monkeypatch.setattr("pgenvctl.providers.pg_ctl.subprocess.run", fail)

    with pytest.raises(ServerControlError) as excinfo:
        ServerControl(tmp_path).start(tmp_path / "data", log_file=tmp_path / "log")

    assert "pg_ctl start failed (exit 1)" in str(excinfo.value)
    assert excinfo.value.detail == "pg_ctl: could not start server"


def test_permission_error_is_reported(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Non-executable binaries are reported as control errors."""

    def denied(*args: object, **kwargs: object) -> DummyResult:
        raise PermissionError("denied")

    monkeypatch.setattr("pgenvctl.providers.pg_ctl.subprocess.run", denied)

    with pytest.raises(ServerControlError, match="not executable"):
        ServerControl(tmp_path).initdb(tmp_path / "data")
