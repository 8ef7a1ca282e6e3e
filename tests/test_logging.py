"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from pgenvctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    text = logger.operations_log.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines()]


def test_operation_writes_one_json_line(tmp_path: Path) -> None:
    """Each operation appends a complete record with its steps."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "build", args={"version": "12.1"}, target={"kind": "version", "version": "12.1"}
    ) as op:
        op.add_step("build.validated", detail="build")
        op.success("PostgreSQL 12.1 built.", changed=1)
    with logger.operation("versions") as op:
        op.success("Listed.", changed=0)

    records = _records(logger)
    assert [record["command"] for record in records] == ["build", "versions"]
    first = records[0]
    assert first["args"] == {"version": "12.1"}
    assert first["target"] == {"kind": "version", "version": "12.1"}
    assert first["steps"][0]["name"] == "build.validated"
    assert first["result"]["status"] == "success"
    assert first["result"]["changed"] == 1
    assert isinstance(first["duration_ms"], int)
    assert first["op_id"] != records[1]["op_id"]


def test_escaping_exception_is_recorded_as_error(tmp_path: Path) -> None:
    """Exceptions leaving the scope without a result are logged as errors."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("start"):
            raise ValueError("unexpected")

    result = _records(logger)[0]["result"]
    assert result["status"] == "error"
    assert result["message"] == "ValueError: unexpected"


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("use", args={"version": "12.1"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("stop") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("stop") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings are recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("build", args={"path": Path("src")}) as op:
        op.warning(
            "patched partially",
            warnings=("1 patch failed",),
            errors=("hunk FAILED",),
            changed=1,
            context={"path": Path("/var/lib"), "obj": Custom()},
        )

    record = _records(logger)[0]
    result = record["result"]
    assert record["args"] == {"path": "src"}
    assert result["status"] == "warning"
    assert result["warnings"] == ["1 patch failed"]
    assert result["errors"] == ["hunk FAILED"]
    assert result["context"] == {"path": "/var/lib", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("remove") as op:
        op.error("boom", errors=None, context={"value": {1, 2}})

    result = _records(logger)[0]["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 1
    assert result["context"] == {"value": "{1, 2}"}
