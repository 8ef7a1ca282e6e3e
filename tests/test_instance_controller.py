"""Instance lifecycle tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from pgenvctl.errors import PreconditionError
from pgenvctl.instance import InstanceController, InstanceError
from pgenvctl.logging import OperationScope
from pgenvctl.providers.hooks import HookRunner
from pgenvctl.state import Configuration, InstallationRegistry

from conftest import FakeServerControl


def _controller(
    registry: InstallationRegistry,
    control: FakeServerControl,
    op: OperationScope | None = None,
) -> InstanceController:
    return InstanceController(registry=registry, control=control, hooks=HookRunner(), op=op)


def _hook_script(path: Path, *, exit_code: int = 0) -> Path:
    record = path.with_suffix(".args")
    path.write_text(f'#!/bin/sh\necho "$1" >> "{record}"\nexit {exit_code}\n', encoding="utf-8")
    path.chmod(0o755)
    return record


def test_operations_require_an_active_installation(
    registry: InstallationRegistry,
    control: FakeServerControl,
) -> None:
    """Without an active link every lifecycle call asks for ``use``."""
    controller = _controller(registry, control)

    for call in (controller.start, controller.stop, controller.restart, controller.clear):
        with pytest.raises(PreconditionError) as excinfo:
            call(Configuration())
        assert "pgenvctl use" in (excinfo.value.hint or "")
    assert control.calls == []


def test_start_initialises_then_starts(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """The first start creates the data directory with the configured options."""
    install("12.1")
    registry.activate("12.1")
    configuration = Configuration(initdb_options="-U admin", start_options="-w -t 5")

    outcome = _controller(registry, control).start(configuration)

    assert outcome.action == "started"
    assert outcome.steps == ["initdb", "start"]
    assert control.calls == [("initdb", "-U admin"), ("start", "-w -t 5")]
    assert registry.data_dir.is_dir()


def test_start_twice_only_starts_once(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Starting a running server is a no-op."""
    install("12.1")
    registry.activate("12.1")
    controller = _controller(registry, control)

    first = controller.start(Configuration())
    second = controller.start(Configuration())

    assert first.changed is True
    assert second.action == "already-running"
    assert second.changed is False
    assert control.count("start") == 1


def test_stop_when_not_running_is_noop(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Stopping a stopped server does nothing."""
    install("12.1")
    registry.activate("12.1")

    outcome = _controller(registry, control).stop(Configuration())

    assert outcome.action == "not-running"
    assert control.count("stop") == 0


def test_restart_starts_a_stopped_server(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Restart falls back to start when nothing runs."""
    install("12.1")
    registry.activate("12.1")
    controller = _controller(registry, control)

    assert controller.restart(Configuration()).action == "started"
    assert controller.restart(Configuration(restart_options="-m smart")).action == "restarted"
    assert control.calls[-1] == ("restart", "-m smart")


def test_start_failure_carries_log_tail(
    registry: InstallationRegistry,
    install,
    tmp_path: Path,
) -> None:
    """A failed start reports the last five log lines and does not retry."""
    install("12.1")
    registry.activate("12.1")
    registry.data_dir.mkdir()
    log = tmp_path / "server.log"
    log.write_text("".join(f"line {number}\n" for number in range(1, 9)), encoding="utf-8")
    control = FakeServerControl(fail_start=True)

    with pytest.raises(InstanceError) as excinfo:
        _controller(registry, control).start(Configuration(log=str(log)))

    assert excinfo.value.log_tail == ["line 4", "line 5", "line 6", "line 7", "line 8"]
    assert "line 8" in excinfo.value.detail
    assert "pgenvctl log" in (excinfo.value.hint or "")
    assert control.count("start") == 1


def test_log_path_defaults_inside_data_directory(
    registry: InstallationRegistry,
    control: FakeServerControl,
) -> None:
    """An empty ``log`` option means ``<data>/server.log``."""
    controller = _controller(registry, control)

    assert controller.log_path(Configuration()) == registry.data_dir / "server.log"
    assert controller.log_path(Configuration(log="/tmp/pg.log")) == Path("/tmp/pg.log")


def test_switch_active_round_trip(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Switching A to B and back restores A and leaves B on disk."""
    install("12.1")
    install("9.6.4")
    controller = _controller(registry, control)
    configuration = Configuration()

    controller.switch_active("12.1", current_configuration=None, target_configuration=configuration)
    to_b = controller.switch_active(
        "9.6.4", current_configuration=configuration, target_configuration=configuration
    )
    back = controller.switch_active(
        "12.1", current_configuration=configuration, target_configuration=configuration
    )

    assert to_b.steps[0] == "stop"
    assert to_b.steps.index("link") < to_b.steps.index("start")
    assert back.action == "switched"
    assert registry.active_version() == "12.1"
    assert registry.is_installed("9.6.4")
    assert control.running is True


def test_switch_to_active_version_is_noop(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Re-selecting the active version performs no side effects."""
    install("12.1")
    registry.activate("12.1")

    outcome = _controller(registry, control).switch_active(
        "12.1", current_configuration=Configuration(), target_configuration=Configuration()
    )

    assert outcome.action == "already-active"
    assert control.calls == []


def test_switch_to_missing_installation_refused(
    registry: InstallationRegistry,
    control: FakeServerControl,
) -> None:
    """Switching to something never built fails before touching anything."""
    with pytest.raises(PreconditionError, match="not installed"):
        _controller(registry, control).switch_active(
            "12.1", current_configuration=None, target_configuration=Configuration()
        )
    assert registry.active_version() is None


def test_clear_stops_then_unlinks(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
) -> None:
    """Clear stops the server and removes only the link."""
    install("12.1")
    registry.activate("12.1")
    control.running = True

    outcome = _controller(registry, control).clear(Configuration())

    assert outcome.steps == ["stop", "unlink"]
    assert registry.active_version() is None
    assert registry.is_installed("12.1")


def test_hooks_receive_data_directory_and_failures_are_reported(
    registry: InstallationRegistry,
    install,
    control: FakeServerControl,
    tmp_path: Path,
) -> None:
    """Hook failures never abort the lifecycle step."""
    install("12.1")
    registry.activate("12.1")
    initdb_record = _hook_script(tmp_path / "post-initdb")
    start_record = _hook_script(tmp_path / "post-start", exit_code=3)
    configuration = Configuration(
        script_post_initdb=str(tmp_path / "post-initdb"),
        script_post_start=str(tmp_path / "post-start"),
    )
    op = OperationScope(command="start")

    outcome = _controller(registry, control, op).start(configuration)

    assert outcome.action == "started"
    assert initdb_record.read_text().strip() == str(registry.data_dir)
    assert start_record.read_text().strip() == str(registry.data_dir)
    assert [hook.returncode for hook in outcome.hooks] == [0, 3]
    step_names = [step["name"] for step in op.steps]
    assert "instance.hook.post-start" in step_names
    assert op.steps[-1]["status"] == "warning"


def test_log_tail_handles_missing_file(
    registry: InstallationRegistry,
    control: FakeServerControl,
) -> None:
    """An absent log yields no lines."""
    assert _controller(registry, control).log_tail(Configuration(), 5) == []
