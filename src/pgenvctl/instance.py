"""Idempotent lifecycle control of the active PostgreSQL instance."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .errors import ExternalCommandFailure, PreconditionError
from .logging import OperationScope
from .providers.hooks import HookResult, HookRunner
from .providers.pg_ctl import ServerControl, ServerControlError
from .state.cascade import Configuration
from .state.registry import InstallationRegistry

LOG_TAIL_LINES = 5

Action = Literal[
    "initialized",
    "started",
    "already-running",
    "stopped",
    "not-running",
    "restarted",
    "switched",
    "already-active",
    "cleared",
]


class InstanceError(ExternalCommandFailure):
    """Raised when the server cannot be started or controlled."""

    def __init__(self, message: str, *, log_tail: list[str] | None = None, detail: str = "") -> None:
        """Attach the last lines of the server log as diagnostics."""
        tail = list(log_tail or [])
        super().__init__(
            message,
            detail=detail or "\n".join(tail),
            hint="Inspect the full server log with `pgenvctl log`.",
        )
        self.log_tail = tail


@dataclass
class InstanceOutcome:
    """What an instance operation did."""

    action: Action
    version: str | None = None
    hooks: list[HookResult] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``False`` for idempotent no-ops."""
        return self.action not in {"already-running", "not-running", "already-active"}


@dataclass
class InstanceController:
    """Start, stop, restart and switch the server of the active installation."""

    registry: InstallationRegistry
    control: ServerControl
    hooks: HookRunner
    log_tail_lines: int = LOG_TAIL_LINES
    op: OperationScope | None = None

    @property
    def data_dir(self) -> Path:
        """Data directory of the active installation."""
        return self.registry.data_dir

    def log_path(self, configuration: Configuration) -> Path:
        """Return the server log path configured for *configuration*."""
        if configuration.log.strip():
            return Path(configuration.log.strip()).expanduser()
        return self.data_dir / "server.log"

    def is_running(self) -> bool:
        """Return ``True`` when the active server answers status queries."""
        if self.registry.active_version() is None:
            return False
        return self.control.status(self.data_dir)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def ensure_initialized(self, configuration: Configuration) -> InstanceOutcome | None:
        """Create the data directory when it does not exist yet."""
        version = self._require_active()
        if self.data_dir.exists():
            return None
        try:
            self.control.initdb(self.data_dir, options=configuration.initdb_options)
        except ServerControlError as exc:
            raise InstanceError(
                f"initdb failed for PostgreSQL {version}: {exc}", detail=exc.detail
            ) from exc
        self._step("initdb", str(self.data_dir))
        outcome = InstanceOutcome(action="initialized", version=version, steps=["initdb"])
        self._hook(outcome, "post-initdb", configuration.script_post_initdb)
        return outcome

    def start(self, configuration: Configuration) -> InstanceOutcome:
        """Start the server unless it is already running."""
        version = self._require_active()
        if self.is_running():
            self._step("start.skip", "already running", status="info")
            return InstanceOutcome(action="already-running", version=version)

        outcome = InstanceOutcome(action="started", version=version)
        initialized = self.ensure_initialized(configuration)
        if initialized is not None:
            outcome.steps.extend(initialized.steps)
            outcome.hooks.extend(initialized.hooks)

        log_file = self.log_path(configuration)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.control.start(self.data_dir, log_file=log_file, options=configuration.start_options)
        except ServerControlError as exc:
            tail = self.log_tail(configuration, self.log_tail_lines)
            raise InstanceError(
                f"PostgreSQL {version} failed to start: {exc}", log_tail=tail
            ) from exc
        self._step("start", str(log_file))
        outcome.steps.append("start")
        self._hook(outcome, "post-start", configuration.script_post_start)
        return outcome

    def stop(self, configuration: Configuration) -> InstanceOutcome:
        """Stop the server unless it is not running."""
        version = self._require_active()
        if not self.is_running():
            self._step("stop.skip", "not running", status="info")
            return InstanceOutcome(action="not-running", version=version)
        try:
            self.control.stop(self.data_dir, options=configuration.stop_options)
        except ServerControlError as exc:
            raise InstanceError(
                f"PostgreSQL {version} failed to stop: {exc}", detail=exc.detail
            ) from exc
        self._step("stop", str(self.data_dir))
        outcome = InstanceOutcome(action="stopped", version=version, steps=["stop"])
        self._hook(outcome, "post-stop", configuration.script_post_stop)
        return outcome

    def restart(self, configuration: Configuration) -> InstanceOutcome:
        """Restart the server, starting it when it is not running."""
        version = self._require_active()
        if not self.is_running():
            return self.start(configuration)
        log_file = self.log_path(configuration)
        try:
            self.control.restart(
                self.data_dir, log_file=log_file, options=configuration.restart_options
            )
        except ServerControlError as exc:
            tail = self.log_tail(configuration, self.log_tail_lines)
            raise InstanceError(
                f"PostgreSQL {version} failed to restart: {exc}", log_tail=tail
            ) from exc
        self._step("restart", str(self.data_dir))
        outcome = InstanceOutcome(action="restarted", version=version, steps=["restart"])
        self._hook(outcome, "post-restart", configuration.script_post_restart)
        return outcome

    def switch_active(
        self,
        target: str,
        *,
        current_configuration: Configuration | None,
        target_configuration: Configuration,
    ) -> InstanceOutcome:
        """Make *target* the active installation and start it.

        The old server is stopped before the link moves so ``pg_ctl stop``
        still addresses the old data directory.
        """
        current = self.registry.active_version()
        if current == target:
            self._step("switch.skip", f"{target} already active", status="info")
            return InstanceOutcome(action="already-active", version=target)
        if not self.registry.is_installed(target):
            raise PreconditionError(
                f"PostgreSQL {target} is not installed.",
                hint=f"Build it first with `pgenvctl build {target}`.",
            )

        outcome = InstanceOutcome(action="switched", version=target)
        if current is not None and self.registry.is_installed(current):
            stopped = self.stop(current_configuration or Configuration())
            outcome.steps.extend(stopped.steps)
            outcome.hooks.extend(stopped.hooks)

        self.registry.activate(target)
        self._step("switch.link", f"{current or '(none)'} -> {target}")
        outcome.steps.append("link")

        started = self.start(target_configuration)
        outcome.steps.extend(started.steps)
        outcome.hooks.extend(started.hooks)
        return outcome

    def clear(self, configuration: Configuration) -> InstanceOutcome:
        """Stop the active server and remove the active link."""
        version = self.registry.active_version()
        if version is None:
            raise PreconditionError(
                "No PostgreSQL version is currently in use; nothing to clear.",
                hint="Select one with `pgenvctl use <version>`.",
            )
        outcome = InstanceOutcome(action="cleared", version=version)
        # A dangling link (installation removed by hand) has nothing to stop.
        if self.registry.is_installed(version):
            stopped = self.stop(configuration)
            outcome.steps.extend(stopped.steps)
            outcome.hooks.extend(stopped.hooks)
        self.registry.deactivate()
        self._step("clear", f"{version} deactivated")
        outcome.steps.append("unlink")
        return outcome

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------
    def log_tail(self, configuration: Configuration, lines: int) -> list[str]:
        """Return the last *lines* lines of the server log."""
        path = self.log_path(configuration)
        try:
            with path.open(encoding="utf-8", errors="replace") as handle:
                return [line.rstrip("\n") for line in deque(handle, maxlen=max(lines, 0))]
        except OSError:
            return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_active(self) -> str:
        version = self.registry.active_version()
        if version is None or not self.registry.is_installed(version):
            raise PreconditionError(
                "No PostgreSQL version is currently in use.",
                hint="Select one with `pgenvctl use <version>`.",
            )
        return version

    def _hook(self, outcome: InstanceOutcome, name: str, script: str) -> None:
        result = self.hooks.run(name, script, str(self.data_dir))
        if result is None:
            return
        outcome.hooks.append(result)
        self._step(
            f"hook.{name}",
            f"{result.path} exit {result.returncode}",
            status="success" if result.ok else "warning",
        )

    def _step(self, name: str, detail: str, *, status: str = "success") -> None:
        if self.op is not None:
            self.op.add_step(f"instance.{name}", status=status, detail=detail)


__all__ = ["InstanceController", "InstanceError", "InstanceOutcome", "LOG_TAIL_LINES"]
