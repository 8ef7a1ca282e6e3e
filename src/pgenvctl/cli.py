"""Typer-powered command line for ``pgenvctl``.

Every command builds on the shared :class:`RuntimeContext`, runs inside a
structured operation scope and converts :class:`~pgenvctl.errors.PgenvctlError`
into a red console message, an optional hint and exit code 1.
"""
from __future__ import annotations

import subprocess
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .build import BuildFailed, BuildPipeline, BuildResult
from .catalog import CatalogFetcher, bucket_label, label_to_bucket, major_bucket
from .config import AppConfig, ConfigError, load_config
from .errors import DependencyError, ExternalCommandFailure, PgenvctlError, UserInputError
from .exit_codes import ExitCode
from .instance import InstanceController, InstanceOutcome
from .logging import OperationScope, StructuredLogger
from .patches import PatchReport, PatchResolver
from .providers import (
    DependencyProbe,
    DependencyReport,
    HookResult,
    HookRunner,
    ServerControl,
    SourceProvider,
    ToolchainProvider,
)
from .state import ConfigCascade, Configuration, InstallationRegistry, LoadedConfiguration
from .versions import PreRelease, VersionID, require_version

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pgenvctl's YAML config file.",
)

VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Report the outcome of every patch applied to the source tree.",
)

VERSION_ARGUMENT_HELP = "PostgreSQL version (e.g. 9.6.4, 12.1, 11beta1) or 'latest'."
MAJOR_ARGUMENT_HELP = "Major version label used with 'latest' (e.g. 9.6, 12)."

CHECK_TOOLS = ("make", "patch", "tar", "gzip", "bzip2")
DEFAULT_LOG_LINES = 10
# click reports usage errors (unknown command, missing argument) with this code.
USAGE_ERROR_EXIT_CODE = 2

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Build, switch between and run multiple PostgreSQL versions side by side.

        Each version is compiled from source into its own installation
        directory; one installation at a time is active and serves the
        data directory behind the ``pgsql`` link.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect and edit per-version build and runtime configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: InstallationRegistry
    cascade: ConfigCascade
    patches: PatchResolver
    source: SourceProvider
    toolchain: ToolchainProvider
    probe: DependencyProbe
    hooks: HookRunner
    control: ServerControl
    catalog: CatalogFetcher
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc

    registry = InstallationRegistry(config.root)
    tools = config.tools
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        cascade=ConfigCascade(config.config_dir),
        patches=PatchResolver(config.patch_dir, patch_bin=tools.patch),
        source=SourceProvider(
            src_dir=config.src_dir,
            download_root=config.download_root,
            archive_name=config.archive_name,
            local_repo=config.local_source_repo,
            tar_bin=tools.tar,
            timeout=config.fetch_timeout,
        ),
        toolchain=ToolchainProvider(make_bin=tools.make),
        probe=DependencyProbe(
            commands={"make": tools.make, "patch": tools.patch, "tar": tools.tar}
        ),
        hooks=HookRunner(),
        control=ServerControl(registry.bin_dir),
        catalog=CatalogFetcher(config.download_root, timeout=config.fetch_timeout),
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the pgenvctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"pgenvctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    hint: str | None = None,
    detail: str = "",
    rc: int = ExitCode.FAILURE,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    if detail:
        console.print(escape(detail), style="dim", highlight=False)
    if hint:
        console.print(f"[yellow]Hint:[/yellow] {escape(hint)}")
    op.error(message, rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: PgenvctlError) -> NoReturn:
    """Report *exc* (and whatever diagnostics it carries) and exit 1."""
    cause = exc.cause if isinstance(exc, BuildFailed) else exc
    if isinstance(cause, DependencyError) and cause.report is not None:
        _render_dependency_report(cause.report)
    detail = cause.detail if isinstance(cause, ExternalCommandFailure) else ""
    _command_error(op, str(exc), hint=exc.hint or cause.hint, detail=detail)


def _controller(runtime: RuntimeContext, op: OperationScope) -> InstanceController:
    return InstanceController(
        registry=runtime.registry,
        control=runtime.control,
        hooks=runtime.hooks,
        op=op,
    )


def _active_configuration(runtime: RuntimeContext) -> tuple[str | None, LoadedConfiguration]:
    active = runtime.registry.active_version()
    return active, runtime.cascade.load(active)


def _note_defaults(loaded: LoadedConfiguration, version: str | None) -> None:
    if not loaded.loaded:
        label = "the default slot" if version is None else f"PostgreSQL {version}"
        console.print(
            f"[yellow]No configuration file found for {label}; using built-in defaults.[/yellow]"
        )


def _report_hooks(hooks: Sequence[HookResult]) -> list[str]:
    warnings: list[str] = []
    for hook in hooks:
        if hook.ok:
            continue
        message = f"{hook.name} hook {hook.path} exited with {hook.returncode}."
        console.print(f"[yellow]Warning:[/yellow] {escape(message)}")
        warnings.append(message)
    return warnings


def _installed_bucket(version: str) -> int:
    parsed = require_version(version)
    if isinstance(parsed, PreRelease):
        return major_bucket(str(parsed.major))
    return major_bucket(f"{parsed.major}.{parsed.minor}")


def _latest_installed(runtime: RuntimeContext, major: str | None) -> str:
    installed = runtime.registry.installed_versions()
    if major is not None:
        bucket = label_to_bucket(major)
        installed = [item for item in installed if _installed_bucket(item) == bucket]
    if not installed:
        scope = f" in major {major}" if major else ""
        raise UserInputError(
            f"No installed PostgreSQL version{scope}.",
            hint="List installed versions with `pgenvctl versions`.",
        )
    return installed[-1]


def _latest_available(runtime: RuntimeContext, major: str | None) -> VersionID:
    catalog = runtime.catalog.fetch([major] if major else None)
    latest = catalog.latest(major)
    if latest is None:
        raise UserInputError(
            f"No published PostgreSQL version in major {major}.",
            hint="List published versions with `pgenvctl available`.",
        )
    return require_version(latest)


def _resolve_version_argument(
    version: str,
    major: str | None,
) -> VersionID | None:
    """Return the parsed version, or ``None`` when *version* is ``latest``."""
    if version == "latest":
        return None
    if major is not None:
        raise UserInputError(
            f"Unexpected extra argument '{major}'.",
            hint="A major version label is only accepted after 'latest'.",
        )
    return require_version(version)


def _outcome_message(outcome: InstanceOutcome) -> str:
    version = outcome.version
    return {
        "initialized": f"PostgreSQL {version} data directory initialised.",
        "started": f"PostgreSQL {version} started.",
        "already-running": f"PostgreSQL {version} is already running.",
        "stopped": f"PostgreSQL {version} stopped.",
        "not-running": f"PostgreSQL {version} is not running.",
        "restarted": f"PostgreSQL {version} restarted.",
        "switched": f"PostgreSQL {version} is now in use and running.",
        "already-active": f"PostgreSQL {version} is already in use.",
        "cleared": f"PostgreSQL {version} is no longer in use.",
    }[outcome.action]


def _finish_instance(op: OperationScope, outcome: InstanceOutcome) -> None:
    style = "green" if outcome.changed else "yellow"
    message = _outcome_message(outcome)
    console.print(f"[{style}]{escape(message)}[/{style}]")
    warnings = _report_hooks(outcome.hooks)
    context = {"action": outcome.action, "version": outcome.version, "steps": outcome.steps}
    if warnings:
        op.warning(message, warnings=warnings, changed=int(outcome.changed), context=context)
    else:
        op.success(message, changed=int(outcome.changed), context=context)


def _render_dependency_report(report: DependencyReport) -> None:
    table = Table(title="Dependencies", show_header=True, header_style="bold magenta")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Path")
    for name, path in report.entries.items():
        status = "[green]found[/green]" if path else "[red]missing[/red]"
        table.add_row(name, status, str(path) if path else "-")
    console.print(table)


def _render_patch_report(report: PatchReport) -> None:
    if report.index is None:
        console.print("No patch index applies to this version.")
        return
    console.print(f"Patch index: {escape(str(report.index))}")
    styles = {"applied": "green", "failed": "red", "missing": "yellow"}
    for outcome in report.outcomes:
        style = styles[outcome.status]
        console.print(f"  [{style}]{outcome.status:<8}[/{style}] {escape(str(outcome.patch))}")
        if outcome.detail and outcome.status != "applied":
            console.print(textwrap.indent(escape(outcome.detail), "    "), style="dim")


# ----------------------------------------------------------------------
# Instance lifecycle
# ----------------------------------------------------------------------
@app.command()
def use(
    ctx: typer.Context,
    version: str = typer.Argument(..., help=VERSION_ARGUMENT_HELP),
    major: str | None = typer.Argument(None, help=MAJOR_ARGUMENT_HELP),
) -> None:
    """Make an installed version the active one and start it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "use",
        args={"version": version, "major": major},
        target={"kind": "instance", "scope": "active"},
    ) as op:
        try:
            parsed = _resolve_version_argument(version, major)
            target = str(parsed) if parsed is not None else _latest_installed(runtime, major)
            op.add_step("use.resolve", detail=target)
            current, current_loaded = _active_configuration(runtime)
            target_loaded = runtime.cascade.load(target)
            _note_defaults(target_loaded, target)
            outcome = _controller(runtime, op).switch_active(
                target,
                current_configuration=current_loaded.configuration if current else None,
                target_configuration=target_loaded.configuration,
            )
        except PgenvctlError as exc:
            _fail(op, exc)
        _finish_instance(op, outcome)


@app.command()
def start(ctx: typer.Context) -> None:
    """Start the server of the active installation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start", target={"kind": "instance", "scope": "active"}
    ) as op:
        try:
            active, loaded = _active_configuration(runtime)
            if active is not None:
                _note_defaults(loaded, active)
            outcome = _controller(runtime, op).start(loaded.configuration)
        except PgenvctlError as exc:
            _fail(op, exc)
        _finish_instance(op, outcome)


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the server of the active installation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stop", target={"kind": "instance", "scope": "active"}
    ) as op:
        try:
            _, loaded = _active_configuration(runtime)
            outcome = _controller(runtime, op).stop(loaded.configuration)
        except PgenvctlError as exc:
            _fail(op, exc)
        _finish_instance(op, outcome)


@app.command()
def restart(ctx: typer.Context) -> None:
    """Restart the server of the active installation (starting it if needed)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restart", target={"kind": "instance", "scope": "active"}
    ) as op:
        try:
            _, loaded = _active_configuration(runtime)
            outcome = _controller(runtime, op).restart(loaded.configuration)
        except PgenvctlError as exc:
            _fail(op, exc)
        _finish_instance(op, outcome)


@app.command()
def clear(ctx: typer.Context) -> None:
    """Stop the active server and stop using any version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "clear", target={"kind": "instance", "scope": "active"}
    ) as op:
        try:
            _, loaded = _active_configuration(runtime)
            outcome = _controller(runtime, op).clear(loaded.configuration)
        except PgenvctlError as exc:
            _fail(op, exc)
        _finish_instance(op, outcome)


@app.command("log")
def show_log(
    ctx: typer.Context,
    lines: int = typer.Option(
        DEFAULT_LOG_LINES,
        "--lines",
        "-n",
        min=1,
        help="Number of trailing log lines to display.",
    ),
    follow: bool = typer.Option(
        False,
        "--follow",
        "-f",
        help="Keep printing lines as the server appends them.",
    ),
) -> None:
    """Show the tail of the active server's log."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "log",
        args={"lines": lines, "follow": follow},
        target={"kind": "instance", "scope": "log"},
    ) as op:
        active, loaded = _active_configuration(runtime)
        if active is None:
            _command_error(
                op,
                "No PostgreSQL version is currently in use.",
                hint="Select one with `pgenvctl use <version>`.",
            )
        controller = _controller(runtime, op)
        path = controller.log_path(loaded.configuration)
        if not path.is_file():
            _command_error(op, f"Server log {path} does not exist yet.")
        if follow:
            op.add_step("log.follow", detail=str(path))
            _follow_log(path, lines)
            op.success("Followed server log.", changed=0, context={"path": path})
            return
        for line in controller.log_tail(loaded.configuration, lines):
            console.print(escape(line), highlight=False, soft_wrap=True)
        op.success("Displayed server log.", changed=0, context={"path": path, "lines": lines})


def _follow_log(path: Path, lines: int) -> None:
    """Stream the log through ``tail -f`` until interrupted."""
    try:
        subprocess.run(  # noqa: S603
            ["tail", "-n", str(lines), "-f", str(path)],  # noqa: S607
            check=False,
        )
    except KeyboardInterrupt:
        console.print()


# ----------------------------------------------------------------------
# Builds
# ----------------------------------------------------------------------
def _run_build(
    ctx: typer.Context,
    *,
    command: str,
    version: str,
    major: str | None,
    rebuild: bool,
    verbose: bool,
) -> None:
    runtime = _get_runtime(ctx)
    pipeline = BuildPipeline(
        registry=runtime.registry,
        cascade=runtime.cascade,
        patches=runtime.patches,
        source=runtime.source,
        toolchain=runtime.toolchain,
        probe=runtime.probe,
        hooks=runtime.hooks,
        write_configuration=runtime.config.write_build_config,
    )
    with runtime.logger.operation(
        command,
        args={"version": version, "major": major, "verbose": verbose},
        target={"kind": "version", "version": version},
    ) as op:
        try:
            parsed = _resolve_version_argument(version, major)
            if parsed is None:
                parsed = _latest_available(runtime, major)
                console.print(f"Latest published version: {parsed}")
            console.print(f"Building PostgreSQL {parsed}...")
            result = pipeline.run(parsed, rebuild=rebuild, verbose=verbose, op=op)
        except PgenvctlError as exc:
            if isinstance(exc, BuildFailed):
                console.print(f"[red]Build stopped entering '{exc.state.value}'.[/red]")
            _fail(op, exc)
        _finish_build(op, result, verbose=verbose)


def _finish_build(op: OperationScope, result: BuildResult, *, verbose: bool) -> None:
    warnings: list[str] = []
    if result.config_source is None:
        console.print(
            "[yellow]No configuration file found; built with built-in defaults.[/yellow]"
        )
    patches = result.patches
    if patches is not None:
        if verbose:
            _render_patch_report(patches)
        if patches.partial:
            message = (
                f"{len(patches.failed)} patch(es) failed and "
                f"{len(patches.missing)} were missing."
            )
            console.print(f"[yellow]Warning:[/yellow] {message}")
            warnings.append(message)
    if result.hook is not None:
        warnings.extend(_report_hooks([result.hook]))
    if result.config_path:
        console.print(f"Configuration written to {escape(result.config_path)}")

    verb = "rebuilt" if result.rebuild else "built"
    message = f"PostgreSQL {result.version} {verb}."
    console.print(f"[green]{message}[/green]")
    console.print(f"Activate it with `pgenvctl use {result.version}`.", highlight=False)
    context = {
        "version": result.version,
        "states": [state.value for state in result.history],
        "source": result.source.origin if result.source else None,
    }
    if warnings:
        op.warning(message, warnings=warnings, changed=1, context=context)
    else:
        op.success(message, changed=1, context=context)


@app.command()
def build(
    ctx: typer.Context,
    version: str = typer.Argument(..., help=VERSION_ARGUMENT_HELP),
    major: str | None = typer.Argument(None, help=MAJOR_ARGUMENT_HELP),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Download, patch, compile and install a PostgreSQL version."""
    _run_build(ctx, command="build", version=version, major=major, rebuild=False, verbose=verbose)


@app.command()
def rebuild(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="PostgreSQL version to rebuild."),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Rebuild an installed version that is not currently in use."""
    _run_build(ctx, command="rebuild", version=version, major=None, rebuild=True, verbose=verbose)


@app.command()
def remove(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Installed PostgreSQL version to delete."),
) -> None:
    """Delete an installation with its configuration, sources and build record."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "remove",
        args={"version": version},
        target={"kind": "version", "version": version},
    ) as op:
        try:
            parsed = require_version(version)
            removed = [runtime.registry.remove(parsed)]
            op.add_step("remove.installation", detail=str(removed[0]))
            if runtime.cascade.exists(parsed):
                removed.extend(runtime.cascade.delete(parsed))
                op.add_step("remove.configuration", detail=str(runtime.cascade.resolve(parsed)))
            sources = runtime.source.remove(parsed)
            removed.extend(sources)
            if sources:
                op.add_step("remove.sources", detail=", ".join(str(path) for path in sources))
            runtime.registry.forget_build(parsed)
        except PgenvctlError as exc:
            _fail(op, exc)
        console.print(f"[green]PostgreSQL {parsed} removed.[/green]")
        op.success(
            f"Removed PostgreSQL {parsed}.",
            changed=len(removed),
            context={"removed": removed},
        )


# ----------------------------------------------------------------------
# Inspection
# ----------------------------------------------------------------------
def _report_active(ctx: typer.Context, command: str) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        command, target={"kind": "instance", "scope": "active"}
    ) as op:
        active = runtime.registry.active_version()
        if active is None:
            _command_error(
                op,
                "No PostgreSQL version is currently in use.",
                hint="Select one with `pgenvctl use <version>`.",
            )
        console.print(active, highlight=False)
        op.success("Reported active version.", changed=0, context={"version": active})


@app.command("version")
def show_version(ctx: typer.Context) -> None:
    """Print the PostgreSQL version currently in use."""
    _report_active(ctx, "version")


@app.command()
def current(ctx: typer.Context) -> None:
    """Print the PostgreSQL version currently in use (alias of ``version``)."""
    _report_active(ctx, "current")


@app.command()
def versions(ctx: typer.Context) -> None:
    """List installed versions, marking the one in use."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "versions", target={"kind": "version", "scope": "installed"}
    ) as op:
        installed = runtime.registry.installed_versions()
        if not installed:
            console.print("No PostgreSQL versions are built yet.")
            op.success("No versions installed.", changed=0)
            return
        active = runtime.registry.active_version()
        table = Table(title="Installed PostgreSQL versions", header_style="bold magenta")
        table.add_column("Active", justify="center")
        table.add_column("Version", style="cyan")
        table.add_column("Built at")
        table.add_column("Source")
        table.add_column("Patches", justify="right")
        for version in installed:
            record = runtime.registry.get_build(version) or {}
            table.add_row(
                "*" if version == active else "",
                version,
                str(record.get("built_at", "-")),
                str(record.get("source", "-")),
                str(record.get("patches_applied", "-")),
            )
        console.print(table)
        op.success(
            "Listed installed versions.",
            changed=0,
            context={"versions": installed, "active": active},
        )


@app.command()
def available(
    ctx: typer.Context,
    majors: list[str] | None = typer.Argument(
        None, help="Restrict the listing to these major versions (e.g. 9.6 12)."
    ),
) -> None:
    """List the versions published on the download host, grouped by major."""
    runtime = _get_runtime(ctx)
    labels = list(majors or [])
    with runtime.logger.operation(
        "available",
        args={"majors": labels},
        target={"kind": "catalog", "url": runtime.config.download_root},
    ) as op:
        try:
            for label in labels:
                label_to_bucket(label)
            catalog = runtime.catalog.fetch(labels or None)
        except PgenvctlError as exc:
            _fail(op, exc)
        installed = set(runtime.registry.installed_versions())
        for bucket, items in catalog.buckets.items():
            console.print(f"[bold]{bucket_label(bucket)}[/bold]")
            for row in catalog.rows(bucket):
                cells = [
                    f"[cyan]{item:<10}[/cyan]" if item in installed else f"{item:<10}"
                    for item in row
                ]
                console.print("  " + " ".join(cells).rstrip(), highlight=False)
        if not catalog.buckets:
            console.print("No published versions match the requested majors.")
        op.success(
            "Listed published versions.",
            changed=0,
            context={"versions": len(catalog), "majors": labels},
        )


@app.command()
def check(ctx: typer.Context) -> None:
    """Verify that every tool needed to build PostgreSQL is installed."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check", target={"kind": "dependencies", "scope": "build"}
    ) as op:
        tools = ["make"] if runtime.source.uses_local_repo else list(CHECK_TOOLS)
        report = runtime.probe.probe(tools)
        _render_dependency_report(report)
        if not report.ok:
            _command_error(
                op,
                "Missing required tools: " + ", ".join(report.missing),
                hint="Install the missing tools or point pgenvctl at them via the `tools` config.",
            )
        console.print("[green]All build dependencies are available.[/green]")
        op.success("All dependencies found.", changed=0, context=report.to_dict())


@app.command("help")
def show_help(ctx: typer.Context) -> None:
    """Show this help message."""
    parent = ctx.parent or ctx
    console.print(parent.get_help(), highlight=False)


# ----------------------------------------------------------------------
# Configuration cascade
# ----------------------------------------------------------------------
def _optional_version(version: str | None) -> VersionID | None:
    return require_version(version) if version is not None else None


def _parse_assignments(assignments: Sequence[str]) -> dict[str, str]:
    changes: dict[str, str] = {}
    for item in assignments:
        key, separator, value = item.partition("=")
        if not separator or not key.strip():
            raise UserInputError(
                f"Invalid assignment '{item}'.", hint="Use --set key=value."
            )
        changes[key.strip()] = value.strip()
    return changes


def _render_options(configuration: Configuration, title: str) -> None:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Option", style="cyan")
    table.add_column("Value")
    for key, value in configuration.to_dict().items():
        table.add_row(key, escape(value) if value else "[dim](empty)[/dim]")
    console.print(table)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version whose configuration to show."),
    tool: bool = typer.Option(
        False,
        "--tool",
        help="Show pgenvctl's own settings instead of a version configuration.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output configuration as JSON.",
    ),
) -> None:
    """Display the effective configuration for a version (or the default)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"version": version, "tool": tool, "json": json_output},
        target={"kind": "config", "version": version},
    ) as op:
        if tool:
            data = runtime.config.to_dict()
            if json_output:
                console.print_json(data=data)
            else:
                table = Table(title="pgenvctl configuration", header_style="bold magenta")
                table.add_column("Key", style="cyan")
                table.add_column("Value")
                for key, value in data.items():
                    table.add_row(key, escape(str(value)))
                console.print(table)
            op.success("Rendered tool configuration.", changed=0)
            return

        try:
            parsed = _optional_version(version)
            loaded = runtime.cascade.load(parsed)
        except PgenvctlError as exc:
            _fail(op, exc)
        source = str(loaded.loaded_from) if loaded.loaded_from else None
        if json_output:
            console.print_json(
                data={"loaded_from": source, "options": loaded.configuration.to_dict()}
            )
        else:
            console.print(f"Loaded from: {escape(source or 'built-in defaults')}")
            label = "default" if parsed is None else str(parsed)
            _render_options(loaded.configuration, f"Configuration ({label})")
        op.success("Rendered configuration.", changed=0, context={"loaded_from": source})


@config_app.command("path")
def config_path(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version whose file path to print."),
) -> None:
    """Print the configuration file path for a version (or the default)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config path", args={"version": version}, target={"kind": "config", "version": version}
    ) as op:
        try:
            path = runtime.cascade.resolve(_optional_version(version))
        except PgenvctlError as exc:
            _fail(op, exc)
        console.print(str(path), highlight=False, soft_wrap=True)
        op.success("Resolved configuration path.", changed=0, context={"path": path})


@config_app.command("write")
def config_write(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version whose configuration to write."),
    assignments: list[str] | None = typer.Option(
        None,
        "--set",
        "-s",
        help="Option assignment key=value; repeat for several options.",
    ),
) -> None:
    """Write the effective configuration (plus any --set changes) to its file."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config write",
        args={"version": version, "set": list(assignments or [])},
        target={"kind": "config", "version": version},
    ) as op:
        try:
            parsed = _optional_version(version)
            changes = _parse_assignments(assignments or [])
            loaded = runtime.cascade.load(parsed)
            configuration = loaded.configuration.with_options(**changes)
            had_file = runtime.cascade.exists(parsed)
            path = runtime.cascade.write(configuration, parsed)
        except PgenvctlError as exc:
            _fail(op, exc)
        if had_file:
            op.add_step("config.backup", detail=str(runtime.cascade.backup_path(parsed)))
            console.print(f"Previous file kept as {escape(str(runtime.cascade.backup_path(parsed)))}")
        op.add_step("config.write", detail=str(path))
        console.print(f"[green]Configuration written to {escape(str(path))}[/green]")
        op.success("Configuration written.", changed=1, context={"path": path, "set": changes})


@config_app.command("edit")
def config_edit(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version whose configuration to edit."),
) -> None:
    """Open the configuration file in $EDITOR, creating it first if needed."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config edit", args={"version": version}, target={"kind": "config", "version": version}
    ) as op:
        try:
            parsed = _optional_version(version)
            path = runtime.cascade.resolve(parsed)
            if not path.exists():
                runtime.cascade.write(runtime.cascade.load(parsed).configuration, parsed)
                op.add_step("config.create", detail=str(path))
            click.edit(filename=str(path))
            runtime.cascade.load(parsed)
        except PgenvctlError as exc:
            _fail(op, exc)
        except click.ClickException as exc:
            _command_error(op, exc.format_message())
        console.print(f"[green]Configuration {escape(str(path))} is valid.[/green]")
        op.success("Configuration edited.", changed=1, context={"path": path})


@config_app.command("delete")
def config_delete(
    ctx: typer.Context,
    version: str | None = typer.Argument(None, help="Version whose configuration to delete."),
) -> None:
    """Delete a configuration file and its backup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config delete", args={"version": version}, target={"kind": "config", "version": version}
    ) as op:
        try:
            parsed = _optional_version(version)
            removed = runtime.cascade.delete(
                parsed, installed=runtime.registry.installed_versions()
            )
        except PgenvctlError as exc:
            _fail(op, exc)
        for path in removed:
            console.print(f"Deleted {escape(str(path))}")
        op.success("Configuration deleted.", changed=len(removed), context={"removed": removed})


def main() -> None:
    """Console script entry point.

    Usage errors exit with 1 like every other reported failure.
    """
    try:
        app()
    except SystemExit as exc:
        if exc.code == USAGE_ERROR_EXIT_CODE:
            raise SystemExit(ExitCode.FAILURE) from exc
        raise


__all__ = ["RuntimeContext", "app", "main"]
