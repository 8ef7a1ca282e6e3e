"""Build pipeline: fetch, unpack, patch, configure, compile and install.

The pipeline is a linear state machine::

    REQUESTED -> VALIDATED -> CONFIG_LOADED -> DEPENDENCIES_CHECKED
      -> SOURCE_ACQUIRED -> PATCHED -> CONFIGURED -> COMPILED -> INSTALLED
      -> CONFIG_WRITTEN -> DONE

Any step may fail; the pipeline then records ``FAILED`` and raises
:class:`BuildFailed`. Nothing is rolled back: partially built trees stay on
disk for inspection and the operator re-runs ``build`` or ``rebuild``.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .errors import PgenvctlError, PreconditionError
from .logging import OperationScope
from .patches import PatchReport, PatchResolver
from .providers.dependencies import DependencyProbe, DependencyReport
from .providers.hooks import HookResult, HookRunner
from .providers.source import SourceProvider, SourceTree, decompressor_for
from .providers.toolchain import ToolchainProvider
from .state.cascade import ConfigCascade, Configuration
from .state.registry import InstallationRegistry
from .versions import VersionID

# ``make world`` / ``make install-world`` exist from 9.0 on; older releases
# build contrib as a separate pass.
WORLD_BUILD_FIRST_MAJOR = 9


class BuildState(str, Enum):
    """States of the build pipeline."""

    REQUESTED = "requested"
    VALIDATED = "validated"
    CONFIG_LOADED = "config-loaded"
    DEPENDENCIES_CHECKED = "dependencies-checked"
    SOURCE_ACQUIRED = "source-acquired"
    PATCHED = "patched"
    CONFIGURED = "configured"
    COMPILED = "compiled"
    INSTALLED = "installed"
    CONFIG_WRITTEN = "config-written"
    DONE = "done"
    FAILED = "failed"


class BuildFailed(PgenvctlError):
    """Raised when a pipeline step fails."""

    def __init__(self, version: str, state: BuildState, cause: PgenvctlError) -> None:
        """Record the state that was being entered and the underlying error."""
        super().__init__(f"Build of PostgreSQL {version} failed: {cause}", hint=cause.hint)
        self.version = version
        self.state = state
        self.cause = cause


def builds_world(version: VersionID) -> bool:
    """Return ``True`` when *version* supports the combined world build."""
    return version.major >= WORLD_BUILD_FIRST_MAJOR


def required_tools(version: VersionID, *, local_source: bool) -> list[str]:
    """Return the tools the pipeline needs for *version*."""
    if local_source:
        return ["make"]
    return ["make", "patch", "tar", decompressor_for(version)]


@dataclass
class BuildResult:
    """Summary of a pipeline run."""

    version: str
    rebuild: bool
    history: list[BuildState] = field(default_factory=list)
    configuration: Configuration | None = None
    config_source: str | None = None
    dependencies: DependencyReport | None = None
    source: SourceTree | None = None
    patches: PatchReport | None = None
    hook: HookResult | None = None
    config_path: str | None = None

    @property
    def state(self) -> BuildState:
        """Return the last state reached."""
        return self.history[-1] if self.history else BuildState.REQUESTED


@dataclass
class BuildPipeline:
    """Orchestrate one build or rebuild of a PostgreSQL version."""

    registry: InstallationRegistry
    cascade: ConfigCascade
    patches: PatchResolver
    source: SourceProvider
    toolchain: ToolchainProvider
    probe: DependencyProbe
    hooks: HookRunner
    write_configuration: bool = True

    def run(
        self,
        version: VersionID,
        *,
        rebuild: bool = False,
        verbose: bool = False,
        op: OperationScope | None = None,
    ) -> BuildResult:
        """Run the pipeline for *version* and return the result."""
        result = BuildResult(version=str(version), rebuild=rebuild)
        self._enter(result, BuildState.REQUESTED, op, detail=str(version))

        steps: list[tuple[BuildState, Callable[[], str]]] = [
            (BuildState.VALIDATED, lambda: self._validate(version, rebuild)),
            (BuildState.CONFIG_LOADED, lambda: self._load_configuration(version, result)),
            (BuildState.DEPENDENCIES_CHECKED, lambda: self._check_dependencies(version, result)),
            (BuildState.SOURCE_ACQUIRED, lambda: self._acquire_source(version, result)),
            (BuildState.PATCHED, lambda: self._patch(version, result, verbose)),
            (BuildState.CONFIGURED, lambda: self._configure(version, result)),
            (BuildState.COMPILED, lambda: self._compile(version, result)),
            (BuildState.INSTALLED, lambda: self._install(version, result)),
            (BuildState.CONFIG_WRITTEN, lambda: self._persist(version, result)),
        ]
        for state, step in steps:
            try:
                detail = step()
            except PgenvctlError as exc:
                self._enter(result, BuildState.FAILED, op, detail=str(exc), status="error")
                raise BuildFailed(str(version), state, exc) from exc
            self._enter(result, state, op, detail=detail)

        self._enter(result, BuildState.DONE, op)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _validate(self, version: VersionID, rebuild: bool) -> str:
        if rebuild:
            if self.registry.active_version() == str(version):
                raise PreconditionError(
                    f"PostgreSQL {version} is in use and cannot be rebuilt.",
                    hint="Switch to another version or run `pgenvctl clear` first.",
                )
            return "rebuild"
        if self.registry.is_installed(version):
            raise PreconditionError(
                f"PostgreSQL {version} is already built.",
                hint=f"Did you mean `pgenvctl rebuild {version}`?",
            )
        return "build"

    def _load_configuration(self, version: VersionID, result: BuildResult) -> str:
        loaded = self.cascade.load(version)
        result.configuration = loaded.configuration
        result.config_source = str(loaded.loaded_from) if loaded.loaded_from else None
        return result.config_source or "built-in defaults"

    def _check_dependencies(self, version: VersionID, result: BuildResult) -> str:
        tools = required_tools(version, local_source=self.source.uses_local_repo)
        result.dependencies = self.probe.require(tools)
        return ", ".join(tools)

    def _acquire_source(self, version: VersionID, result: BuildResult) -> str:
        result.source = self.source.acquire(version)
        return str(result.source.path)

    def _patch(self, version: VersionID, result: BuildResult, verbose: bool) -> str:
        tree = self._tree(result)
        if not tree.fresh:
            return "skipped for local source repository"
        configuration = self._configuration(result)
        index = self.patches.resolve(version, override=configuration.patch_index or None)
        if index is None:
            result.patches = PatchReport()
            return "no patch index"
        result.patches = self.patches.apply(index, tree.path, verbose=verbose)
        return (
            f"{index.path.name}: {len(result.patches.applied)} applied, "
            f"{len(result.patches.failed)} failed, {len(result.patches.missing)} missing"
        )

    def _configure(self, version: VersionID, result: BuildResult) -> str:
        prefix = self.registry.installation_dir(version)
        self.toolchain.configure(
            self._tree(result).path,
            prefix=prefix,
            options=self._configuration(result).configure_options,
        )
        return f"--prefix={prefix}"

    def _compile(self, version: VersionID, result: BuildResult) -> str:
        tree = self._tree(result).path
        options = self._configuration(result).make_options
        if builds_world(version):
            self.toolchain.make(tree, "world", options=options)
            return "make world"
        self.toolchain.make(tree, options=options)
        return "make"

    def _install(self, version: VersionID, result: BuildResult) -> str:
        tree = self._tree(result).path
        options = self._configuration(result).make_options
        if builds_world(version):
            self.toolchain.make(tree, "install-world")
            detail = "make install-world"
        else:
            self.toolchain.make(tree, "install")
            contrib = tree / "contrib"
            self.toolchain.make(contrib, options=options)
            self.toolchain.make(contrib, "install")
            detail = "make install; contrib: make, make install"

        result.hook = self.hooks.run(
            "post-install",
            self._configuration(result).script_post_install,
            str(version),
        )
        if result.hook is not None:
            detail += f"; post-install hook exit {result.hook.returncode}"
        return detail

    def _persist(self, version: VersionID, result: BuildResult) -> str:
        configuration = self._configuration(result)
        detail = "configuration not written"
        if self.write_configuration:
            path = self.cascade.write(configuration, version)
            result.config_path = str(path)
            detail = str(path)

        tree = self._tree(result)
        patches = result.patches
        self.registry.record_build(
            {
                "version": str(version),
                "path": str(self.registry.installation_dir(version)),
                "built_at": datetime.now(tz=UTC).isoformat(timespec="seconds").replace(
                    "+00:00", "Z"
                ),
                "source": tree.origin,
                "patch_index": str(patches.index) if patches and patches.index else None,
                "patches_applied": len(patches.applied) if patches else 0,
                "rebuild": result.rebuild,
            }
        )
        return detail

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _enter(
        self,
        result: BuildResult,
        state: BuildState,
        op: OperationScope | None,
        *,
        detail: str = "",
        status: str = "success",
    ) -> None:
        result.history.append(state)
        if op is not None:
            op.add_step(f"build.{state.value}", status=status, detail=detail)

    @staticmethod
    def _tree(result: BuildResult) -> SourceTree:
        assert result.source is not None, "source tree requested before acquisition"
        return result.source

    @staticmethod
    def _configuration(result: BuildResult) -> Configuration:
        assert result.configuration is not None, "configuration requested before loading"
        return result.configuration


__all__ = [
    "BuildFailed",
    "BuildPipeline",
    "BuildResult",
    "BuildState",
    "WORLD_BUILD_FIRST_MAJOR",
    "builds_world",
    "required_tools",
]
