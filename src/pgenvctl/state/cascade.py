"""Per-version configuration cascade.

Each installed version may have its own configuration file
(``<config_dir>/<version>.yml``); a default file (``default.yml``) applies
when no version-specific one exists, and built-in defaults apply when
neither is readable. Writing a file first renames the previous one to a
``.backup`` sibling; only one backup generation is retained.

Files are YAML, written by hand so every option carries a descriptive
comment and options without a value stay visible as commented placeholders::

    # Options passed to ./configure
    configure_options: --with-perl
    # Extra options for every make compile pass (e.g. -j4)
    # make_options:
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml

from ..errors import PreconditionError
from ..versions import VersionID

LOGGER = logging.getLogger(__name__)

DEFAULT_NAME = "default"
CONFIG_SUFFIX = ".yml"
BACKUP_SUFFIX = ".backup"


class CascadeError(PreconditionError):
    """Raised when a configuration file cannot be read, written or deleted."""


@dataclass(frozen=True)
class Configuration:
    """Build and runtime options applied to one version."""

    configure_options: str = ""
    make_options: str = ""
    patch_index: str = ""
    initdb_options: str = "-U postgres --locale en_US.UTF-8 --encoding UNICODE"
    start_options: str = "-w"
    stop_options: str = "-m fast"
    restart_options: str = "-m fast"
    log: str = ""
    script_post_install: str = ""
    script_post_initdb: str = ""
    script_post_start: str = ""
    script_post_stop: str = ""
    script_post_restart: str = ""

    @classmethod
    def option_names(cls) -> tuple[str, ...]:
        """Return every option name in serialisation order."""
        return tuple(item.name for item in fields(cls))

    @classmethod
    def from_mapping(cls, values: Mapping[str, object], *, source: str = "mapping") -> Configuration:
        """Overlay *values* on the built-in defaults."""
        known = set(cls.option_names())
        unknown = set(values) - known
        if unknown:
            joined = ", ".join(sorted(str(key) for key in unknown))
            raise CascadeError(f"Unknown configuration options in {source}: {joined}.")
        coerced: dict[str, str] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, (Mapping, list, tuple, set)):
                raise CascadeError(f"Option '{key}' in {source} must be a scalar value.")
            if isinstance(value, bool):
                coerced[key] = "true" if value else "false"
            else:
                coerced[key] = str(value)
        return cls(**coerced)

    def with_options(self, **changes: str) -> Configuration:
        """Return a copy with *changes* applied."""
        unknown = set(changes) - set(self.option_names())
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise CascadeError(f"Unknown configuration options: {joined}.")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, str]:
        """Return the options as an ordered mapping."""
        return {name: getattr(self, name) for name in self.option_names()}


BUILD_OPTIONS = ("configure_options", "make_options", "patch_index")
RUNTIME_OPTIONS = (
    "initdb_options",
    "start_options",
    "stop_options",
    "restart_options",
    "log",
    "script_post_install",
    "script_post_initdb",
    "script_post_start",
    "script_post_stop",
    "script_post_restart",
)

OPTION_DESCRIPTIONS: dict[str, str] = {
    "configure_options": "Options passed to ./configure",
    "make_options": "Extra options for every make compile pass (e.g. -j4)",
    "patch_index": "Patch index file to use instead of the automatic lookup",
    "initdb_options": "Options passed to initdb when the data directory is created",
    "start_options": "Options passed to pg_ctl start",
    "stop_options": "Options passed to pg_ctl stop",
    "restart_options": "Options passed to pg_ctl restart",
    "log": "Server log file (defaults to <data directory>/server.log)",
    "script_post_install": "Executable run after install, called with the version",
    "script_post_initdb": "Executable run after initdb, called with the data directory",
    "script_post_start": "Executable run after start, called with the data directory",
    "script_post_stop": "Executable run after stop, called with the data directory",
    "script_post_restart": "Executable run after restart, called with the data directory",
}


@dataclass(frozen=True)
class LoadedConfiguration:
    """A configuration together with the file it was read from."""

    configuration: Configuration
    loaded_from: Path | None = None

    @property
    def loaded(self) -> bool:
        """Return ``False`` when only built-in defaults apply."""
        return self.loaded_from is not None


@dataclass(frozen=True)
class ConfigCascade:
    """Resolve, load, write and delete configuration files under *root*."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def resolve(self, version: VersionID | str | None = None) -> Path:
        """Return the configuration path for *version* (default when ``None``)."""
        name = DEFAULT_NAME if version is None else str(version)
        return self.root / f"{name}{CONFIG_SUFFIX}"

    def backup_path(self, version: VersionID | str | None = None) -> Path:
        """Return the backup path paired with :meth:`resolve`."""
        path = self.resolve(version)
        return path.with_name(f"{path.name}{BACKUP_SUFFIX}")

    def exists(self, version: VersionID | str | None = None) -> bool:
        """Return ``True`` when the configuration file for *version* exists."""
        return self.resolve(version).is_file()

    def load(self, version: VersionID | str | None = None) -> LoadedConfiguration:
        """Load the most specific readable configuration for *version*."""
        candidates = [self.resolve(version)]
        if version is not None:
            candidates.append(self.resolve(None))
        for path in candidates:
            values = self._read(path)
            if values is None:
                continue
            LOGGER.debug("Loaded configuration from %s", path)
            return LoadedConfiguration(
                configuration=Configuration.from_mapping(values, source=str(path)),
                loaded_from=path,
            )
        LOGGER.debug("No configuration loaded for %s; using built-in defaults", version)
        return LoadedConfiguration(configuration=Configuration(), loaded_from=None)

    def write(
        self,
        configuration: Configuration,
        version: VersionID | str | None = None,
    ) -> Path:
        """Write *configuration* for *version*, keeping one backup generation."""
        path = self.resolve(version)
        backup = self.backup_path(version)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            if path.exists():
                path.replace(backup)
                LOGGER.info("Backed up %s to %s", path, backup)
            path.write_text(render_configuration(configuration, version), encoding="utf-8")
        except OSError as exc:
            raise CascadeError(f"Failed to write configuration {path}: {exc}") from exc
        LOGGER.info("Wrote configuration %s", path)
        return path

    def delete(
        self,
        version: VersionID | str | None = None,
        *,
        installed: Iterable[str] = (),
    ) -> list[Path]:
        """Delete the configuration for *version* and its backup."""
        path = self.resolve(version)
        if version is None:
            remaining = sorted(installed)
            if remaining:
                raise CascadeError(
                    "Refusing to delete the default configuration while versions are installed: "
                    + ", ".join(remaining),
                    hint="Remove the installed versions first.",
                )
        if not path.exists():
            label = "default" if version is None else f"version {version}"
            raise CascadeError(f"No configuration file for {label} at {path}.")

        removed: list[Path] = []
        for candidate in (path, self.backup_path(version)):
            try:
                candidate.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise CascadeError(f"Failed to delete {candidate}: {exc}") from exc
            removed.append(candidate)
        LOGGER.info("Deleted configuration %s", path)
        return removed

    def _read(self, path: Path) -> dict[str, object] | None:
        try:
            text = path.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, PermissionError):
            return None
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CascadeError(f"Failed to parse configuration {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise CascadeError(f"Configuration {path} must contain a mapping at the top level.")
        return {str(key): value for key, value in data.items()}


def render_configuration(
    configuration: Configuration,
    version: VersionID | str | None = None,
) -> str:
    """Return the file contents for *configuration*.

    The output depends only on the option values, so writing the same
    configuration twice produces identical bytes.
    """
    label = "default configuration" if version is None else f"configuration for PostgreSQL {version}"
    lines = [f"# pgenvctl {label}", ""]
    sections = (("Build options", BUILD_OPTIONS), ("Runtime options", RUNTIME_OPTIONS))
    for title, names in sections:
        lines.append(f"# --- {title} ---")
        for name in names:
            value = getattr(configuration, name)
            lines.append(f"# {OPTION_DESCRIPTIONS[name]}")
            if value == "":
                lines.append(f"# {name}:")
            else:
                lines.append(
                    yaml.safe_dump({name: value}, default_flow_style=False, width=10_000).rstrip("\n")
                )
        lines.append("")
    return "\n".join(lines)


__all__ = [
    "BUILD_OPTIONS",
    "CascadeError",
    "ConfigCascade",
    "Configuration",
    "LoadedConfiguration",
    "OPTION_DESCRIPTIONS",
    "RUNTIME_OPTIONS",
    "render_configuration",
]
