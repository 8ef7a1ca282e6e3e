"""Configuration loader for pgenvctl.

This module centralises the logic for reading the settings of the tool
itself (where its state root lives, where sources are downloaded from, which
binaries drive the build) from multiple sources:

1. Built-in defaults.
2. ``~/.pgenvctl/pgenvctl.yml`` (or an override path).
3. Environment variables prefixed with ``PGENVCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PGENVCTL_ROOT=/opt/pgenv
    export PGENVCTL_TOOLS__MAKE=gmake

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.

Per-version build and runtime options are not handled here; they live in the
configuration cascade (:mod:`pgenvctl.state.cascade`).
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import UserInputError

ENV_PREFIX = "PGENVCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(UserInputError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ToolsConfig:
    """External binaries used by the build pipeline."""

    make: str = "make"
    patch: str = "patch"
    tar: str = "tar"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"make": self.make, "patch": self.patch, "tar": self.tar}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for pgenvctl."""

    config_file: Path
    root: Path
    logs_dir: Path
    download_root: str
    archive_name: str
    local_source_repo: Path | None
    fetch_timeout: float
    write_build_config: bool
    tools: ToolsConfig

    @property
    def config_dir(self) -> Path:
        """Directory holding the per-version configuration cascade."""
        return self.root / "config"

    @property
    def patch_dir(self) -> Path:
        """Directory holding patch files and the ``index/`` directory."""
        return self.root / "patch"

    @property
    def src_dir(self) -> Path:
        """Directory holding downloaded archives and unpacked source trees."""
        return self.root / "src"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "root": str(self.root),
            "logs_dir": str(self.logs_dir),
            "download_root": self.download_root,
            "archive_name": self.archive_name,
            "local_source_repo": (
                str(self.local_source_repo) if self.local_source_repo else None
            ),
            "fetch_timeout": self.fetch_timeout,
            "write_build_config": self.write_build_config,
            "tools": self.tools.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.pgenvctl/pgenvctl.yml",
    "root": "~/.pgenvctl",
    "logs_dir": None,  # derived from root when absent
    "download_root": "https://ftp.postgresql.org/pub/source",
    "archive_name": "postgresql",
    "local_source_repo": None,
    "fetch_timeout": 30.0,
    "write_build_config": True,
    "tools": {
        "make": "make",
        "patch": "patch",
        "tar": "tar",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_TOOL_KEYS = {"make", "patch", "tar"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    fetch_timeout = raw.get("fetch_timeout")
    if fetch_timeout is not None:
        _expect_positive_float(fetch_timeout, "fetch_timeout", default=30.0)

    download_root = raw.get("download_root")
    if not isinstance(download_root, str) or not download_root.strip():
        raise ConfigError("download_root must be a non-empty URL string.")

    tools = raw.get("tools")
    if tools is not None:
        tools_map = _as_dict(tools, "tools")
        unknown = set(tools_map.keys()) - ALLOWED_TOOL_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown tools configuration keys: {joined}.")
        for key, value in tools_map.items():
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"tools.{key} must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    root = _to_path(raw.get("root"))

    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value else root / "logs"

    local_repo_value = raw.get("local_source_repo")
    local_source_repo: Path | None = None
    if isinstance(local_repo_value, (str, Path)):
        if str(local_repo_value).strip():
            local_source_repo = _to_path(local_repo_value)
    elif local_repo_value is not None:
        raise ConfigError("local_source_repo must be a string, Path, or null.")

    write_build_config = raw.get("write_build_config", True)
    if not isinstance(write_build_config, bool):
        raise ConfigError(
            f"Expected write_build_config to be a boolean. Got {write_build_config!r}."
        )

    tools_mapping = _as_dict(raw.get("tools"), "tools")
    tools = ToolsConfig(
        make=str(tools_mapping.get("make", "make")),
        patch=str(tools_mapping.get("patch", "patch")),
        tar=str(tools_mapping.get("tar", "tar")),
    )

    return AppConfig(
        config_file=config_file,
        root=root,
        logs_dir=logs_dir,
        download_root=str(raw.get("download_root")).rstrip("/"),
        archive_name=str(raw.get("archive_name", "postgresql")),
        local_source_repo=local_source_repo,
        fetch_timeout=_expect_positive_float(
            raw.get("fetch_timeout"), "fetch_timeout", default=30.0
        ),
        write_build_config=write_build_config,
        tools=tools,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "ToolsConfig",
    "load_config",
]
