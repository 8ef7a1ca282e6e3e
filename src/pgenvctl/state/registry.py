"""Helpers for interacting with the pgenvctl state root.

The root directory (``~/.pgenvctl`` by default) holds one ``pgsql-<version>``
directory per built installation and the ``pgsql`` symlink pointing at the
active one. Build metadata is recorded in ``builds.yml`` using atomic
writes so a crashed invocation never leaves a truncated file behind.
"""
from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..errors import PreconditionError
from ..versions import VersionID, is_valid_version, sort_versions

INSTALL_PREFIX = "pgsql-"
ACTIVE_LINK = "pgsql"
BUILDS_FILE = "builds.yml"


class RegistryError(PreconditionError):
    """Raised when installation state operations fail."""


@dataclass(frozen=True)
class InstallationRegistry:
    """High-level interface to installations under *root*."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the root directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Installations
    # ------------------------------------------------------------------
    def installation_dir(self, version: VersionID | str) -> Path:
        """Return the install prefix for *version*."""
        return self.root / f"{INSTALL_PREFIX}{version}"

    def is_installed(self, version: VersionID | str) -> bool:
        """Return ``True`` when *version* has an installation directory."""
        return self.installation_dir(version).is_dir()

    def installed_versions(self) -> list[str]:
        """Return installed versions in natural version order."""
        if not self.root.is_dir():
            return []
        found: list[str] = []
        for entry in self.root.iterdir():
            if not entry.name.startswith(INSTALL_PREFIX) or entry.is_symlink():
                continue
            if not entry.is_dir():
                continue
            version = entry.name[len(INSTALL_PREFIX) :]
            if is_valid_version(version):
                found.append(version)
        return sort_versions(found)

    def remove(self, version: VersionID | str) -> Path:
        """Delete the installation directory for *version*."""
        target = self.installation_dir(version)
        if self.active_version() == str(version):
            raise RegistryError(
                f"PostgreSQL {version} is in use and cannot be removed.",
                hint="Switch to another version with `pgenvctl use` or run `pgenvctl clear` first.",
            )
        if not target.is_dir():
            raise RegistryError(f"PostgreSQL {version} is not installed.")
        shutil.rmtree(target)
        return target

    # ------------------------------------------------------------------
    # Active installation
    # ------------------------------------------------------------------
    @property
    def active_link(self) -> Path:
        """Path of the symlink naming the active installation."""
        return self.root / ACTIVE_LINK

    @property
    def data_dir(self) -> Path:
        """Data directory of the active installation."""
        return self.active_link / "data"

    @property
    def bin_dir(self) -> Path:
        """Binary directory of the active installation."""
        return self.active_link / "bin"

    def active_version(self) -> str | None:
        """Return the active version, or ``None`` when nothing is in use."""
        link = self.active_link
        if not link.is_symlink():
            return None
        target_name = Path(os.readlink(link)).name
        if not target_name.startswith(INSTALL_PREFIX):
            return None
        return target_name[len(INSTALL_PREFIX) :]

    def activate(self, version: VersionID | str) -> Path:
        """Atomically point the active link at *version*."""
        target = self.installation_dir(version)
        if not target.is_dir():
            raise RegistryError(
                f"PostgreSQL {version} is not installed.",
                hint=f"Build it first with `pgenvctl build {version}`.",
            )
        self.ensure_root()
        temp_link = self.root / f".{ACTIVE_LINK}.tmp"
        try:
            if temp_link.exists() or temp_link.is_symlink():
                temp_link.unlink()
            temp_link.symlink_to(target.name)
            temp_link.replace(self.active_link)
        except OSError as exc:
            if temp_link.is_symlink():
                temp_link.unlink()
            raise RegistryError(
                f"Failed to point {self.active_link} at {target.name}: {exc}",
                hint=f"Make sure {self.active_link} is a symlink or absent.",
            ) from exc
        return self.active_link

    def deactivate(self) -> None:
        """Remove the active link, leaving every installation in place."""
        link = self.active_link
        if not link.is_symlink():
            raise RegistryError("No PostgreSQL version is currently in use.")
        link.unlink()

    # ------------------------------------------------------------------
    # Build records
    # ------------------------------------------------------------------
    def read_builds(self) -> list[dict[str, Any]]:
        """Return the recorded build entries (empty list if missing)."""
        path = self.root / BUILDS_FILE
        if not path.exists():
            return []
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise RegistryError(f"Failed to parse build records {path}: {exc}") from exc
        raw = data.get("builds", []) if isinstance(data, Mapping) else []
        if not isinstance(raw, list):
            return []
        return [dict(entry) for entry in raw if isinstance(entry, Mapping) and entry.get("version")]

    def get_build(self, version: VersionID | str) -> dict[str, Any] | None:
        """Return the build record for *version* if present."""
        for entry in self.read_builds():
            if str(entry.get("version")) == str(version):
                return deepcopy(entry)
        return None

    def record_build(self, entry: Mapping[str, object]) -> None:
        """Add or replace the build record keyed by ``entry['version']``."""
        version = str(entry.get("version", "")).strip()
        if not version:
            raise RegistryError("Build record missing 'version'.")
        builds = [item for item in self.read_builds() if str(item.get("version")) != version]
        builds.append(dict(entry))
        self._write_builds(builds)

    def forget_build(self, version: VersionID | str) -> bool:
        """Remove the build record for *version*; return ``True`` if one existed."""
        builds = self.read_builds()
        filtered = [item for item in builds if str(item.get("version")) != str(version)]
        if len(filtered) == len(builds):
            return False
        self._write_builds(filtered)
        return True

    def _write_builds(self, builds: Iterable[Mapping[str, object]]) -> None:
        self.ensure_root()
        path = self.root / BUILDS_FILE
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump({"builds": [dict(item) for item in builds]}, handle, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["InstallationRegistry", "RegistryError"]
