"""Locate the external tools the build pipeline drives."""
from __future__ import annotations

import os
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import DependencyError


@dataclass(frozen=True)
class DependencyReport:
    """Per-tool probe outcome: resolved path or ``None`` when absent."""

    entries: dict[str, Path | None] = field(default_factory=dict)

    @property
    def missing(self) -> list[str]:
        """Return the names of tools that could not be located."""
        return [name for name, path in self.entries.items() if path is None]

    @property
    def ok(self) -> bool:
        """Return ``True`` when every probed tool was found."""
        return not self.missing

    def to_dict(self) -> dict[str, str | None]:
        """Return a serialisable representation."""
        return {name: str(path) if path else None for name, path in self.entries.items()}


@dataclass(frozen=True)
class DependencyProbe:
    """Resolve logical tool names (``make``, ``tar``...) to executables.

    *commands* maps a logical name to the binary configured for it; names
    without a mapping are looked up as-is.
    """

    commands: Mapping[str, str] = field(default_factory=dict)

    def probe(self, names: Iterable[str]) -> DependencyReport:
        """Locate each tool in *names*."""
        entries: dict[str, Path | None] = {}
        for name in names:
            entries[name] = _locate(self.commands.get(name, name))
        return DependencyReport(entries=entries)

    def require(self, names: Iterable[str]) -> DependencyReport:
        """Probe *names* and raise :class:`DependencyError` if any is missing."""
        report = self.probe(names)
        if not report.ok:
            raise DependencyError(
                "Missing required tools: " + ", ".join(report.missing),
                report=report,
                hint="Install the missing tools or point pgenvctl at them via the `tools` config.",
            )
        return report


def _locate(command: str) -> Path | None:
    path = Path(command)
    if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
        if path.exists() and os.access(path, os.X_OK):
            return path
        return None
    resolved = shutil.which(command)
    if resolved is None or not os.access(resolved, os.X_OK):
        return None
    return Path(resolved)


__all__ = ["DependencyProbe", "DependencyReport"]
