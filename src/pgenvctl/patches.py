"""Patch index resolution and best-effort patch application.

Index files live in ``<patch_root>/index`` and are named after successively
less specific forms of the version, each tried with and without the host
operating system::

    patch.9.6.4.Linux, patch.9.6.4, patch.9.6.Linux, patch.9.6, patch.9.Linux, patch.9

The first existing file wins; candidates are never merged. An index lists one
patch file per line, either absolute or relative to ``<patch_root>``.
"""
from __future__ import annotations

import logging
import os
import platform
import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .versions import VersionID

LOGGER = logging.getLogger(__name__)

INDEX_PREFIX = "patch"
_LEADING_NUMBER_RE = re.compile(r"[0-9]+")

PatchStatus = Literal["applied", "failed", "missing"]


@dataclass(frozen=True)
class PatchIndex:
    """An ordered list of patch files read from one index file."""

    path: Path
    patches: tuple[Path, ...] = ()


@dataclass(frozen=True)
class PatchOutcome:
    """Result of applying one patch."""

    patch: Path
    status: PatchStatus
    detail: str = ""


@dataclass
class PatchReport:
    """Per-patch results for one application run."""

    index: Path | None = None
    outcomes: list[PatchOutcome] = field(default_factory=list)

    def _with_status(self, status: PatchStatus) -> list[PatchOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def applied(self) -> list[PatchOutcome]:
        """Patches that applied cleanly."""
        return self._with_status("applied")

    @property
    def failed(self) -> list[PatchOutcome]:
        """Patches that ``patch`` rejected."""
        return self._with_status("failed")

    @property
    def missing(self) -> list[PatchOutcome]:
        """Patches listed in the index but absent on disk."""
        return self._with_status("missing")

    @property
    def partial(self) -> bool:
        """Return ``True`` when at least one patch did not apply."""
        return bool(self.failed or self.missing)


def candidate_names(version: VersionID | str) -> list[str]:
    """Return the truncated version names, most specific first.

    Pre-releases have no dotted prefix, so ``11beta1`` falls back to ``11``.
    """
    text = str(version)
    without_last = text.rsplit(".", 1)[0]
    leading = _LEADING_NUMBER_RE.match(text)
    return [text, without_last, leading.group(0) if leading else text]


@dataclass
class PatchResolver:
    """Select and apply the patch set for a version."""

    patch_root: Path
    os_name: str = field(default_factory=platform.system)
    patch_bin: str = "patch"

    @property
    def index_dir(self) -> Path:
        """Directory holding the index files."""
        return self.patch_root / "index"

    def candidates(self, version: VersionID | str) -> list[Path]:
        """Return the six candidate index paths for *version*, most specific first."""
        paths: list[Path] = []
        for name in candidate_names(version):
            paths.append(self.index_dir / f"{INDEX_PREFIX}.{name}.{self.os_name}")
            paths.append(self.index_dir / f"{INDEX_PREFIX}.{name}")
        return paths

    def resolve(
        self,
        version: VersionID | str,
        *,
        override: str | os.PathLike[str] | None = None,
    ) -> PatchIndex | None:
        """Return the patch index for *version*, or ``None`` when none applies.

        A non-empty *override* names the index file directly and bypasses
        the candidate search.
        """
        if override is not None and str(override).strip():
            path = Path(str(override).strip()).expanduser()
            if not path.is_absolute():
                path = self.index_dir / path
            if not _readable(path):
                LOGGER.warning("Configured patch index %s is not readable", path)
                return None
            return self._load(path)

        for path in self.candidates(version):
            if _readable(path):
                LOGGER.debug("Selected patch index %s", path)
                return self._load(path)
        return None

    def apply(
        self,
        index: PatchIndex,
        source_root: Path,
        *,
        verbose: bool = False,
    ) -> PatchReport:
        """Apply every patch of *index* to *source_root*, continuing past failures."""
        report = PatchReport(index=index.path)
        for patch in index.patches:
            if not patch.is_file():
                outcome = PatchOutcome(patch=patch, status="missing", detail="patch file not found")
                LOGGER.warning("Skipping missing patch %s", patch)
            else:
                outcome = self._apply_one(patch, source_root)
            report.outcomes.append(outcome)
            if verbose:
                LOGGER.info("Patch %s: %s %s", patch, outcome.status, outcome.detail)
        return report

    # ------------------------------------------------------------------
    def _load(self, path: Path) -> PatchIndex:
        patches: list[Path] = []
        for raw_line in path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            reference = Path(line).expanduser()
            patches.append(reference if reference.is_absolute() else self.patch_root / reference)
        return PatchIndex(path=path, patches=tuple(patches))

    def _apply_one(self, patch: Path, source_root: Path) -> PatchOutcome:
        args = [self.patch_bin, "-p1", "-i", str(patch)]
        try:
            result = self._run_patch(args, cwd=source_root)
        except OSError as exc:
            return PatchOutcome(patch=patch, status="failed", detail=str(exc))
        output = ((result.stdout or "") + (result.stderr or "")).strip()
        if result.returncode != 0:
            LOGGER.warning("Patch %s failed (exit %s)", patch, result.returncode)
            return PatchOutcome(patch=patch, status="failed", detail=output)
        return PatchOutcome(patch=patch, status="applied", detail=output)

    def _run_patch(self, args: Sequence[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        """Execute ``patch`` (isolated for testing)."""
        return subprocess.run(  # noqa: S603
            list(args),
            cwd=str(cwd),
            capture_output=True,
            text=True,
            check=False,
        )


def _readable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


__all__ = [
    "PatchIndex",
    "PatchOutcome",
    "PatchReport",
    "PatchResolver",
    "candidate_names",
]
