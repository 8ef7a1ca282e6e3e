"""Drive PostgreSQL's own ``configure``/``make`` build system."""
from __future__ import annotations

import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalCommandFailure


class ToolchainError(ExternalCommandFailure):
    """Raised when configure or make exits unsuccessfully."""


@dataclass(slots=True)
class ToolchainProvider:
    """Run configure and make inside a source tree.

    Build output streams straight to the terminal unless *quiet* is set;
    builds take minutes and the operator needs to see progress.
    """

    make_bin: str = "make"
    quiet: bool = False

    def configure(self, source_dir: Path, *, prefix: Path, options: str = "") -> None:
        """Run ``./configure --prefix=<prefix> <options>``."""
        args = ["./configure", f"--prefix={prefix}", *shlex.split(options)]
        self._checked(args, cwd=source_dir, label="configure")

    def make(self, source_dir: Path, *targets: str, options: str = "") -> None:
        """Run ``make <targets> <options>`` in *source_dir*."""
        args = [self.make_bin, *targets, *shlex.split(options)]
        label = " ".join(["make", *targets]).strip()
        self._checked(args, cwd=source_dir, label=label)

    # ------------------------------------------------------------------
    def _checked(self, args: Sequence[str], *, cwd: Path, label: str) -> None:
        try:
            result = self._run_command(args, cwd=cwd)
        except FileNotFoundError as exc:
            raise ToolchainError(f"{label} could not be started: {exc}") from exc
        if result.returncode != 0:
            output = ((result.stderr or "") or (result.stdout or "")).strip()
            tail = "\n".join(output.splitlines()[-20:])
            raise ToolchainError(
                f"{label} failed in {cwd} (exit {result.returncode})",
                detail=tail,
            )

    def _run_command(self, args: Sequence[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        """Execute a build command (isolated for testing)."""
        return subprocess.run(  # noqa: S603
            list(args),
            cwd=str(cwd),
            capture_output=self.quiet,
            text=True,
            check=False,
        )


__all__ = ["ToolchainError", "ToolchainProvider"]
