"""Run lifecycle hook scripts configured per version."""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HookResult:
    """Outcome of a hook invocation."""

    name: str
    path: Path
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the hook exited successfully."""
        return self.returncode == 0


class HookRunner:
    """Invoke optional hook executables with a single positional argument.

    Hooks never fail the calling step: absent or non-executable hooks are
    skipped, and non-zero exits are logged and returned to the caller.
    """

    def run(self, name: str, script: str | os.PathLike[str] | None, argument: str) -> HookResult | None:
        """Run *script* for hook *name* with *argument*; ``None`` when skipped."""
        if not script or not str(script).strip():
            return None
        path = Path(str(script).strip()).expanduser()
        if not path.is_file() or not os.access(path, os.X_OK):
            LOGGER.warning("Skipping %s hook: %s is not an executable file", name, path)
            return None
        try:
            completed = self._run_hook([str(path), argument])
        except OSError as exc:
            LOGGER.warning("%s hook %s could not be executed: %s", name, path, exc)
            return HookResult(name=name, path=path, returncode=127, output=str(exc))
        output = ((completed.stdout or "") + (completed.stderr or "")).strip()
        result = HookResult(name=name, path=path, returncode=completed.returncode, output=output)
        if not result.ok:
            LOGGER.warning("%s hook %s exited with %s", name, path, completed.returncode)
        return result

    def _run_hook(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Execute the hook (isolated for testing)."""
        return subprocess.run(  # noqa: S603
            args,
            capture_output=True,
            text=True,
            check=False,
        )


__all__ = ["HookResult", "HookRunner"]
