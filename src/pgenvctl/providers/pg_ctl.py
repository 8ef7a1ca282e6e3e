"""Server control provider wrapping ``pg_ctl`` and ``initdb``."""
from __future__ import annotations

import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalCommandFailure


class ServerControlError(ExternalCommandFailure):
    """Raised when pg_ctl or initdb fails."""


@dataclass(slots=True)
class ServerControl:
    """Drive the server binaries found in *bin_dir*.

    *bin_dir* normally sits behind the active-installation link, so the
    binaries used always belong to whichever version is active.
    """

    bin_dir: Path
    pg_ctl_name: str = "pg_ctl"
    initdb_name: str = "initdb"

    @property
    def pg_ctl_bin(self) -> Path:
        """Path of the ``pg_ctl`` binary."""
        return self.bin_dir / self.pg_ctl_name

    @property
    def initdb_bin(self) -> Path:
        """Path of the ``initdb`` binary."""
        return self.bin_dir / self.initdb_name

    def status(self, data_dir: Path) -> bool:
        """Return ``True`` when a server is running against *data_dir*."""
        try:
            result = self._pg_ctl("status", data_dir, check=False)
        except ServerControlError:
            return False
        return result.returncode == 0

    def start(
        self,
        data_dir: Path,
        *,
        log_file: Path,
        options: str = "",
    ) -> subprocess.CompletedProcess[str]:
        """Start the server, appending its output to *log_file*."""
        return self._pg_ctl("start", data_dir, "-l", str(log_file), *shlex.split(options))

    def stop(self, data_dir: Path, *, options: str = "") -> subprocess.CompletedProcess[str]:
        """Stop the server."""
        return self._pg_ctl("stop", data_dir, *shlex.split(options))

    def restart(
        self,
        data_dir: Path,
        *,
        log_file: Path,
        options: str = "",
    ) -> subprocess.CompletedProcess[str]:
        """Restart the server."""
        return self._pg_ctl("restart", data_dir, "-l", str(log_file), *shlex.split(options))

    def initdb(self, data_dir: Path, *, options: str = "") -> subprocess.CompletedProcess[str]:
        """Create the storage layout under *data_dir*."""
        args = [str(self.initdb_bin), "-D", str(data_dir), *shlex.split(options)]
        return self._run_command(args, check=True, error_prefix="initdb")

    # ------------------------------------------------------------------
    def _pg_ctl(
        self,
        command: str,
        data_dir: Path,
        *extra: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args = [str(self.pg_ctl_bin), command, "-D", str(data_dir), *extra]
        return self._run_command(args, check=check, error_prefix=f"pg_ctl {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ServerControlError(f"{args[0]} not found: {exc}") from exc
        except PermissionError as exc:
            raise ServerControlError(f"{args[0]} is not executable: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ServerControlError(
                f"{error_prefix} failed (exit {result.returncode}): {message}",
                detail=message,
            )
        return result


__all__ = ["ServerControl", "ServerControlError"]
