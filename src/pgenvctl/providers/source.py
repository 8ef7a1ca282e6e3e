"""Acquire PostgreSQL source trees for the build pipeline.

Sources come either from a configured local working copy, used in place, or
from the remote archive host laid out as
``<download_root>/v<version>/<name>-<version>.<ext>``. Archives are cached in
``<src_dir>`` and unpacked fresh for every build.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ..errors import ExternalCommandFailure
from ..versions import VersionID

LOGGER = logging.getLogger(__name__)

# Releases before 8.0 are only published as gzip archives.
BZIP2_FIRST_MAJOR = 8


class SourceError(ExternalCommandFailure):
    """Raised when a source tree cannot be downloaded or unpacked."""


@dataclass(frozen=True, slots=True)
class SourceTree:
    """A source tree ready for patching and ``configure``."""

    version: str
    path: Path
    origin: Literal["local", "archive"]
    archive: Path | None = None
    downloaded: bool = False

    @property
    def fresh(self) -> bool:
        """Return ``True`` when the tree was unpacked for this build."""
        return self.origin == "archive"


def archive_extension(version: VersionID) -> str:
    """Return the archive extension published for *version*."""
    return "tar.bz2" if version.major >= BZIP2_FIRST_MAJOR else "tar.gz"


def decompressor_for(version: VersionID) -> str:
    """Return the decompression tool ``tar`` needs for *version*'s archive."""
    return "bzip2" if version.major >= BZIP2_FIRST_MAJOR else "gzip"


@dataclass(slots=True)
class SourceProvider:
    """Download, cache and unpack source archives."""

    src_dir: Path
    download_root: str
    archive_name: str = "postgresql"
    local_repo: Path | None = None
    tar_bin: str = "tar"
    timeout: float = 30.0

    @property
    def uses_local_repo(self) -> bool:
        """Return ``True`` when a local working copy replaces downloads."""
        return self.local_repo is not None

    def archive_filename(self, version: VersionID) -> str:
        """Return the archive file name for *version*."""
        return f"{self.archive_name}-{version}.{archive_extension(version)}"

    def archive_url(self, version: VersionID) -> str:
        """Return the remote URL of the archive for *version*."""
        root = self.download_root.rstrip("/")
        return f"{root}/v{version}/{self.archive_filename(version)}"

    def archive_path(self, version: VersionID) -> Path:
        """Return the cached archive location for *version*."""
        return self.src_dir / self.archive_filename(version)

    def tree_path(self, version: VersionID) -> Path:
        """Return the unpacked source tree location for *version*."""
        return self.src_dir / f"{self.archive_name}-{version}"

    def acquire(self, version: VersionID) -> SourceTree:
        """Return a source tree for *version*, downloading as needed."""
        if self.local_repo is not None:
            repo = self.local_repo.expanduser()
            if not repo.is_dir():
                raise SourceError(f"Local source repository {repo} does not exist.")
            LOGGER.info("Using local source repository %s", repo)
            return SourceTree(version=str(version), path=repo, origin="local")

        archive, downloaded = self.fetch(version)
        tree = self.unpack(version, archive)
        return SourceTree(
            version=str(version),
            path=tree,
            origin="archive",
            archive=archive,
            downloaded=downloaded,
        )

    def fetch(self, version: VersionID) -> tuple[Path, bool]:
        """Return the cached archive, downloading it when absent."""
        archive = self.archive_path(version)
        if archive.is_file():
            LOGGER.info("Using cached archive %s", archive)
            return archive, False

        self.src_dir.mkdir(parents=True, exist_ok=True)
        url = self.archive_url(version)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.src_dir), prefix=f".{archive.name}.")
        os.close(tmp_fd)
        tmp_path = Path(tmp_name)
        try:
            self._download(url, tmp_path)
            os.replace(tmp_path, archive)
        finally:
            tmp_path.unlink(missing_ok=True)
        LOGGER.info("Downloaded %s", url)
        return archive, True

    def unpack(self, version: VersionID, archive: Path) -> Path:
        """Unpack *archive* into a clean tree, removing any stale unpack first."""
        tree = self.tree_path(version)
        if tree.exists():
            shutil.rmtree(tree)
        flag = "-xjf" if archive.name.endswith(".bz2") else "-xzf"
        cmd = [self.tar_bin, flag, str(archive), "-C", str(self.src_dir)]
        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SourceError(f"{self.tar_bin} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "tar command failed").strip()
            raise SourceError(f"Failed to unpack {archive.name}: {message}", detail=message)
        if not tree.is_dir():
            raise SourceError(f"Archive {archive.name} did not contain {tree.name}/.")
        return tree

    def remove(self, version: VersionID) -> list[Path]:
        """Delete the cached archive and unpacked tree for *version*."""
        removed: list[Path] = []
        tree = self.tree_path(version)
        if tree.is_dir():
            shutil.rmtree(tree)
            removed.append(tree)
        archive = self.archive_path(version)
        if archive.is_file():
            archive.unlink()
            removed.append(archive)
        return removed

    def _download(self, url: str, destination: Path) -> None:
        """Stream *url* into *destination* (isolated for testing)."""
        request = urllib.request.Request(url, headers={"User-Agent": "pgenvctl"})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310
                with destination.open("wb") as handle:
                    shutil.copyfileobj(response, handle)
        except urllib.error.HTTPError as exc:
            raise SourceError(f"Download of {url} failed: HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise SourceError(f"Download of {url} failed: {exc}") from exc


__all__ = [
    "SourceError",
    "SourceProvider",
    "SourceTree",
    "archive_extension",
    "decompressor_for",
]
