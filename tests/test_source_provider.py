"""Tests for source acquisition and the configure/make driver."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from pgenvctl.providers.source import (
    SourceError,
    SourceProvider,
    archive_extension,
    decompressor_for,
)
from pgenvctl.providers.toolchain import ToolchainError, ToolchainProvider
from pgenvctl.versions import require_version

ROOT_URL = "https://ftp.example.invalid/pub/source"


def _provider(tmp_path: Path, **kwargs: object) -> SourceProvider:
    return SourceProvider(src_dir=tmp_path / "src", download_root=ROOT_URL + "/", **kwargs)


@pytest.fixture
def downloads(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Replace the network download with a local write."""
    fetched: list[str] = []

    def fake_download(self: SourceProvider, url: str, destination: Path) -> None:
        fetched.append(url)
        destination.write_bytes(b"archive")

    monkeypatch.setattr(SourceProvider, "_download", fake_download)
    return fetched


@pytest.fixture
def tar_calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Fake ``tar`` by creating the expected tree."""
    recorded: list[list[str]] = []

    def fake_run(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        recorded.append(list(cmd))
        archive = Path(cmd[2])
        name = archive.name.split(".tar.")[0]
        (Path(cmd[4]) / name).mkdir(parents=True, exist_ok=True)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("pgenvctl.providers.source.subprocess.run", fake_run)
    return recorded


def test_archive_era() -> None:
    """Archives switch from gzip to bzip2 at major 8."""
    assert archive_extension(require_version("7.4.30")) == "tar.gz"
    assert archive_extension(require_version("8.0.1")) == "tar.bz2"
    assert decompressor_for(require_version("7.4.30")) == "gzip"
    assert decompressor_for(require_version("12.1")) == "bzip2"


def test_archive_url_layout(tmp_path: Path) -> None:
    """URLs follow ``<root>/v<version>/postgresql-<version>.<ext>``."""
    provider = _provider(tmp_path)

    assert provider.archive_url(require_version("9.6.4")) == (
        f"{ROOT_URL}/v9.6.4/postgresql-9.6.4.tar.bz2"
    )
    assert provider.archive_url(require_version("7.4.30")) == (
        f"{ROOT_URL}/v7.4.30/postgresql-7.4.30.tar.gz"
    )


def test_acquire_downloads_then_unpacks(
    tmp_path: Path,
    downloads: list[str],
    tar_calls: list[list[str]],
) -> None:
    """A missing archive is downloaded and unpacked with the matching flag."""
    provider = _provider(tmp_path)

    tree = provider.acquire(require_version("12.1"))

    assert downloads == [f"{ROOT_URL}/v12.1/postgresql-12.1.tar.bz2"]
    assert tree.origin == "archive"
    assert tree.fresh is True
    assert tree.downloaded is True
    assert tree.path == tmp_path / "src" / "postgresql-12.1"
    assert tar_calls == [
        ["tar", "-xjf", str(tmp_path / "src" / "postgresql-12.1.tar.bz2"), "-C", str(tmp_path / "src")]
    ]
    assert not [path for path in (tmp_path / "src").iterdir() if path.name.startswith(".")]


def test_cached_archive_is_reused_and_stale_tree_removed(
    tmp_path: Path,
    downloads: list[str],
    tar_calls: list[list[str]],
) -> None:
    """Cached archives are not downloaded again; old unpacks are replaced."""
    provider = _provider(tmp_path)
    provider.src_dir.mkdir(parents=True)
    (provider.src_dir / "postgresql-7.4.30.tar.gz").write_bytes(b"cached")
    stale = provider.src_dir / "postgresql-7.4.30"
    stale.mkdir()
    (stale / "leftover.o").write_text("")

    tree = provider.acquire(require_version("7.4.30"))

    assert downloads == []
    assert tree.downloaded is False
    assert tar_calls[0][1] == "-xzf"
    assert not (tree.path / "leftover.o").exists()


def test_local_repository_is_used_in_place(tmp_path: Path, downloads: list[str]) -> None:
    """A configured working copy short-circuits download and unpack."""
    repo = tmp_path / "postgres"
    repo.mkdir()
    provider = _provider(tmp_path, local_repo=repo)

    tree = provider.acquire(require_version("12.1"))

    assert provider.uses_local_repo
    assert tree.path == repo
    assert tree.fresh is False
    assert downloads == []


def test_missing_local_repository_is_an_error(tmp_path: Path) -> None:
    """A configured but absent working copy fails the acquisition."""
    provider = _provider(tmp_path, local_repo=tmp_path / "nowhere")

    with pytest.raises(SourceError, match="does not exist"):
        provider.acquire(require_version("12.1"))


def test_failed_download_leaves_no_partial_archive(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Interrupted downloads never leave a cached archive behind."""

    def broken(self: SourceProvider, url: str, destination: Path) -> None:
        destination.write_bytes(b"partial")
        raise SourceError(f"Download of {url} failed: HTTP 404")

    monkeypatch.setattr(SourceProvider, "_download", broken)
    provider = _provider(tmp_path)

    with pytest.raises(SourceError, match="HTTP 404"):
        provider.fetch(require_version("12.1"))

    assert list(provider.src_dir.iterdir()) == []


def test_unpack_failure_reports_tar_output(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """tar errors become source errors carrying its output."""

    def failing_tar(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(cmd, 2, stdout="", stderr="bzip2: data integrity error")

    monkeypatch.setattr("pgenvctl.providers.source.subprocess.run", failing_tar)
    provider = _provider(tmp_path)
    provider.src_dir.mkdir(parents=True)
    archive = provider.src_dir / "postgresql-12.1.tar.bz2"
    archive.write_bytes(b"junk")

    with pytest.raises(SourceError) as excinfo:
        provider.unpack(require_version("12.1"), archive)

    assert excinfo.value.detail == "bzip2: data integrity error"


def test_remove_deletes_archive_and_tree(tmp_path: Path) -> None:
    """Removing a version drops its cached sources."""
    provider = _provider(tmp_path)
    (provider.src_dir / "postgresql-12.1").mkdir(parents=True)
    (provider.src_dir / "postgresql-12.1.tar.bz2").write_bytes(b"x")

    removed = provider.remove(require_version("12.1"))

    assert len(removed) == 2
    assert list(provider.src_dir.iterdir()) == []


def test_toolchain_builds_command_lines(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """configure and make receive split option strings in the source tree."""
    recorded: list[tuple[list[str], Path]] = []

    def fake_run(
        self: ToolchainProvider,
        args: Sequence[str],
        *,
        cwd: Path,
    ) -> subprocess.CompletedProcess[str]:
        recorded.append((list(args), cwd))
        return subprocess.CompletedProcess(args, 0)

    monkeypatch.setattr(ToolchainProvider, "_run_command", fake_run)
    toolchain = ToolchainProvider(make_bin="gmake")
    prefix = tmp_path / "pgsql-12.1"

    toolchain.configure(tmp_path, prefix=prefix, options="--with-perl --with-openssl")
    toolchain.make(tmp_path, "world", options="-j4")

    assert recorded == [
        (["./configure", f"--prefix={prefix}", "--with-perl", "--with-openssl"], tmp_path),
        (["gmake", "world", "-j4"], tmp_path),
    ]


def test_toolchain_failure_keeps_output_tail(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failing make reports its exit status and the last lines of output."""
    output = "\n".join(f"line {number}" for number in range(40))

    def fake_run(
        self: ToolchainProvider,
        args: Sequence[str],
        *,
        cwd: Path,
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(args, 2, stdout="", stderr=output)

    monkeypatch.setattr(ToolchainProvider, "_run_command", fake_run)

    with pytest.raises(ToolchainError) as excinfo:
        ToolchainProvider(quiet=True).make(tmp_path, "install-world")

    assert "make install-world failed" in str(excinfo.value)
    assert "(exit 2)" in str(excinfo.value)
    assert excinfo.value.detail.splitlines() == [f"line {number}" for number in range(20, 40)]
