from __future__ import annotations

import io
import os
import subprocess
import tarfile
import threading
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from tkforge.errors import AlreadyRunningError, ExitCode, RuntimeInstallError
from tkforge.runtime.installer import InstallProgress, InstallState, RuntimeInstaller
from tkforge.runtime.locator import locate_runtime


def _cp(returncode: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _probe_runner(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
    if not Path(cmd[0]).exists():
        raise FileNotFoundError(cmd[0])
    return _cp(0, "Python 3.11.11\n")


def _tarball(member: str = "python/bin/python3") -> bytes:
    buffer = io.BytesIO()
    payload = b"#!/bin/sh\necho Python 3.11.11\n"
    with tarfile.open(fileobj=buffer, mode="w:gz") as bundle:
        info = tarfile.TarInfo(member)
        info.size = len(payload)
        info.mode = 0o755
        bundle.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def _fetcher(payload: bytes, calls: list[str]) -> Callable[..., None]:
    def fetch(url: str, target: Path, on_progress: Callable[[int, int], None], *, timeout: float) -> None:
        calls.append(url)
        half = len(payload) // 2
        target.write_bytes(payload)
        on_progress(half, len(payload))
        on_progress(len(payload), len(payload))

    return fetch


def _installer(tmp_path: Path, fetcher, *, system: str = "Linux", runner=_probe_runner, events=None, url=""):
    return RuntimeInstaller(
        tmp_path,
        locate_runtime(system, "x86_64", url=url),
        runner=runner,
        fetcher=fetcher,
        listener=events.append if events is not None else None,
    )


def test_install_downloads_extracts_and_verifies(tmp_path: Path) -> None:
    calls: list[str] = []
    events: list[InstallProgress] = []
    installer = _installer(tmp_path, _fetcher(_tarball(), calls), events=events)

    result = installer.ensure_installed()

    assert result.already_installed is False
    assert result.executable == tmp_path / "python" / "bin" / "python3"
    assert result.executable.exists()
    assert not installer.archive_path.exists()
    assert len(calls) == 1
    assert events[0] == InstallProgress(InstallState.DOWNLOADING, 0)
    assert [event.state for event in events[-2:]] == [InstallState.EXTRACTING, InstallState.VERIFIED]


def test_progress_percentages_never_decrease(tmp_path: Path) -> None:
    events: list[InstallProgress] = []
    installer = _installer(tmp_path, _fetcher(_tarball(), []), events=events)

    installer.ensure_installed()

    percents = [event.percent for event in events if event.state == InstallState.DOWNLOADING]
    assert percents == sorted(percents)
    assert percents[-1] == 100


def test_second_call_is_a_noop(tmp_path: Path) -> None:
    calls: list[str] = []
    installer = _installer(tmp_path, _fetcher(_tarball(), calls))

    installer.ensure_installed()
    second = installer.ensure_installed()

    assert second.already_installed is True
    assert len(calls) == 1


def test_zip_archive_is_extracted_for_windows(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        bundle.writestr("python/python.exe", "binary")
    installer = _installer(
        tmp_path,
        _fetcher(buffer.getvalue(), []),
        system="Windows",
        url="https://cdn.test/dependencies/cpython-windows.zip",
    )

    result = installer.ensure_installed()

    assert result.executable == tmp_path / "python" / "python.exe"
    assert result.executable.exists()


def test_corrupt_archive_leaves_no_partial_install(tmp_path: Path) -> None:
    events: list[InstallProgress] = []
    installer = _installer(tmp_path, _fetcher(b"not a tarball", []), events=events)

    with pytest.raises(RuntimeInstallError) as exc:
        installer.ensure_installed()

    assert exc.value.code == ExitCode.INSTALL_ERROR
    assert exc.value.message == "Failed to install dependencies."
    assert not installer.install_dir.exists()
    assert not installer.archive_path.exists()
    assert events[-1].state == InstallState.FAILED


def test_download_failure_reports_connectivity_hint(tmp_path: Path) -> None:
    events: list[InstallProgress] = []

    def offline(url: str, target: Path, on_progress, *, timeout: float) -> None:
        raise OSError("network unreachable")

    installer = _installer(tmp_path, offline, events=events)

    with pytest.raises(RuntimeInstallError) as exc:
        installer.ensure_installed()

    assert "internet connection" in exc.value.hint
    assert [event.state for event in events] == [InstallState.DOWNLOADING, InstallState.FAILED]
    assert not installer.install_dir.exists()


def test_unverifiable_runtime_is_removed(tmp_path: Path) -> None:
    def broken_runner(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
        return _cp(1, stderr="cannot execute binary file")

    installer = _installer(tmp_path, _fetcher(_tarball(), []), runner=broken_runner)

    with pytest.raises(RuntimeInstallError):
        installer.ensure_installed()

    assert not installer.install_dir.exists()


def test_probe_rejects_stderr_output(tmp_path: Path) -> None:
    def noisy(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
        return _cp(0, stderr="warning: broken stdlib")

    installer = _installer(tmp_path, _fetcher(_tarball(), []), runner=noisy)

    assert installer.probe() is False


def test_partial_previous_install_is_cleaned_before_retry(tmp_path: Path) -> None:
    stale = tmp_path / "python" / "lib" / "leftover.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("partial", encoding="utf-8")
    installer = _installer(tmp_path, _fetcher(_tarball(), []))

    installer.ensure_installed()

    assert not stale.exists()
    assert installer.executable.exists()


def test_concurrent_install_is_rejected(tmp_path: Path) -> None:
    entered = threading.Event()
    release = threading.Event()
    payload = _tarball()

    def slow_fetch(url: str, target: Path, on_progress, *, timeout: float) -> None:
        entered.set()
        release.wait(timeout=5)
        target.write_bytes(payload)

    installer = _installer(tmp_path, slow_fetch)
    worker = threading.Thread(target=installer.ensure_installed)
    worker.start()
    try:
        assert entered.wait(timeout=5)
        with pytest.raises(AlreadyRunningError):
            installer.ensure_installed()
    finally:
        release.set()
        worker.join(timeout=5)

    assert installer.executable.exists()


def test_state_tracks_lifecycle(tmp_path: Path) -> None:
    installer = _installer(tmp_path, _fetcher(_tarball(), []))
    assert installer.state == InstallState.ABSENT

    installer.ensure_installed()

    assert installer.state == InstallState.VERIFIED


def test_failed_install_reports_failed_state(tmp_path: Path) -> None:
    installer = _installer(tmp_path, _fetcher(b"garbage", []))

    with pytest.raises(RuntimeInstallError):
        installer.ensure_installed()

    assert installer.state == InstallState.FAILED


def test_archive_truncated_mid_member_fails_cleanly(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    payload = os.urandom(200_000)
    with tarfile.open(fileobj=buffer, mode="w:gz") as bundle:
        info = tarfile.TarInfo("python/bin/python3")
        info.size = len(payload)
        bundle.addfile(info, io.BytesIO(payload))
    truncated = buffer.getvalue()[:60_000]
    events: list[InstallProgress] = []
    installer = _installer(tmp_path, _fetcher(truncated, []), events=events)

    with pytest.raises(RuntimeInstallError) as exc:
        installer.ensure_installed()

    assert exc.value.code == ExitCode.INSTALL_ERROR
    assert not installer.install_dir.exists()
    assert not installer.archive_path.exists()
    assert events[-1].state == InstallState.FAILED
    assert installer.state == InstallState.FAILED


def test_zip_with_corrupt_deflate_stream_fails_cleanly(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        bundle.writestr("python/python.exe", b"runtime " * 4096)
    raw = bytearray(buffer.getvalue())
    # Flip bytes inside the compressed member data, past the local header.
    for offset in range(60, 120):
        raw[offset] ^= 0xFF
    installer = _installer(
        tmp_path,
        _fetcher(bytes(raw), []),
        system="Windows",
        url="https://cdn.test/dependencies/cpython-windows.zip",
    )

    with pytest.raises(RuntimeInstallError):
        installer.ensure_installed()

    assert not installer.install_dir.exists()
