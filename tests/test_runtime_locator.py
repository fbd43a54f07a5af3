from __future__ import annotations

from pathlib import Path

import pytest

from tkforge.runtime.locator import (
    ArchiveKind,
    locate_runtime,
    runtime_dir,
    runtime_executable,
)

_PLATFORMS = [
    ("Windows", "AMD64"),
    ("Windows", "ARM64"),
    ("Darwin", "arm64"),
    ("Darwin", "x86_64"),
    ("Linux", "x86_64"),
    ("Linux", "aarch64"),
    ("FreeBSD", "amd64"),
]


@pytest.mark.parametrize(("system", "machine"), _PLATFORMS)
def test_every_platform_has_a_usable_descriptor(system: str, machine: str) -> None:
    descriptor = locate_runtime(system, machine)

    assert descriptor.url.startswith("https://")
    assert descriptor.archive_kind in {ArchiveKind.ZIP, ArchiveKind.TAR_GZ}
    assert descriptor.executable
    assert descriptor.url.endswith(descriptor.archive_kind.value)


@pytest.mark.parametrize(("system", "machine"), _PLATFORMS)
def test_descriptor_is_deterministic(system: str, machine: str) -> None:
    assert locate_runtime(system, machine) == locate_runtime(system, machine)


def test_windows_uses_upstream_tarball_and_powershell() -> None:
    descriptor = locate_runtime("Windows", "AMD64")

    assert descriptor.platform == "windows"
    assert descriptor.archive_kind == ArchiveKind.TAR_GZ
    assert descriptor.executable == "python.exe"
    assert descriptor.launcher == "powershell"
    assert descriptor.archive_name == "python.tar.gz"


def test_windows_arm_uses_x64_build() -> None:
    descriptor = locate_runtime("Windows", "ARM64")

    assert descriptor.machine == "x86_64"
    assert "aarch64" not in descriptor.url


@pytest.mark.parametrize(
    ("system", "machine", "filename"),
    [
        ("Windows", "AMD64", "cpython-3.11.11+20250106-x86_64-pc-windows-msvc-install_only.tar.gz"),
        ("Windows", "ARM64", "cpython-3.11.11+20250106-x86_64-pc-windows-msvc-install_only.tar.gz"),
        ("Darwin", "arm64", "cpython-3.11.11+20250106-aarch64-apple-darwin-install_only.tar.gz"),
        ("Darwin", "x86_64", "cpython-3.11.11+20250106-x86_64-apple-darwin-install_only.tar.gz"),
        ("Linux", "x86_64", "cpython-3.11.11+20250106-x86_64-unknown-linux-gnu-install_only.tar.gz"),
        ("Linux", "aarch64", "cpython-3.11.11+20250106-aarch64-unknown-linux-gnu-install_only.tar.gz"),
    ],
)
def test_default_archive_filename_per_platform(system: str, machine: str, filename: str) -> None:
    descriptor = locate_runtime(system, machine, release="20250106", version="3.11.11")

    assert descriptor.url == (
        "https://github.com/astral-sh/python-build-standalone/releases/download/20250106/" + filename
    )


def test_runtime_url_override_picks_kind_from_suffix() -> None:
    zipped = locate_runtime("Windows", "AMD64", url="https://cdn.test/dependencies/cpython-windows.zip")
    tarred = locate_runtime("Linux", "x86_64", url="https://cdn.test/cpython-linux.tar.gz?sig=1")

    assert zipped.url == "https://cdn.test/dependencies/cpython-windows.zip"
    assert zipped.archive_kind == ArchiveKind.ZIP
    assert zipped.archive_name == "python.zip"
    assert tarred.archive_kind == ArchiveKind.TAR_GZ


def test_darwin_arm_uses_aarch64_tarball() -> None:
    descriptor = locate_runtime("Darwin", "arm64")

    assert descriptor.machine == "aarch64"
    assert descriptor.archive_kind == ArchiveKind.TAR_GZ
    assert descriptor.executable == "bin/python3"
    assert "aarch64-apple-darwin-install_only.tar.gz" in descriptor.url


def test_unknown_platform_falls_back_to_linux() -> None:
    descriptor = locate_runtime("Plan9", "mips")

    assert descriptor.platform == "linux"
    assert descriptor.machine == "x86_64"
    assert "x86_64-unknown-linux-gnu" in descriptor.url


def test_url_is_built_from_release_and_version() -> None:
    descriptor = locate_runtime(
        "Linux",
        "x86_64",
        base_url="https://mirror.test/releases/",
        release="20240101",
        version="3.12.1",
    )

    assert descriptor.url == (
        "https://mirror.test/releases/20240101/"
        "cpython-3.12.1+20240101-x86_64-unknown-linux-gnu-install_only.tar.gz"
    )


def test_runtime_executable_lives_under_data_dir(tmp_path: Path) -> None:
    descriptor = locate_runtime("Linux", "x86_64")

    assert runtime_dir(tmp_path) == tmp_path / "python"
    assert runtime_executable(tmp_path, descriptor) == tmp_path / "python" / "bin" / "python3"
