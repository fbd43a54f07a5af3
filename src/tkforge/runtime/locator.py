"""Standalone Python runtime descriptors per host platform."""

from __future__ import annotations

import platform as py_platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Literal

from tkforge.config import DEFAULT_RUNTIME_BASE_URL, DEFAULT_RUNTIME_RELEASE, DEFAULT_RUNTIME_VERSION

RUNTIME_DIR_NAME = "python"

_ARM_MACHINES = {"arm64", "aarch64", "armv8", "armv8l"}
# Windows ARM hosts run the x64 build under emulation.
_WINDOWS_MACHINE: Literal["x86_64"] = "x86_64"


class ArchiveKind(str, Enum):
    ZIP = ".zip"
    TAR_GZ = ".tar.gz"


@dataclass(frozen=True)
class RuntimeDescriptor:
    platform: Literal["windows", "darwin", "linux"]
    machine: Literal["x86_64", "aarch64"]
    url: str
    archive_kind: ArchiveKind
    executable: str
    launcher: Literal["powershell", "shell"]

    @property
    def archive_name(self) -> str:
        return f"{RUNTIME_DIR_NAME}{self.archive_kind.value}"


def _normalize_machine(machine: str) -> Literal["x86_64", "aarch64"]:
    if machine.strip().lower() in _ARM_MACHINES:
        return "aarch64"
    return "x86_64"


def _archive_url(base_url: str, release: str, version: str, triple: str) -> str:
    base = base_url.rstrip("/")
    return f"{base}/{release}/cpython-{version}+{release}-{triple}-install_only{ArchiveKind.TAR_GZ.value}"


def archive_kind_for(url: str) -> ArchiveKind:
    path = url.split("?", 1)[0].lower()
    return ArchiveKind.ZIP if path.endswith(ArchiveKind.ZIP.value) else ArchiveKind.TAR_GZ


def locate_runtime(
    system: str | None = None,
    machine: str | None = None,
    *,
    base_url: str = DEFAULT_RUNTIME_BASE_URL,
    release: str = DEFAULT_RUNTIME_RELEASE,
    version: str = DEFAULT_RUNTIME_VERSION,
    url: str = "",
) -> RuntimeDescriptor:
    """Describe the runtime archive for a host.

    A non-empty ``url`` replaces the upstream archive, e.g. a self-hosted zip;
    its archive kind follows the file suffix.
    """
    system_name = (system if system is not None else py_platform.system()).strip().lower()
    arch = _normalize_machine(machine if machine is not None else py_platform.machine())
    override = url.strip()

    def describe(
        platform: Literal["windows", "darwin", "linux"],
        machine_name: Literal["x86_64", "aarch64"],
        triple: str,
        executable: str,
        launcher: Literal["powershell", "shell"],
    ) -> RuntimeDescriptor:
        archive_url = override or _archive_url(base_url, release, version, triple)
        return RuntimeDescriptor(
            platform=platform,
            machine=machine_name,
            url=archive_url,
            archive_kind=archive_kind_for(archive_url),
            executable=executable,
            launcher=launcher,
        )

    if system_name in {"windows", "win32", "cygwin"}:
        return describe(
            "windows",
            _WINDOWS_MACHINE,
            f"{_WINDOWS_MACHINE}-pc-windows-msvc",
            "python.exe",
            "powershell",
        )
    posix_executable = str(PurePosixPath("bin", "python3"))
    if system_name == "darwin":
        return describe("darwin", arch, f"{arch}-apple-darwin", posix_executable, "shell")
    # Linux and every unlisted platform share the glibc build.
    return describe("linux", arch, f"{arch}-unknown-linux-gnu", posix_executable, "shell")


def runtime_dir(data_dir: str | Path) -> Path:
    return Path(data_dir) / RUNTIME_DIR_NAME


def runtime_executable(data_dir: str | Path, descriptor: RuntimeDescriptor) -> Path:
    return runtime_dir(data_dir).joinpath(*PurePosixPath(descriptor.executable).parts)
