"""Managed Python runtime: location and installation."""

from .installer import InstallProgress, InstallResult, InstallState, RuntimeInstaller
from .locator import ArchiveKind, RuntimeDescriptor, locate_runtime, runtime_executable

__all__ = [
    "ArchiveKind",
    "InstallProgress",
    "InstallResult",
    "InstallState",
    "RuntimeDescriptor",
    "RuntimeInstaller",
    "locate_runtime",
    "runtime_executable",
]
