"""Process supervision domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProcessState(str, Enum):
    IDLE = "idle"
    DEPENDENCY_INSTALL = "dependency-install"
    RUNNING = "running"
    EXPORTING = "exporting"


@dataclass(frozen=True)
class ProcessEvent:
    key: str
    step: str
    message: str


@dataclass(frozen=True)
class RunResult:
    key: str
    exit_code: int | None
    stopped: bool = False
    dependency_exit_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return not self.stopped and self.exit_code == 0


@dataclass(frozen=True)
class ExportResult:
    key: str
    success: bool
    executable: str
    exit_code: int | None
