"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    GIT_ERROR = 5
    INSTALL_ERROR = 6
    VALIDATION_ERROR = 7
    PROCESS_ERROR = 8
    STORAGE_ERROR = 9
    ASSISTANT_ERROR = 10
    ALREADY_RUNNING = 11


@dataclass
class TkForgeError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class RuntimeInstallError(TkForgeError):
    code: ExitCode = ExitCode.INSTALL_ERROR


@dataclass
class AlreadyRunningError(TkForgeError):
    code: ExitCode = ExitCode.ALREADY_RUNNING


@dataclass
class ProjectNotFoundError(TkForgeError):
    code: ExitCode = ExitCode.STORAGE_ERROR


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
