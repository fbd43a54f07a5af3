"""Supervised execution of project entry files."""

from .models import ExportResult, ProcessEvent, ProcessState, RunResult
from .output import ProjectLog, normalize_output_line
from .registry import ProcessRegistry
from .supervisor import FILTER_SCRIPT, ProcessSupervisor, sanitize_title

__all__ = [
    "FILTER_SCRIPT",
    "ExportResult",
    "ProcessEvent",
    "ProcessRegistry",
    "ProcessState",
    "ProcessSupervisor",
    "ProjectLog",
    "RunResult",
    "normalize_output_line",
    "sanitize_title",
]
