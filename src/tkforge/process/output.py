"""Line normalization and the per-project log sink."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from pathlib import Path

logger = py_logging.getLogger(__name__)

LineListener = Callable[[str], None]


def normalize_output_line(text: str | bytes) -> str | None:
    """Collapse one output chunk into a single log line, or None if blank."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    collapsed = text.replace("\r", "").replace("\n", "").strip()
    if not collapsed:
        return None
    return collapsed


class ProjectLog:
    """Append-only newline-delimited log mirrored to an optional listener."""

    def __init__(self, path: str | Path, listener: LineListener | None = None) -> None:
        self.path = Path(path)
        self.listener = listener
        self._lock = threading.Lock()

    def append(self, text: str | bytes) -> str | None:
        line = normalize_output_line(text)
        if line is None:
            return None
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                logger.warning("Failed to append project log path=%s", self.path, exc_info=True)
        if self.listener is not None:
            self.listener(line)
        return line

    def read_lines(self) -> list[str]:
        try:
            return self.path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []

    def clear(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("", encoding="utf-8")
