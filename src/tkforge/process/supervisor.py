"""Dependency install, run and export of project entry files."""

from __future__ import annotations

import logging as py_logging
import os
import re
import subprocess
import tempfile
import threading
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import IO, Any, Protocol

from tkforge.errors import ExitCode, TkForgeError
from tkforge.process.models import ExportResult, ProcessEvent, ProcessState, RunResult
from tkforge.process.output import ProjectLog
from tkforge.process.registry import ProcessRegistry

logger = py_logging.getLogger(__name__)

LOG_PREFIX = "[TkForge]"
PACKAGER = "pyinstaller"
_TITLE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")

# Runs the target script and keeps only the last traceback line on failure.
FILTER_SCRIPT = """\
import subprocess
import sys


def run_script(script_path):
    result = subprocess.run([sys.executable, script_path], capture_output=True, text=True)
    if result.returncode == 0:
        print(result.stdout, end="")
        return 0
    lines = result.stderr.strip().splitlines()
    print(lines[-1] if lines else "Process exited with code %s" % result.returncode)
    return result.returncode


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit(1)
    sys.exit(run_script(sys.argv[1]))
"""


class PopenLike(Protocol):
    stdout: IO[str] | None
    stderr: IO[str] | None

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int: ...

    def terminate(self) -> None: ...


PopenFactory = Callable[..., PopenLike]
EventListener = Callable[[ProcessEvent], None]


def sanitize_title(title: str) -> str:
    cleaned = _TITLE_PATTERN.sub("-", title.strip()).strip("-.")
    return cleaned or "app"


def background_subprocess_kwargs() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {"start_new_session": True}


def _unique(values: Iterable[str]) -> list[str]:
    result: list[str] = []
    seen: set[str] = set()
    for value in values:
        name = value.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        result.append(name)
    return result


def _drain(stream: IO[str] | None, log: ProjectLog) -> None:
    if stream is None:
        return
    try:
        for raw in iter(stream.readline, ""):
            log.append(raw)
    except (OSError, ValueError):
        logger.debug("Output stream closed early", exc_info=True)
    finally:
        stream.close()


class ProcessSupervisor:
    def __init__(
        self,
        python_executable: str | Path,
        *,
        popen: PopenFactory = subprocess.Popen,
        registry: ProcessRegistry | None = None,
        listener: EventListener | None = None,
        max_workers: int = 8,
        max_events: int = 1000,
    ) -> None:
        self.python_executable = str(python_executable)
        self._popen = popen
        self._registry = registry or ProcessRegistry()
        self._listener = listener
        self._events: deque[ProcessEvent] = deque(maxlen=max_events)
        self._events_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tkforge-run")

    @staticmethod
    def key_for(entry: str | Path) -> str:
        return os.path.abspath(str(entry))

    def status(self, key: str) -> ProcessState:
        return self._registry.status(key)

    def list_events(self, key: str | None = None) -> list[ProcessEvent]:
        with self._events_lock:
            if key is None:
                return list(self._events)
            return [event for event in self._events if event.key == key]

    def clear_events(self, key: str | None = None) -> None:
        with self._events_lock:
            if key is None:
                self._events.clear()
            else:
                kept = [event for event in self._events if event.key != key]
                self._events.clear()
                self._events.extend(kept)
        logger.info("process-event key=%s step=clear-events message=Process events cleared.", key or "*")

    def start(
        self,
        entry: str | Path,
        dependencies: Sequence[str],
        log: ProjectLog,
    ) -> Future[RunResult]:
        return self._executor.submit(self.run, entry, dependencies, log)

    def run(
        self,
        entry: str | Path,
        dependencies: Sequence[str],
        log: ProjectLog,
    ) -> RunResult:
        key = self.key_for(entry)
        packages = _unique(dependencies)
        initial = ProcessState.DEPENDENCY_INSTALL if packages else ProcessState.RUNNING
        token = self._registry.begin(key, initial)
        try:
            dependency_code: int | None = None
            if packages:
                dependency_code = self._install(key, token, packages, log)
                if not self._registry.transition(key, token, ProcessState.RUNNING):
                    self._record(key, "run-cancelled", "Stopped during dependency installation.")
                    return RunResult(key=key, exit_code=None, stopped=True, dependency_exit_code=dependency_code)

            command = [self.python_executable, "-c", FILTER_SCRIPT, key]
            process = self._spawn(command, cwd=os.path.dirname(key), stdout=subprocess.PIPE)
            if not self._registry.attach(key, token, process):
                self._record(key, "run-cancelled", "Run was superseded before start.")
                return RunResult(key=key, exit_code=None, stopped=True, dependency_exit_code=dependency_code)

            self._record(key, "run-start", f"Running {os.path.basename(key)}.")
            exit_code = self._pump(process, log)
            stopped = not self._registry.is_current(key, token)
            self._record(key, "run-end", f"Process exited with code {exit_code}.")
            return RunResult(
                key=key,
                exit_code=exit_code,
                stopped=stopped,
                dependency_exit_code=dependency_code,
            )
        finally:
            self._registry.finish(key, token)

    def stop(self, key: str | Path) -> bool:
        resolved = self.key_for(key)
        stopped = self._registry.stop(resolved)
        if stopped:
            self._record(resolved, "stop", "Process terminated.")
        return stopped

    def export(
        self,
        entry: str | Path,
        dependencies: Sequence[str],
        output_dir: str | Path,
        title: str,
        log: ProjectLog,
        *,
        work_dir: str | Path | None = None,
    ) -> ExportResult:
        key = self.key_for(entry)
        token = self._registry.begin(key, ProcessState.EXPORTING)
        name = sanitize_title(title)
        destination = Path(output_dir)
        binary = destination / (f"{name}.exe" if os.name == "nt" else name)
        try:
            self._install(key, token, _unique([PACKAGER, *dependencies]), log)
            if not self._registry.is_current(key, token):
                return ExportResult(key=key, success=False, executable=str(binary), exit_code=None)

            destination.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix="tkforge-build-", dir=work_dir) as scratch:
                command = [
                    self.python_executable,
                    "-m",
                    "PyInstaller",
                    "--onefile",
                    "--noconsole",
                    "--noconfirm",
                    "--log-level",
                    "WARN",
                    "--name",
                    name,
                    "--distpath",
                    str(destination),
                    "--workpath",
                    str(Path(scratch) / "build"),
                    "--specpath",
                    scratch,
                    key,
                ]
                log.append(f"{LOG_PREFIX} Packaging {name}...")
                process = self._spawn(command, cwd=os.path.dirname(key), stdout=subprocess.PIPE)
                if not self._registry.attach(key, token, process):
                    return ExportResult(key=key, success=False, executable=str(binary), exit_code=None)
                self._record(key, "export-start", f"Packaging {name}.")
                exit_code = self._pump(process, log)

            success = exit_code == 0 and self._registry.is_current(key, token)
            if success:
                log.append(f"{LOG_PREFIX} Export complete: {binary}")
                self._record(key, "export-success", str(binary))
            else:
                log.append(f"{LOG_PREFIX} Export failed with code {exit_code}.")
                self._record(key, "export-failed", f"Packager exited with code {exit_code}.")
            return ExportResult(key=key, success=success, executable=str(binary), exit_code=exit_code)
        finally:
            self._registry.finish(key, token)

    def close(self) -> None:
        self._registry.close()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _install(self, key: str, token: int, packages: list[str], log: ProjectLog) -> int | None:
        command = [
            self.python_executable,
            "-m",
            "pip",
            "install",
            "--upgrade",
            "--quiet",
            "--disable-pip-version-check",
            *packages,
        ]
        log.append(f"{LOG_PREFIX} Installing dependencies: {' '.join(packages)}")
        self._record(key, "dependency-start", " ".join(packages))
        process = self._spawn(command, cwd=os.path.dirname(key), stdout=subprocess.DEVNULL)
        if not self._registry.attach(key, token, process):
            self._record(key, "dependency-end", "Dependency installation cancelled.")
            return None
        exit_code = self._pump(process, log)
        if exit_code != 0:
            logger.warning("Dependency installation failed key=%s code=%s", key, exit_code)
            log.append(f"{LOG_PREFIX} Dependency installation exited with code {exit_code}.")
        self._record(key, "dependency-end", f"Dependency installation exited with code {exit_code}.")
        return exit_code

    def _spawn(self, command: list[str], *, cwd: str, stdout: int) -> PopenLike:
        logger.debug("Spawning command=%s cwd=%s", command[:3], cwd)
        try:
            return self._popen(
                command,
                cwd=cwd or None,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **background_subprocess_kwargs(),
            )
        except OSError as exc:
            logger.error("Failed to spawn runtime command executable=%s error=%s", command[0], exc)
            raise TkForgeError(
                "Failed to start the Python runtime.",
                code=ExitCode.PROCESS_ERROR,
                hint=str(exc) or "Reinstall the runtime and retry.",
            ) from exc

    def _pump(self, process: PopenLike, log: ProjectLog) -> int:
        readers = [
            threading.Thread(target=_drain, args=(stream, log), daemon=True)
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        for reader in readers:
            reader.start()
        exit_code = process.wait()
        for reader in readers:
            reader.join()
        return exit_code

    def _record(self, key: str, step: str, message: str) -> None:
        event = ProcessEvent(key=key, step=step, message=message)
        with self._events_lock:
            self._events.append(event)
        logger.info("process-event key=%s step=%s message=%s", key, step, message)
        if self._listener is not None:
            self._listener(event)
