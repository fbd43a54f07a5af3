"""Per-key ownership of supervised child processes."""

from __future__ import annotations

import atexit
import itertools
import logging as py_logging
import os
import signal
import threading
from contextlib import suppress
from dataclasses import dataclass
from typing import Protocol

from tkforge.errors import AlreadyRunningError
from tkforge.process.models import ProcessState

logger = py_logging.getLogger(__name__)

_EXCLUSIVE_STATES = {ProcessState.DEPENDENCY_INSTALL, ProcessState.EXPORTING}


class ProcessHandle(Protocol):
    def poll(self) -> int | None: ...

    def terminate(self) -> None: ...


@dataclass
class _Slot:
    token: int
    state: ProcessState
    process: ProcessHandle | None = None


def terminate_process(process: ProcessHandle) -> None:
    """Send a terminate signal; the whole process group when it leads one."""
    if process.poll() is not None:
        return
    pid = getattr(process, "pid", None)
    if os.name == "posix" and isinstance(pid, int):
        try:
            if os.getpgid(pid) == pid:
                os.killpg(pid, signal.SIGTERM)
                return
        except (ProcessLookupError, PermissionError):
            pass
    with suppress(OSError):
        process.terminate()


class ProcessRegistry:
    """Owns the key -> live process map.

    A key holds at most one slot. Every operation on a slot carries the token
    handed out by :meth:`begin`, so a superseded or stopped run can never
    clear the slot of its successor.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, _Slot] = {}
        self._tokens = itertools.count(1)
        atexit.register(self.stop_all)

    def status(self, key: str) -> ProcessState:
        with self._lock:
            slot = self._slots.get(key)
            return slot.state if slot else ProcessState.IDLE

    def begin(self, key: str, state: ProcessState) -> int:
        with self._lock:
            current = self._slots.get(key)
            if current is not None:
                if current.state in _EXCLUSIVE_STATES or state == ProcessState.EXPORTING:
                    raise AlreadyRunningError(
                        f"Project is busy: {current.state.value}",
                        hint="Wait for the current operation to finish or stop the project.",
                    )
                # A live run is superseded by the new one.
                logger.info("Superseding running process key=%s", key)
                self._slots.pop(key)
                if current.process is not None:
                    terminate_process(current.process)
            token = next(self._tokens)
            self._slots[key] = _Slot(token=token, state=state)
            return token

    def is_current(self, key: str, token: int) -> bool:
        with self._lock:
            slot = self._slots.get(key)
            return slot is not None and slot.token == token

    def attach(self, key: str, token: int, process: ProcessHandle) -> bool:
        with self._lock:
            slot = self._slots.get(key)
            if slot is not None and slot.token == token:
                slot.process = process
                return True
        terminate_process(process)
        return False

    def transition(self, key: str, token: int, state: ProcessState) -> bool:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or slot.token != token:
                return False
            slot.state = state
            slot.process = None
            return True

    def finish(self, key: str, token: int) -> bool:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or slot.token != token:
                return False
            del self._slots[key]
            return True

    def stop(self, key: str) -> bool:
        with self._lock:
            slot = self._slots.pop(key, None)
        if slot is None:
            return False
        if slot.process is not None:
            terminate_process(slot.process)
        logger.info("Stopped process key=%s state=%s", key, slot.state.value)
        return True

    def stop_all(self) -> None:
        with self._lock:
            slots = list(self._slots.values())
            self._slots.clear()
        for slot in slots:
            if slot.process is not None:
                terminate_process(slot.process)

    def close(self) -> None:
        atexit.unregister(self.stop_all)
        self.stop_all()
