"""Download, unpack and verify the managed Python runtime."""

from __future__ import annotations

import logging as py_logging
import shutil
import subprocess
import tarfile
import threading
import zipfile
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol
from urllib.error import URLError
from urllib.request import Request, urlopen

from tkforge.errors import AlreadyRunningError, ExitCode, RuntimeInstallError
from tkforge.runtime.locator import ArchiveKind, RuntimeDescriptor, runtime_dir, runtime_executable

logger = py_logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_INSTALL_FAILED = "Failed to install dependencies."
_CONNECTIVITY_HINT = "Please check your internet connection and try again."
_DOWNLOAD_HINT = "The runtime download or extraction failed. Restart the application to retry."


class InstallState(str, Enum):
    ABSENT = "absent"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallProgress:
    state: InstallState
    percent: int | None = None


@dataclass(frozen=True)
class InstallResult:
    executable: Path
    already_installed: bool


ProgressListener = Callable[[InstallProgress], None]


class SubprocessRunner(Protocol):
    def __call__(
        self,
        args: list[str],
        *,
        capture_output: bool = False,
        text: bool = False,
        check: bool = False,
    ) -> subprocess.CompletedProcess[str]: ...


class Fetcher(Protocol):
    def __call__(
        self,
        url: str,
        target: Path,
        on_progress: Callable[[int, int], None],
        *,
        timeout: float,
    ) -> None: ...


class _FetchError(Exception):
    """Transfer failed before the archive was complete."""


def download_file(
    url: str,
    target: Path,
    on_progress: Callable[[int, int], None],
    *,
    timeout: float,
) -> None:
    request = Request(url, headers={"User-Agent": "TkForge"}, method="GET")
    with urlopen(request, timeout=timeout) as response:  # nosec B310
        total = int(response.headers.get("Content-Length") or 0)
        received = 0
        with target.open("wb") as handle:
            while True:
                chunk = response.read(_CHUNK_SIZE)
                if not chunk:
                    break
                handle.write(chunk)
                received += len(chunk)
                on_progress(received, total)


def _extract_zip(archive: Path, destination: Path) -> None:
    with zipfile.ZipFile(archive) as bundle:
        bundle.extractall(destination)


def _extract_tar(archive: Path, destination: Path) -> None:
    with tarfile.open(archive, "r:gz") as bundle:
        if hasattr(tarfile, "data_filter"):
            bundle.extractall(destination, filter="data")
        else:  # pragma: no cover - interpreters without extraction filters
            bundle.extractall(destination)


class RuntimeInstaller:
    def __init__(
        self,
        data_dir: str | Path,
        descriptor: RuntimeDescriptor,
        *,
        runner: SubprocessRunner = subprocess.run,
        fetcher: Fetcher = download_file,
        listener: ProgressListener | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.descriptor = descriptor
        self._runner = runner
        self._fetcher = fetcher
        self._listener = listener
        self._timeout = timeout_seconds
        self._lock = threading.Lock()
        self._state = InstallState.ABSENT

    @property
    def executable(self) -> Path:
        return runtime_executable(self.data_dir, self.descriptor)

    @property
    def state(self) -> InstallState:
        return self._state

    @property
    def install_dir(self) -> Path:
        return runtime_dir(self.data_dir)

    @property
    def archive_path(self) -> Path:
        return self.data_dir / self.descriptor.archive_name

    def probe(self) -> bool:
        """Return True when the runtime answers ``--version`` cleanly."""
        try:
            result = self._runner(
                [str(self.executable), "--version"],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError:
            logger.debug("Runtime probe could not start executable=%s", self.executable)
            return False
        if result.returncode != 0 or (result.stderr or "").strip():
            logger.debug(
                "Runtime probe failed executable=%s returncode=%s stderr=%s",
                self.executable,
                result.returncode,
                (result.stderr or "").strip()[:200],
            )
            return False
        return True

    def ensure_installed(self) -> InstallResult:
        if not self._lock.acquire(blocking=False):
            raise AlreadyRunningError(
                "Runtime installation is already in progress.",
                hint="Wait for the current installation to finish.",
            )
        try:
            return self._ensure_installed()
        finally:
            self._lock.release()

    def _ensure_installed(self) -> InstallResult:
        if self.probe():
            logger.debug("Runtime already installed executable=%s", self.executable)
            self._state = InstallState.VERIFIED
            return InstallResult(executable=self.executable, already_installed=True)

        logger.info("Installing runtime platform=%s url=%s", self.descriptor.platform, self.descriptor.url)
        self._clean()
        self.data_dir.mkdir(parents=True, exist_ok=True)

        try:
            self._fetch()
        except _FetchError as exc:
            logger.error("Runtime download failed url=%s error=%s", self.descriptor.url, exc.__cause__)
            self._fail(_CONNECTIVITY_HINT)

        self._emit(InstallProgress(InstallState.EXTRACTING))
        try:
            self._unpack()
        except (OSError, EOFError, zlib.error, zipfile.BadZipFile, tarfile.TarError) as exc:
            logger.error("Runtime unpack failed archive=%s error=%s", self.archive_path, exc)
            self._fail(_DOWNLOAD_HINT)
        finally:
            self._remove(self.archive_path)

        if not self.probe():
            logger.error("Runtime verification failed executable=%s", self.executable)
            self._fail(_DOWNLOAD_HINT)

        logger.info("Runtime installed executable=%s", self.executable)
        self._emit(InstallProgress(InstallState.VERIFIED))
        return InstallResult(executable=self.executable, already_installed=False)

    def _fetch(self) -> None:
        self._emit(InstallProgress(InstallState.DOWNLOADING, 0))

        def on_progress(received: int, total: int) -> None:
            if total <= 0:
                return
            percent = min(100, (received * 100) // total)
            self._emit(InstallProgress(InstallState.DOWNLOADING, percent))

        try:
            self._fetcher(self.descriptor.url, self.archive_path, on_progress, timeout=self._timeout)
        except (URLError, OSError, ValueError) as exc:
            raise _FetchError(str(exc)) from exc

    def _unpack(self) -> None:
        if self.descriptor.archive_kind == ArchiveKind.ZIP:
            _extract_zip(self.archive_path, self.data_dir)
        else:
            _extract_tar(self.archive_path, self.data_dir)

    def _clean(self) -> None:
        self._remove(self.install_dir)
        self._remove(self.archive_path)

    def _fail(self, hint: str) -> None:
        self._clean()
        self._emit(InstallProgress(InstallState.FAILED))
        raise RuntimeInstallError(_INSTALL_FAILED, code=ExitCode.INSTALL_ERROR, hint=hint)

    def _emit(self, progress: InstallProgress) -> None:
        self._state = progress.state
        logger.debug("runtime-install state=%s percent=%s", progress.state.value, progress.percent)
        if self._listener is not None:
            self._listener(progress)

    @staticmethod
    def _remove(path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path, ignore_errors=True)
        elif path.exists() or path.is_symlink():
            path.unlink(missing_ok=True)
