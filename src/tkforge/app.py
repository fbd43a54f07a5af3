"""Application command facade.

Every command takes a project index, returns a typed payload (or ``None``)
and never raises: failures are logged at this boundary and degrade to a
default value or a chat annotation.
"""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

from tkforge.assistant.client import AssistantClient
from tkforge.assistant.pipeline import EditPipeline
from tkforge.config import AppConfig
from tkforge.errors import TkForgeError
from tkforge.process.models import ExportResult, ProcessEvent, RunResult
from tkforge.process.output import LineListener, ProjectLog
from tkforge.process.supervisor import ProcessSupervisor
from tkforge.projects.models import Project, ProjectSettings
from tkforge.projects.store import ProjectStore
from tkforge.runtime.installer import InstallResult, ProgressListener, RuntimeInstaller
from tkforge.runtime.locator import locate_runtime
from tkforge.vcs.snapshots import CommitRecord, SnapshotStore

logger = py_logging.getLogger(__name__)

RUN_FAILED = "The application stopped with an error. Check the log for details."


class TkForgeApp:
    def __init__(
        self,
        config: AppConfig,
        *,
        installer: RuntimeInstaller | None = None,
        supervisor: ProcessSupervisor | None = None,
        store: ProjectStore | None = None,
        client: AssistantClient | None = None,
        progress: ProgressListener | None = None,
        on_event: Callable[[ProcessEvent], None] | None = None,
    ) -> None:
        self.config = config
        self.data_dir = config.resolved_data_dir()
        descriptor = locate_runtime(
            base_url=config.runtime_base_url,
            release=config.runtime_release,
            version=config.runtime_version,
            url=config.runtime_url,
        )
        self.installer = installer or RuntimeInstaller(
            self.data_dir,
            descriptor,
            listener=progress,
            timeout_seconds=config.download_timeout_seconds,
        )
        self.supervisor = supervisor or ProcessSupervisor(self.installer.executable, listener=on_event)
        self.store = store or ProjectStore(self.data_dir, SnapshotStore())
        self.snapshots = self.store.snapshots
        self.pipeline = EditPipeline(
            self.store,
            client or AssistantClient(config.assistant_url),
            app_version=config.app_version,
            unnecessary_requirements=config.unnecessary_requirements,
        )

    def bootstrap(self) -> InstallResult | None:
        try:
            return self.installer.ensure_installed()
        except (TkForgeError, OSError) as exc:
            logger.error("Runtime bootstrap failed: %s", exc)
            return None

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    def create_project(self) -> Project | None:
        try:
            return self.store.create_project()
        except (TkForgeError, OSError):
            logger.exception("Failed to create project")
            return None

    def delete_project(self, index: int) -> Project | None:
        try:
            project = self.store.get_project(index)
            self.supervisor.stop(self._entry(project))
            return self.store.delete_project(index)
        except (TkForgeError, OSError):
            logger.exception("Failed to delete project index=%s", index)
            return None

    def rename_project(self, index: int, title: str) -> Project | None:
        try:
            return self.store.rename_project(index, title)
        except (TkForgeError, OSError):
            logger.exception("Failed to rename project index=%s", index)
            return None

    def project_settings(self, index: int) -> ProjectSettings | None:
        try:
            return self.store.read_settings(self.store.get_project(index))
        except (TkForgeError, OSError):
            logger.exception("Failed to read project settings index=%s", index)
            return None

    def start_project(self, index: int, *, on_line: LineListener | None = None) -> Future[RunResult] | None:
        try:
            project, settings, log = self._run_context(index, on_line)
            future = self.supervisor.start(self.store.entry_path(project, settings), settings.dependencies, log)
        except (TkForgeError, OSError):
            logger.exception("Failed to start project index=%s", index)
            return None
        future.add_done_callback(lambda done: self._after_future(project, done))
        return future

    def run_project(self, index: int, *, on_line: LineListener | None = None) -> RunResult | None:
        try:
            project, settings, log = self._run_context(index, on_line)
            result = self.supervisor.run(self.store.entry_path(project, settings), settings.dependencies, log)
        except (TkForgeError, OSError):
            logger.exception("Failed to run project index=%s", index)
            return None
        self._record_run(project, result)
        return result

    def stop_project(self, index: int) -> bool:
        try:
            project = self.store.get_project(index)
            return self.supervisor.stop(self._entry(project))
        except (TkForgeError, OSError):
            logger.exception("Failed to stop project index=%s", index)
            return False

    def export_project(
        self,
        index: int,
        output_dir: str | Path,
        *,
        on_line: LineListener | None = None,
    ) -> ExportResult | None:
        try:
            project = self.store.get_project(index)
            settings = self.store.read_settings(project)
            log = ProjectLog(self.store.log_path(project), listener=on_line)
            return self.supervisor.export(
                self.store.entry_path(project, settings),
                settings.dependencies,
                output_dir,
                project.title,
                log,
            )
        except (TkForgeError, OSError):
            logger.exception("Failed to export project index=%s", index)
            return None

    def send_message(self, index: int, content: str, access_token: str) -> ProjectSettings | None:
        try:
            return self.pipeline.send_message(index, content, access_token)
        except (TkForgeError, OSError):
            logger.exception("Failed to send message index=%s", index)
            return None

    def list_commits(self, index: int) -> list[CommitRecord]:
        try:
            project = self.store.get_project(index)
            return self.snapshots.list_commits(self.store.project_dir(project))
        except (TkForgeError, OSError):
            logger.exception("Failed to list commits index=%s", index)
            return []

    def select_version(self, index: int, commit_id: str) -> str | None:
        try:
            project = self.store.get_project(index)
            checked_out = self.snapshots.checkout(self.store.project_dir(project), commit_id)
            if checked_out is None:
                return None
            settings = self.store.read_settings(project)
            settings.current_commit = checked_out
            self.store.write_settings(project, settings)
            return checked_out
        except (TkForgeError, OSError):
            logger.exception("Failed to select version index=%s commit=%s", index, commit_id)
            return None

    def read_log(self, index: int) -> list[str]:
        try:
            project = self.store.get_project(index)
        except TkForgeError:
            return []
        return ProjectLog(self.store.log_path(project)).read_lines()

    def close(self) -> None:
        self.supervisor.close()

    def _entry(self, project: Project) -> Path:
        return self.store.entry_path(project)

    def _run_context(
        self, index: int, on_line: LineListener | None
    ) -> tuple[Project, ProjectSettings, ProjectLog]:
        project = self.store.get_project(index)
        settings = self.store.read_settings(project)
        return project, settings, ProjectLog(self.store.log_path(project), listener=on_line)

    def _after_future(self, project: Project, future: Future[RunResult]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Run failed path=%s error=%s", project.path, error)
            return
        self._record_run(project, future.result())

    def _record_run(self, project: Project, result: RunResult) -> None:
        if result.stopped or result.exit_code in (0, None):
            return
        try:
            settings = self.store.read_settings(project)
            settings.add_message("warning", RUN_FAILED)
            self.store.write_settings(project, settings)
        except (TkForgeError, OSError):
            logger.exception("Failed to record run failure path=%s", project.path)
