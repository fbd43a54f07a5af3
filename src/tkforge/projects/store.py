"""Flat JSON project index plus one settings blob per project."""

from __future__ import annotations

import json
import logging as py_logging
import random
import shutil
import uuid
from datetime import date
from pathlib import Path, PurePosixPath

from pydantic import ValidationError

from tkforge.errors import ExitCode, ProjectNotFoundError, TkForgeError
from tkforge.projects.models import Project, ProjectSettings
from tkforge.vcs.snapshots import SnapshotStore

logger = py_logging.getLogger(__name__)

PROJECTS_FILE = "projects.json"
PROJECTS_DIR = "Projects"
SETTINGS_FILE = "settings.json"
LOG_FILE = "logfile"
DEFAULT_TITLE = "New Project"
INITIAL_COMMIT_MESSAGE = "Project Created"

GITIGNORE = "\n".join(
    [
        SETTINGS_FILE,
        LOG_FILE,
        "__pycache__",
        "*.pyc",
        "*.pyo",
        "*.pyd",
        "*.pyw",
        "*.pyz",
        "build/",
        "dist/",
        "*.spec",
    ]
)

DEFAULT_ENTRY = """\
import tkinter as tk

# Always change the title of the application to one more related to what the user wants.
appTitle = 'Hello World!'

root = tk.Tk()
root.title(appTitle)

label = tk.Label(root, text='Hello World!')
label.pack(pady=20)

root.mainloop()
"""

GREETINGS = (
    "Hi! What's up?",
    "Hey, what's on your mind?",
    "Hi! How can I help you today?",
    "Hello! What can I do for you today?",
    "Hey! How can I assist you today?",
)


def _today() -> str:
    return date.today().isoformat()


class ProjectStore:
    """Projects are addressed by list position; never cache an index across mutations."""

    def __init__(self, data_dir: str | Path, snapshots: SnapshotStore | None = None) -> None:
        self.data_dir = Path(data_dir)
        self.snapshots = snapshots or SnapshotStore()

    @property
    def index_path(self) -> Path:
        return self.data_dir / PROJECTS_FILE

    def list_projects(self) -> list[Project]:
        try:
            raw = json.loads(self.index_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError):
            logger.warning("Project index unreadable path=%s", self.index_path, exc_info=True)
            return []
        if not isinstance(raw, list):
            return []
        projects: list[Project] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                projects.append(Project.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed project entry=%s", item)
        return projects

    def get_project(self, index: int) -> Project:
        projects = self.list_projects()
        if index < 0 or index >= len(projects):
            raise ProjectNotFoundError(
                f"Project not found at index {index}.",
                hint="Reload the project list and retry.",
            )
        return projects[index]

    def project_dir(self, project: Project) -> Path:
        relative = PurePosixPath(project.path.replace("\\", "/"))
        candidate = self.data_dir.joinpath(*relative.parts).resolve()
        base = self.data_dir.resolve()
        if candidate == base or base not in candidate.parents:
            raise TkForgeError(
                f"Project path escapes the data directory: {project.path}",
                code=ExitCode.STORAGE_ERROR,
                hint="Remove the corrupted entry from projects.json.",
            )
        return candidate

    def settings_path(self, project: Project) -> Path:
        return self.project_dir(project) / SETTINGS_FILE

    def log_path(self, project: Project) -> Path:
        return self.project_dir(project) / LOG_FILE

    def entry_path(self, project: Project, settings: ProjectSettings | None = None) -> Path:
        resolved = settings or self.read_settings(project)
        return self.project_dir(project) / resolved.file

    def read_settings(self, project: Project) -> ProjectSettings:
        path = self.settings_path(project)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return ProjectSettings()
        except (OSError, json.JSONDecodeError):
            logger.warning("Project settings unreadable path=%s", path, exc_info=True)
            return ProjectSettings()
        if not isinstance(raw, dict):
            return ProjectSettings()
        try:
            return ProjectSettings.model_validate(raw)
        except ValidationError:
            logger.warning("Project settings invalid path=%s", path, exc_info=True)
            return ProjectSettings()

    def write_settings(self, project: Project, settings: ProjectSettings) -> None:
        self._write(self.settings_path(project), json.dumps(settings.model_dump(by_alias=True, mode="json")))

    def read_entry(self, project: Project, settings: ProjectSettings | None = None) -> str:
        try:
            return self.entry_path(project, settings).read_text(encoding="utf-8")
        except OSError:
            return ""

    def write_entry(self, project: Project, content: str, settings: ProjectSettings | None = None) -> Path:
        path = self.entry_path(project, settings)
        self._write(path, content)
        return path

    def create_project(self) -> Project:
        relative = PurePosixPath(PROJECTS_DIR, uuid.uuid4().hex[:10])
        project = Project(title=DEFAULT_TITLE, path=str(relative), latest_date=_today())
        directory = self.project_dir(project)
        settings = ProjectSettings()
        settings.add_message("assistant", random.choice(GREETINGS))

        self._write(directory / ".gitignore", GITIGNORE + "\n")
        self._write(directory / settings.file, DEFAULT_ENTRY)
        self._write(directory / LOG_FILE, "")

        self.snapshots.init(directory)
        commit_id = self.snapshots.commit(directory, INITIAL_COMMIT_MESSAGE)
        if commit_id:
            settings.current_commit = commit_id
        self.write_settings(project, settings)

        projects = self.list_projects()
        projects.insert(0, project)
        self._save_index(projects)
        logger.info("Created project path=%s commit=%s", project.path, commit_id)
        return project

    def delete_project(self, index: int) -> Project:
        projects = self.list_projects()
        project = self.get_project(index)
        directory = self.project_dir(project)
        if directory.exists():
            shutil.rmtree(directory)
        del projects[index]
        self._save_index(projects)
        logger.info("Deleted project path=%s", project.path)
        return project

    def rename_project(self, index: int, title: str) -> Project:
        name = title.strip()
        if not name:
            raise TkForgeError(
                "Project title cannot be empty.",
                code=ExitCode.VALIDATION_ERROR,
                hint="Enter a title and retry.",
            )
        projects = self.list_projects()
        project = self.get_project(index)
        project.title = name
        projects[index] = project
        self._save_index(projects)
        return project

    def touch(self, index: int) -> Project:
        projects = self.list_projects()
        project = self.get_project(index)
        project.latest_date = _today()
        projects[index] = project
        self._save_index(projects)
        return project

    def _save_index(self, projects: list[Project]) -> None:
        payload = [item.model_dump(by_alias=True, mode="json") for item in projects]
        self._write(self.index_path, json.dumps(payload))

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
