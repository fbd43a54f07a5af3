"""Apply assistant replies to a project: chat, file edits, snapshots."""

from __future__ import annotations

import json
import logging as py_logging
import re
from collections.abc import Iterable

from pydantic import BaseModel, Field, ValidationError

from tkforge.assistant.client import AssistantClient, AssistantReply, FailureKind, ToolCall, WireMessage
from tkforge.errors import TkForgeError
from tkforge.projects.models import Project, ProjectSettings
from tkforge.projects.store import DEFAULT_TITLE, ProjectStore

logger = py_logging.getLogger(__name__)

EDIT_MAIN_FILE = "edit_main_file"
UNRECOGNIZED_OPERATION = "Unrecognized Operation!"
INVALID_EDIT = "The assistant sent an edit that could not be applied."
SNAPSHOT_FAILED = "The change was saved but its version could not be recorded."
FAILURE_MESSAGES = {
    FailureKind.AUTH: "Something went wrong, please make sure you're logged in!",
    FailureKind.BILLING: "Something went wrong, please make sure you have a valid subscription!",
    FailureKind.GENERIC: "Something went wrong, please try again later!",
}

_REQUIREMENT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*")


class EditMainFileArguments(BaseModel):
    file_content: str
    commit_message: str
    pip_requirements: list[str] = Field(default_factory=list)


def requirement_name(requirement: str) -> str:
    match = _REQUIREMENT_NAME.match(requirement.strip())
    return match.group(0).lower() if match else ""


def filter_requirements(requirements: Iterable[str], unnecessary: Iterable[str]) -> list[str]:
    """Drop stdlib-only names and duplicates, keeping first-seen order."""
    blocked = {name.strip().lower() for name in unnecessary}
    kept: list[str] = []
    seen: set[str] = set()
    for requirement in requirements:
        name = requirement_name(requirement)
        if not name or name in blocked or name in seen:
            continue
        seen.add(name)
        kept.append(requirement.strip())
    return kept


def source_context(source: str) -> WireMessage:
    return {"role": "system", "content": f"(App) Source Code='{source}'"}


class EditPipeline:
    def __init__(
        self,
        store: ProjectStore,
        client: AssistantClient,
        *,
        app_version: str,
        unnecessary_requirements: Iterable[str] = ("tkinter",),
    ) -> None:
        self.store = store
        self.client = client
        self.app_version = app_version
        self.unnecessary_requirements = tuple(unnecessary_requirements)

    def send_message(self, index: int, content: str, access_token: str) -> ProjectSettings:
        project = self.store.get_project(index)
        settings = self.store.read_settings(project)
        settings.add_message("user", content)

        transcript: list[WireMessage] = [
            {"role": message.role, "content": message.content}
            for message in settings.messages
            if not message.is_local
        ]
        transcript.append(source_context(self.store.read_entry(project, settings)))

        reply = self.client.send(transcript, access_token=access_token, app_version=self.app_version)
        last_commit_message = self._apply(project, settings, reply)

        self.store.write_settings(project, settings)
        self.store.touch(index)
        if last_commit_message and project.title == DEFAULT_TITLE:
            self.store.rename_project(index, last_commit_message)
        return settings

    def _apply(self, project: Project, settings: ProjectSettings, reply: AssistantReply) -> str:
        if not reply.ok:
            failure = reply.failure or FailureKind.GENERIC
            settings.add_message("assistant", FAILURE_MESSAGES[failure])
            return ""

        if reply.content:
            settings.add_message("assistant", reply.content)

        last_commit_message = ""
        for call in reply.tool_calls:
            if call.name != EDIT_MAIN_FILE:
                logger.warning("Unrecognized assistant tool call name=%s", call.name)
                settings.add_message("assistant", UNRECOGNIZED_OPERATION)
                continue
            message = self._edit_main_file(project, settings, call)
            if message:
                last_commit_message = message
        return last_commit_message

    def _edit_main_file(self, project: Project, settings: ProjectSettings, call: ToolCall) -> str:
        try:
            arguments = EditMainFileArguments.model_validate(json.loads(call.arguments))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Invalid %s arguments path=%s", EDIT_MAIN_FILE, project.path, exc_info=True)
            settings.add_message("warning", INVALID_EDIT)
            return ""

        self.store.write_entry(project, arguments.file_content, settings)
        settings.merge_dependencies(
            filter_requirements(arguments.pip_requirements, self.unnecessary_requirements)
        )
        commit_message = arguments.commit_message.strip() or "Update application"
        try:
            commit_id = self.store.snapshots.commit(self.store.project_dir(project), commit_message)
        except TkForgeError as exc:
            logger.error("Snapshot after edit failed path=%s error=%s", project.path, exc.message)
            settings.add_message("warning", SNAPSHOT_FAILED)
            return ""
        if commit_id:
            settings.current_commit = commit_id
        return commit_message
