from __future__ import annotations

import json
from pathlib import Path

import pytest

from tkforge.assistant.client import AssistantClient, FailureKind
from tkforge.assistant.pipeline import (
    EDIT_MAIN_FILE,
    FAILURE_MESSAGES,
    INVALID_EDIT,
    UNRECOGNIZED_OPERATION,
    EditPipeline,
    filter_requirements,
    source_context,
)
from tkforge.projects.store import DEFAULT_ENTRY, DEFAULT_TITLE, ProjectStore


class ScriptedRequester:
    def __init__(self, status: int, payload: str = "") -> None:
        self.status = status
        self.payload = payload
        self.bodies: list[dict] = []

    def __call__(self, url: str, body: bytes, headers: dict[str, str], timeout: float) -> tuple[int, str]:
        self.bodies.append(json.loads(body))
        return self.status, self.payload


def _edit_reply(content: str, message: str, requirements: list[str], text: str | None = None) -> str:
    arguments = json.dumps(
        {"file_content": content, "commit_message": message, "pip_requirements": requirements}
    )
    return json.dumps(
        [
            {
                "message": {
                    "role": "assistant",
                    "content": text,
                    "tool_calls": [{"function": {"name": EDIT_MAIN_FILE, "arguments": arguments}}],
                }
            }
        ]
    )


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    store = ProjectStore(tmp_path)
    store.create_project()
    return store


def _pipeline(store: ProjectStore, requester: ScriptedRequester) -> EditPipeline:
    client = AssistantClient("https://example.test/assistant", requester=requester)
    return EditPipeline(store, client, app_version="1.0.0", unnecessary_requirements=("tkinter", "os"))


def test_edit_writes_file_commits_and_filters_requirements(store: ProjectStore) -> None:
    source = "import tkinter as tk\nimport requests\n"
    requester = ScriptedRequester(200, _edit_reply(source, "Add weather fetch", ["tkinter", "requests"]))

    settings = _pipeline(store, requester).send_message(0, "Show the weather", "tok")

    project = store.get_project(0)
    assert store.read_entry(project) == source
    assert settings.dependencies == ["requests"]
    commits = store.snapshots.list_commits(store.project_dir(project))
    assert commits[0].message == "Add weather fetch"
    assert settings.current_commit == commits[0].id
    assert store.read_settings(project).current_commit == commits[0].id


def test_default_title_is_replaced_by_commit_message(store: ProjectStore) -> None:
    requester = ScriptedRequester(200, _edit_reply("print(1)\n", "Simple calculator", []))

    _pipeline(store, requester).send_message(0, "calculator please", "tok")

    assert store.get_project(0).title == "Simple calculator"


def test_custom_title_is_kept(store: ProjectStore) -> None:
    store.rename_project(0, "Mine")
    requester = ScriptedRequester(200, _edit_reply("print(1)\n", "Simple calculator", []))

    _pipeline(store, requester).send_message(0, "calculator please", "tok")

    assert store.get_project(0).title == "Mine"


def test_billing_failure_adds_one_message_and_leaves_file(store: ProjectStore) -> None:
    project = store.get_project(0)
    before = store.read_settings(project)
    requester = ScriptedRequester(402, "Payment Required")

    settings = _pipeline(store, requester).send_message(0, "hello", "tok")

    assert len(settings.messages) == len(before.messages) + 2
    assert settings.messages[-2].role == "user"
    assert settings.messages[-1].role == "assistant"
    assert settings.messages[-1].content == FAILURE_MESSAGES[FailureKind.BILLING]
    assert "subscription" in settings.messages[-1].content
    assert store.read_entry(project) == DEFAULT_ENTRY
    assert store.get_project(0).title == DEFAULT_TITLE


def test_auth_failure_asks_user_to_log_in(store: ProjectStore) -> None:
    settings = _pipeline(store, ScriptedRequester(401)).send_message(0, "hello", "")

    assert settings.messages[-1].content == "Something went wrong, please make sure you're logged in!"


def test_server_error_is_generic(store: ProjectStore) -> None:
    settings = _pipeline(store, ScriptedRequester(500)).send_message(0, "hello", "tok")

    assert settings.messages[-1].content == "Something went wrong, please try again later!"


def test_unknown_tool_call_is_reported(store: ProjectStore) -> None:
    payload = json.dumps(
        [{"message": {"content": None, "tool_calls": [{"function": {"name": "delete_disk", "arguments": "{}"}}]}}]
    )

    settings = _pipeline(store, ScriptedRequester(200, payload)).send_message(0, "hello", "tok")

    assert settings.messages[-1].content == UNRECOGNIZED_OPERATION
    assert store.read_entry(store.get_project(0)) == DEFAULT_ENTRY


def test_invalid_edit_arguments_become_local_warning(store: ProjectStore) -> None:
    payload = json.dumps(
        [{"message": {"content": None, "tool_calls": [{"function": {"name": EDIT_MAIN_FILE, "arguments": "{oops"}}]}}]
    )

    settings = _pipeline(store, ScriptedRequester(200, payload)).send_message(0, "hello", "tok")

    assert settings.messages[-1].role == "warning"
    assert settings.messages[-1].content == INVALID_EDIT


def test_transcript_excludes_local_messages_and_ends_with_source(store: ProjectStore) -> None:
    project = store.get_project(0)
    settings = store.read_settings(project)
    settings.add_message("warning", "local only")
    store.write_settings(project, settings)
    requester = ScriptedRequester(200, json.dumps([{"message": {"content": "Sure!"}}]))

    result = _pipeline(store, requester).send_message(0, "make it blue", "tok")

    sent = requester.bodies[0]["messages"]
    assert all(message["role"] not in {"info", "warning"} for message in sent)
    assert sent[-2] == {"role": "user", "content": "make it blue"}
    assert sent[-1] == source_context(DEFAULT_ENTRY)
    assert sent[-1]["content"].startswith("(App) Source Code='")
    assert result.messages[-1].content == "Sure!"


def test_filter_requirements_strips_versions_for_matching() -> None:
    kept = filter_requirements(["requests>=2", "Tkinter", "os", "requests", "numpy==1.26"], ["tkinter", "os"])

    assert kept == ["requests>=2", "numpy==1.26"]
