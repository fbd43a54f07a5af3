"""Project index and settings models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant", "system", "info", "warning"]

_VALID_ROLES = {"user", "assistant", "system", "info", "warning"}
# UI-local annotations, never forwarded to the assistant.
LOCAL_ROLES = frozenset({"info", "warning"})


class ChatMessage(BaseModel):
    role: Role
    content: str = ""

    @property
    def is_local(self) -> bool:
        return self.role in LOCAL_ROLES


class Project(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    title: str
    path: str
    latest_date: str = Field(default="", alias="latestDate")


class ProjectSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    file: str = "main.py"
    messages: list[ChatMessage] = Field(default_factory=list)
    current_commit: str = Field(default="", alias="currentCommit")
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def _drop_invalid_messages(cls, value: object) -> object:
        if not isinstance(value, list):
            return []
        return [
            item
            for item in value
            if isinstance(item, ChatMessage)
            or (isinstance(item, dict) and item.get("role") in _VALID_ROLES)
        ]

    @field_validator("dependencies", mode="before")
    @classmethod
    def _split_dependencies(cls, value: object) -> object:
        # Older settings stored the requirement list space separated.
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return []

    @field_validator("file")
    @classmethod
    def _validate_file(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name or "\\" in name or name in {".", ".."}:
            raise ValueError(f"Invalid entry file name: {value}")
        return name

    def add_message(self, role: Role, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages = [*self.messages, message]
        return message

    def merge_dependencies(self, names: list[str]) -> list[str]:
        merged = list(self.dependencies)
        seen = {item.lower() for item in merged}
        for name in names:
            key = name.strip()
            if key and key.lower() not in seen:
                seen.add(key.lower())
                merged.append(key)
        self.dependencies = merged
        return merged
