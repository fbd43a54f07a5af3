"""Project index and per-project settings storage."""

from .models import ChatMessage, Project, ProjectSettings
from .store import DEFAULT_TITLE, ProjectStore

__all__ = ["DEFAULT_TITLE", "ChatMessage", "Project", "ProjectSettings", "ProjectStore"]
