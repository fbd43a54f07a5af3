"""Remote assistant relay and the edit pipeline that applies its replies."""

from .client import AssistantClient, AssistantReply, FailureKind, ToolCall, WireMessage
from .pipeline import EDIT_MAIN_FILE, EditPipeline, filter_requirements

__all__ = [
    "EDIT_MAIN_FILE",
    "AssistantClient",
    "AssistantReply",
    "EditPipeline",
    "FailureKind",
    "ToolCall",
    "WireMessage",
    "filter_requirements",
]
