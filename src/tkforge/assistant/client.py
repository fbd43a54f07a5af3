"""HTTP relay to the remote code assistant."""

from __future__ import annotations

import json
import logging as py_logging
from dataclasses import dataclass, field
from enum import Enum
from http.client import HTTPException
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from typing_extensions import TypedDict

from tkforge.errors import ExitCode, TkForgeError

logger = py_logging.getLogger(__name__)

HttpResponse = tuple[int, str]


class WireMessage(TypedDict):
    role: str
    content: str


class HttpRequester(Protocol):
    def __call__(self, url: str, body: bytes, headers: dict[str, str], timeout: float) -> HttpResponse: ...


class FailureKind(str, Enum):
    AUTH = "auth"
    BILLING = "billing"
    GENERIC = "generic"


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: str


@dataclass(frozen=True)
class AssistantReply:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    failure: FailureKind | None = None
    status: int | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def _validate_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"} or not parsed.netloc:
        raise TkForgeError(
            f"Invalid assistant URL: {url}",
            code=ExitCode.CONFIG_ERROR,
            hint="Set assistant_url in config.toml to an http(s) endpoint.",
        )


def _default_requester(url: str, body: bytes, headers: dict[str, str], timeout: float) -> HttpResponse:
    _validate_url(url)
    request = Request(url, data=body, headers=headers, method="POST")
    try:
        with urlopen(request, timeout=timeout) as response:  # nosec B310
            status = int(getattr(response, "status", response.getcode()))
            return status, response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        payload = ""
        if exc.fp is not None:
            payload = exc.read().decode("utf-8", errors="replace")
        return exc.code, payload
    except URLError as exc:
        raise TkForgeError(
            "Assistant service is unreachable.",
            code=ExitCode.ASSISTANT_ERROR,
            hint=str(exc.reason) or "Check your network connection.",
        ) from exc


def failure_for_status(status: int) -> FailureKind:
    if status == 401:
        return FailureKind.AUTH
    if status == 402:
        return FailureKind.BILLING
    return FailureKind.GENERIC


def _first_message(payload: Any) -> dict[str, Any] | None:
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if isinstance(payload, dict) and isinstance(payload.get("choices"), list):
        choices = payload["choices"]
        payload = choices[0] if choices else None
    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    return message if isinstance(message, dict) else None


def _parse_tool_calls(raw: object) -> list[ToolCall]:
    if not isinstance(raw, list):
        return []
    calls: list[ToolCall] = []
    for item in raw:
        function = item.get("function") if isinstance(item, dict) else None
        if not isinstance(function, dict):
            continue
        name = function.get("name")
        arguments = function.get("arguments", "")
        if not isinstance(name, str):
            continue
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(ToolCall(name=name, arguments=arguments))
    return calls


def parse_reply(payload: str) -> AssistantReply:
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError:
        logger.error("Assistant payload was not valid JSON")
        return AssistantReply(failure=FailureKind.GENERIC, status=200)
    message = _first_message(decoded)
    if message is None:
        logger.error("Assistant payload had no message")
        return AssistantReply(failure=FailureKind.GENERIC, status=200)
    content = message.get("content")
    return AssistantReply(
        content=content if isinstance(content, str) and content.strip() else None,
        tool_calls=_parse_tool_calls(message.get("tool_calls")),
        status=200,
    )


class AssistantClient:
    def __init__(
        self,
        url: str,
        *,
        requester: HttpRequester | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._requester = requester or _default_requester

    def send(
        self,
        messages: list[WireMessage],
        *,
        access_token: str,
        app_version: str,
    ) -> AssistantReply:
        body = json.dumps(
            {"access_token": access_token, "messages": messages, "app_version": app_version}
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"TkForge/{app_version}",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            status, payload = self._requester(self.url, body, headers, self.timeout)
        except TkForgeError as exc:
            logger.error("Assistant request failed: %s", exc)
            return AssistantReply(failure=FailureKind.GENERIC)
        except (OSError, HTTPException, ValueError):
            logger.error("Assistant request failed", exc_info=True)
            return AssistantReply(failure=FailureKind.GENERIC)

        if not 200 <= status < 300:
            logger.warning("Assistant request returned status=%s", status)
            return AssistantReply(failure=failure_for_status(status), status=status)
        return parse_reply(payload)
