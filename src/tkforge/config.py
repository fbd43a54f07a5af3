"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/tkforge/config.toml").expanduser()
DEFAULT_RUNTIME_BASE_URL = "https://github.com/astral-sh/python-build-standalone/releases/download"
DEFAULT_RUNTIME_RELEASE = "20250106"
DEFAULT_RUNTIME_VERSION = "3.11.11"
DEFAULT_ASSISTANT_URL = "https://api.tkforge.app/functions/v1/assistant-api"
DEFAULT_APP_VERSION = "1.0.0"
DEFAULT_LOG_LEVEL: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"
DEFAULT_DOWNLOAD_TIMEOUT = 60
DEFAULT_UNNECESSARY_REQUIREMENTS = ["tkinter", "sqlite3", "json", "os", "sys", "math", "random"]
DATA_DIR_ENV = "TKFORGE_DATA_DIR"
ASSISTANT_URL_ENV = "TKFORGE_ASSISTANT_URL"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}


def default_data_dir() -> Path:
    """Per-user data root holding the runtime and every project."""
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA", "").strip()
        if appdata:
            return Path(appdata) / "tkforge"
        return Path("~/AppData/Roaming/tkforge").expanduser()
    if sys.platform == "darwin":
        return Path("~/Library/Application Support/tkforge").expanduser()
    xdg = os.getenv("XDG_DATA_HOME", "").strip()
    if xdg:
        return Path(xdg) / "tkforge"
    return Path("~/.local/share/tkforge").expanduser()


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    data_dir: str = ""
    runtime_base_url: str = DEFAULT_RUNTIME_BASE_URL
    runtime_release: str = DEFAULT_RUNTIME_RELEASE
    runtime_version: str = DEFAULT_RUNTIME_VERSION
    runtime_url: str = ""
    assistant_url: str = DEFAULT_ASSISTANT_URL
    app_version: str = DEFAULT_APP_VERSION
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = DEFAULT_LOG_LEVEL
    download_timeout_seconds: int = Field(default=DEFAULT_DOWNLOAD_TIMEOUT, ge=5, le=600)
    unnecessary_requirements: list[str] = Field(
        default_factory=lambda: list(DEFAULT_UNNECESSARY_REQUIREMENTS)
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        if value not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return value

    def resolved_data_dir(self) -> Path:
        if self.data_dir.strip():
            return Path(self.data_dir).expanduser()
        return default_data_dir()


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _normalize_names(value: object) -> list[str] | None:
    if not isinstance(value, list):
        return None
    names: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            continue
        name = item.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        names.append(name)
    return names


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for key in ("data_dir", "runtime_base_url", "runtime_release", "runtime_version", "app_version"):
        value = raw.get(key)
        if isinstance(value, str) and (value.strip() or key == "data_dir"):
            setattr(cfg, key, value.strip())

    runtime_url = raw.get("runtime_url")
    if isinstance(runtime_url, str):
        candidate = runtime_url.strip()
        if not candidate or candidate.startswith(("https://", "http://")):
            cfg.runtime_url = candidate

    assistant_url = raw.get("assistant_url", cfg.assistant_url)
    if isinstance(assistant_url, str) and assistant_url.startswith(("https://", "http://")):
        cfg.assistant_url = assistant_url

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        normalized = log_level.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized in _VALID_LOG_LEVELS:
            cfg.log_level = cast(Literal["DEBUG", "INFO", "WARN", "ERROR"], normalized)

    timeout = raw.get("download_timeout_seconds", cfg.download_timeout_seconds)
    if isinstance(timeout, int) and not isinstance(timeout, bool) and 5 <= timeout <= 600:
        cfg.download_timeout_seconds = timeout

    requirements = _normalize_names(raw.get("unnecessary_requirements"))
    if requirements is not None:
        cfg.unnecessary_requirements = requirements

    return cfg


def _apply_env(cfg: AppConfig) -> AppConfig:
    env_data_dir = os.getenv(DATA_DIR_ENV, "").strip()
    if env_data_dir:
        cfg.data_dir = env_data_dir
    env_assistant = os.getenv(ASSISTANT_URL_ENV, "").strip()
    if env_assistant:
        cfg.assistant_url = env_assistant
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _apply_env(AppConfig())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _apply_env(AppConfig())
    if not isinstance(raw, dict):
        return _apply_env(AppConfig())
    return _apply_env(_sanitize(raw))


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"data_dir = {_toml_scalar(config.data_dir)}",
        f"runtime_base_url = {_toml_scalar(config.runtime_base_url)}",
        f"runtime_release = {_toml_scalar(config.runtime_release)}",
        f"runtime_version = {_toml_scalar(config.runtime_version)}",
        f"runtime_url = {_toml_scalar(config.runtime_url)}",
        f"assistant_url = {_toml_scalar(config.assistant_url)}",
        f"app_version = {_toml_scalar(config.app_version)}",
        f"log_level = {_toml_scalar(config.log_level)}",
        f"download_timeout_seconds = {_toml_scalar(config.download_timeout_seconds)}",
        f"unnecessary_requirements = {_toml_scalar(list(config.unnecessary_requirements))}",
    ]

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
