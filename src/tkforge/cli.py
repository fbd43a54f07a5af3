"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import json
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from .app import TkForgeApp
from .config import AppConfig, load_config
from .errors import ExitCode, TkForgeError, user_facing_error
from .logging import configure_logging, default_log_path
from .runtime.installer import InstallProgress, InstallState

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_RUNTIME_COMMANDS = {"install", "run", "export"}

AppFactory = Callable[[AppConfig], TkForgeApp]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _index_type(value: str) -> int:
    try:
        index = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("project index must be an integer") from exc
    if index < 0:
        raise argparse.ArgumentTypeError("project index cannot be negative")
    return index


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tkforge")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("install", help="Download and verify the managed Python runtime")
    commands.add_parser("list", help="List projects")
    commands.add_parser("create", help="Create a new project")

    for name, help_text in (
        ("delete", "Delete a project"),
        ("settings", "Show project settings"),
        ("run", "Run a project until it exits"),
        ("commits", "List project versions"),
        ("log", "Print the project output log"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("index", type=_index_type)

    rename = commands.add_parser("rename", help="Rename a project")
    rename.add_argument("index", type=_index_type)
    rename.add_argument("title")

    export = commands.add_parser("export", help="Build a standalone executable")
    export.add_argument("index", type=_index_type)
    export.add_argument("output", type=Path)

    send = commands.add_parser("send", help="Send a chat message to the assistant")
    send.add_argument("index", type=_index_type)
    send.add_argument("message")
    send.add_argument("--token", default="", help="Access token issued by the identity provider")

    checkout = commands.add_parser("checkout", help="Restore a previous version")
    checkout.add_argument("index", type=_index_type)
    checkout.add_argument("commit")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def _print_progress(progress: InstallProgress) -> None:
    if progress.state == InstallState.DOWNLOADING and progress.percent is not None:
        print(f"\rDownloading runtime... {progress.percent}%", end="", file=sys.stderr, flush=True)
    elif progress.state == InstallState.EXTRACTING:
        print("\nExtracting runtime...", file=sys.stderr)
    elif progress.state == InstallState.VERIFIED:
        print("Runtime installed.", file=sys.stderr)


def _print_line(line: str) -> None:
    print(line, flush=True)


def _format_timestamp(value: int) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def run_command(app: TkForgeApp, namespace: argparse.Namespace) -> int:
    command = namespace.command
    if command in _RUNTIME_COMMANDS and app.bootstrap() is None:
        raise TkForgeError(
            "Failed to install dependencies.",
            code=ExitCode.INSTALL_ERROR,
            hint="Please check your internet connection and try again.",
        )

    if command == "install":
        print(app.installer.executable)
        return int(ExitCode.SUCCESS)

    if command == "list":
        for position, project in enumerate(app.list_projects()):
            print(f"{position}\t{project.latest_date}\t{project.title}")
        return int(ExitCode.SUCCESS)

    if command == "create":
        project = app.create_project()
        if project is None:
            return int(ExitCode.STORAGE_ERROR)
        print(project.path)
        return int(ExitCode.SUCCESS)

    if command == "delete":
        return int(ExitCode.SUCCESS if app.delete_project(namespace.index) else ExitCode.STORAGE_ERROR)

    if command == "rename":
        return int(
            ExitCode.SUCCESS if app.rename_project(namespace.index, namespace.title) else ExitCode.STORAGE_ERROR
        )

    if command == "settings":
        settings = app.project_settings(namespace.index)
        if settings is None:
            return int(ExitCode.STORAGE_ERROR)
        print(json.dumps(settings.model_dump(by_alias=True, mode="json"), indent=2))
        return int(ExitCode.SUCCESS)

    if command == "run":
        result = app.run_project(namespace.index, on_line=_print_line)
        if result is None:
            return int(ExitCode.PROCESS_ERROR)
        return int(ExitCode.SUCCESS if result.exit_code in (0, None) else ExitCode.PROCESS_ERROR)

    if command == "export":
        exported = app.export_project(namespace.index, namespace.output, on_line=_print_line)
        if exported is None or not exported.success:
            return int(ExitCode.PROCESS_ERROR)
        print(exported.executable)
        return int(ExitCode.SUCCESS)

    if command == "send":
        settings = app.send_message(namespace.index, namespace.message, namespace.token)
        if settings is None:
            return int(ExitCode.ASSISTANT_ERROR)
        if settings.messages:
            last = settings.messages[-1]
            print(f"[{last.role}] {last.content}")
        return int(ExitCode.SUCCESS)

    if command == "commits":
        settings = app.project_settings(namespace.index)
        current = settings.current_commit if settings else ""
        for record in app.list_commits(namespace.index):
            marker = "*" if record.id == current else " "
            print(f"{marker} {record.id[:10]}\t{_format_timestamp(record.timestamp)}\t{record.message}")
        return int(ExitCode.SUCCESS)

    if command == "checkout":
        selected = app.select_version(namespace.index, namespace.commit)
        if selected is None:
            return int(ExitCode.GIT_ERROR)
        print(selected)
        return int(ExitCode.SUCCESS)

    for line in app.read_log(namespace.index):
        print(line)
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    app_factory: AppFactory | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    factory = app_factory or (lambda cfg: TkForgeApp(cfg, progress=_print_progress))
    app: TkForgeApp | None = None
    try:
        app = factory(config)
        logger.debug("Running command=%s", namespace.command)
        return run_command(app, namespace)
    except TkForgeError as exc:
        logger.error(
            "Handled TkForgeError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)
    finally:
        if app is not None:
            app.close()


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
