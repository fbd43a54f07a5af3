"""Git-backed project snapshots (dulwich, no git binary required)."""

from __future__ import annotations

import logging as py_logging
import os
from dataclasses import dataclass
from pathlib import Path

from dulwich import porcelain
from dulwich.errors import NotGitRepository
from dulwich.index import build_index_from_tree
from dulwich.object_store import iter_tree_contents
from dulwich.repo import Repo

from tkforge.errors import ExitCode, TkForgeError

logger = py_logging.getLogger(__name__)

SNAPSHOT_AUTHOR = b"TkForge <tkforge@localhost>"
_GIT_DIR = ".git"


@dataclass(frozen=True)
class CommitRecord:
    id: str
    message: str
    timestamp: int


def _is_repo(project_dir: Path) -> bool:
    return (project_dir / _GIT_DIR).is_dir()


def _working_files(project_dir: Path) -> list[str]:
    files: list[str] = []
    for root, dirs, names in os.walk(project_dir):
        dirs[:] = [name for name in dirs if name != _GIT_DIR]
        files.extend(str(Path(root, name)) for name in names)
    return sorted(files)


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


class SnapshotStore:
    """Stateless wrapper; every call opens the repository afresh.

    The "current" version of a project lives in its settings, never in HEAD:
    :meth:`checkout` rewrites the working tree only.
    """

    def init(self, project_dir: str | Path) -> bool:
        path = Path(project_dir)
        if not path.is_dir():
            logger.debug("Skipping git init for missing directory=%s", path)
            return False
        if _is_repo(path):
            return False
        porcelain.init(str(path))
        logger.debug("Initialized snapshot repository directory=%s", path)
        return True

    def commit(self, project_dir: str | Path, message: str) -> str | None:
        path = Path(project_dir)
        if not path.is_dir() or not _is_repo(path):
            logger.debug("Skipping commit for missing repository directory=%s", path)
            return None
        try:
            self._stage_all(path)
            commit_id = porcelain.commit(
                str(path),
                message=message.encode("utf-8"),
                author=SNAPSHOT_AUTHOR,
                committer=SNAPSHOT_AUTHOR,
            )
        except (OSError, porcelain.Error) as exc:
            logger.error("Snapshot commit failed directory=%s error=%s", path, exc)
            raise TkForgeError(
                "Failed to record project snapshot.",
                code=ExitCode.GIT_ERROR,
                hint=str(exc) or "Inspect the project directory permissions.",
            ) from exc
        resolved = _decode(commit_id)
        logger.info("Recorded snapshot directory=%s commit=%s", path, resolved)
        return resolved

    def list_commits(self, project_dir: str | Path) -> list[CommitRecord]:
        path = Path(project_dir)
        if not path.is_dir():
            return []
        try:
            repo = Repo(str(path))
        except NotGitRepository:
            return []
        with repo:
            try:
                walker = repo.get_walker()
            except KeyError:
                return []
            return [
                CommitRecord(
                    id=_decode(entry.commit.id),
                    message=_decode(entry.commit.message).strip(),
                    timestamp=int(entry.commit.author_time),
                )
                for entry in walker
            ]

    def checkout(self, project_dir: str | Path, commit_id: str) -> str | None:
        path = Path(project_dir)
        if not path.is_dir():
            return None
        try:
            repo = Repo(str(path))
        except NotGitRepository:
            return None
        with repo:
            try:
                commit = repo[commit_id.strip().encode("ascii")]
            except (KeyError, ValueError, UnicodeEncodeError):
                logger.warning("Unknown snapshot directory=%s commit=%s", path, commit_id)
                return None
            tree_id = getattr(commit, "tree", None)
            if tree_id is None:
                logger.warning("Object is not a commit directory=%s id=%s", path, commit_id)
                return None

            target_paths = {entry.path for entry in iter_tree_contents(repo.object_store, tree_id)}
            index = repo.open_index()
            for tree_path in list(index):
                if tree_path in target_paths:
                    continue
                stale = path / os.fsdecode(tree_path)
                if stale.is_file() or stale.is_symlink():
                    stale.unlink()
            build_index_from_tree(repo.path, repo.index_path(), repo.object_store, tree_id)
            resolved = commit.id.decode("ascii")
        logger.info("Checked out snapshot directory=%s commit=%s", path, resolved)
        return resolved

    def _stage_all(self, path: Path) -> None:
        existing = _working_files(path)
        if existing:
            porcelain.add(str(path), paths=existing)

        with Repo(str(path)) as repo:
            tracked = [os.fsdecode(tree_path) for tree_path in repo.open_index()]
        removed = [str(path / name) for name in tracked if not (path / name).exists()]
        if removed:
            porcelain.remove(str(path), paths=removed, cached=True)
