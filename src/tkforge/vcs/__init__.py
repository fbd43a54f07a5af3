"""Per-project snapshot history."""

from .snapshots import SNAPSHOT_AUTHOR, CommitRecord, SnapshotStore

__all__ = ["SNAPSHOT_AUTHOR", "CommitRecord", "SnapshotStore"]
