"""
Snapshot storage for envm.

Persistent mutations snapshot their medium here before writing, and a
failed verification replays the snapshot back. Snapshots can also be
listed, restored by id, and purged by a retention policy.

Usage:
    from envm.backup import BackupStore

    store = BackupStore("/tmp/envm-backups")
    path = store.create_backup("user", "PATH", profile_text)
    store.purge(max_per_scope=10, max_age_days=7)
"""

from envm.backup.store import (
    BackupError,
    BackupRecord,
    BackupStore,
    RetentionPolicy,
    format_timestamp,
    parse_timestamp,
)

__all__ = [
    "BackupStore",
    "BackupRecord",
    "RetentionPolicy",
    "BackupError",
    "format_timestamp",
    "parse_timestamp",
]
