"""
Snapshot store for envm.

Every persistent mutation writes the full pre-mutation content of its medium
(a profile file, a system environment file, or a registry export) to a
``.bak`` file before touching anything. Snapshots are plain text files named
``{scope}-{name}-{timestamp}.bak`` and are pruned by a count and age based
retention policy.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_SUBDIR = Path(".backup") / ".envm-backups"
BACKUP_SUFFIX = ".bak"

# Non-UTF-8 bytes in a medium survive a read/write round trip.
FILE_ERRORS = "surrogateescape"

# {scope}-{name}-{timestamp}[-{counter}].bak. Names may hold any character
# but a path separator; a name containing "-" is only recognised when the
# timestamp is well formed.
BACKUP_ID_PATTERN = re.compile(
    r"^(session|user|system)-(.+?)-"
    r"(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}(?:-\d{3})?Z(?:-\d+)?|[^-]+)\.bak$"
)
COLLISION_COUNTER_PATTERN = re.compile(r"Z-(\d+)\.bak$")
TIMESTAMP_PATTERN = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{3}))?"
)


class BackupError(Exception):
    """Error raised when a backup operation cannot be carried out at all."""

    pass


def format_timestamp(moment: datetime | None = None) -> str:
    """
    Format an instant for use inside a backup file name.

    The result is the ISO-8601 form with millisecond precision
    (``2025-08-11T12:00:00.000Z``) with ``:`` and ``.`` replaced by ``-``,
    which keeps names fixed-width and sortable as strings.
    """
    moment = (moment or datetime.now(UTC)).astimezone(UTC)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def parse_timestamp(text: str) -> datetime | None:
    """Parse a timestamp embedded in a backup file name, or return None."""
    match = TIMESTAMP_PATTERN.search(text)
    if not match:
        return None
    date_part, hours, minutes, seconds, millis = match.groups()
    try:
        parsed = datetime.strptime(
            f"{date_part}T{hours}:{minutes}:{seconds}", "%Y-%m-%dT%H:%M:%S"
        )
    except ValueError:
        return None
    parsed = parsed.replace(tzinfo=UTC)
    if millis:
        parsed += timedelta(milliseconds=int(millis))
    return parsed


@dataclass
class BackupRecord:
    """A single snapshot file, identified by its file name."""

    backup_id: str
    scope: str
    name: str
    timestamp: datetime | None
    path: Path | None = None

    @classmethod
    def parse(cls, backup_id: str, directory: Path | None = None) -> BackupRecord | None:
        """
        Parse a backup identifier.

        Args:
            backup_id: File name such as ``user-PATH-2025-08-11T12-00-00-000Z.bak``.
            directory: Optional directory used to fill in ``path``.

        Returns:
            BackupRecord, or None if the identifier does not match the
            ``{scope}-{name}-{timestamp}.bak`` pattern.
        """
        match = BACKUP_ID_PATTERN.match(backup_id)
        if not match:
            return None
        scope, name, stamp = match.groups()
        return cls(
            backup_id=backup_id,
            scope=scope,
            name=name,
            timestamp=parse_timestamp(stamp),
            path=directory / backup_id if directory is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert record to a JSON-serializable dictionary."""
        return {
            "id": self.backup_id,
            "scope": self.scope,
            "name": self.name,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "path": str(self.path) if self.path else None,
        }


@dataclass
class RetentionPolicy:
    """Count and age thresholds applied independently to each scope."""

    max_per_scope: int = 20
    max_age_days: float = 30


class BackupStore:
    """
    Owns the on-disk snapshot files.

    Adapters only ask the store to create a snapshot and later to hand one
    back. One instance is built per process from configuration; tests build
    their own instances pointing at temporary directories.
    """

    def __init__(self, backup_dir: str | Path | None = None) -> None:
        """
        Initialize the store.

        Args:
            backup_dir: Directory holding snapshots. Relative paths resolve
                against ``$INIT_CWD`` or the working directory. Defaults to
                ``.backup/.envm-backups`` under the working directory.
        """
        self._backup_dir: Path | None = None
        self.set_backup_dir(backup_dir)

    @property
    def backup_dir(self) -> Path:
        """Directory currently used for snapshots."""
        return self.get_backup_dir()

    def set_backup_dir(self, path: str | Path | None) -> None:
        """Point the store at another directory. ``None`` restores the default."""
        if path is None or str(path) == "":
            self._backup_dir = None
            return
        path = Path(path).expanduser()
        if not path.is_absolute():
            base = os.environ.get("INIT_CWD") or os.getcwd()
            path = Path(base) / path
        self._backup_dir = path

    def get_backup_dir(self) -> Path:
        """Return the configured directory, or the default one."""
        if self._backup_dir is not None:
            return self._backup_dir
        return Path.cwd() / DEFAULT_BACKUP_SUBDIR

    def create_backup(self, scope: str, name: str, content: str | None) -> Path:
        """
        Write a snapshot of a medium.

        Args:
            scope: Scope the snapshot belongs to.
            name: Variable whose mutation triggered the snapshot.
            content: Full medium content. ``None`` is stored as empty text.

        Returns:
            Path of the created snapshot file.

        Raises:
            OSError: If the directory or the file cannot be written.
        """
        directory = self.get_backup_dir()
        directory.mkdir(parents=True, exist_ok=True)

        stem = f"{scope}-{name}-{format_timestamp()}"
        path = directory / f"{stem}{BACKUP_SUFFIX}"
        counter = 1
        # Two snapshots in the same millisecond must not overwrite each other.
        while True:
            try:
                with open(path, "x", encoding="utf-8", errors=FILE_ERRORS, newline="") as f:
                    f.write(content or "")
                break
            except FileExistsError:
                path = directory / f"{stem}-{counter}{BACKUP_SUFFIX}"
                counter += 1

        logger.debug("Backup created: %s", path)
        return path

    def list(self, scope: str) -> list[str]:
        """
        List snapshot file names for a scope, in directory order.

        Callers that need recency order should use ``list_records``.
        """
        directory = self.get_backup_dir()
        try:
            names = os.listdir(directory)
        except OSError:
            return []
        prefix = f"{scope}-"
        return [name for name in names if name.startswith(prefix)]

    def list_records(self, scope: str | None = None) -> list[BackupRecord]:
        """Return parsed snapshot records, newest first."""
        directory = self.get_backup_dir()
        scopes = [scope] if scope else ["session", "user", "system"]
        records = []
        for current in scopes:
            for backup_id in self.list(current):
                record = BackupRecord.parse(backup_id, directory)
                if record is not None:
                    records.append(record)
        records.sort(key=_recency_key, reverse=True)
        return records

    def read(self, backup_id: str) -> str | None:
        """Return the content of a snapshot, or None if it cannot be read."""
        path = self.get_backup_dir() / backup_id
        try:
            with open(path, encoding="utf-8", errors=FILE_ERRORS, newline="") as f:
                return f.read()
        except OSError as e:
            logger.warning(f"Could not read backup {backup_id}: {e}")
            return None

    def restore(self, backup_id: str, adapter: Any) -> bool:
        """
        Replay a snapshot into its medium.

        Args:
            backup_id: Snapshot file name (not a full path).
            adapter: Platform adapter providing ``restore_from_backup``.

        Returns:
            True if the adapter restored the medium, False if the identifier
            is malformed, the file is unreadable or the adapter failed.

        Raises:
            BackupError: If ``adapter`` cannot restore snapshots at all.
        """
        record = BackupRecord.parse(Path(backup_id).name)
        if record is None:
            logger.warning("Refusing to restore malformed backup id: %s", backup_id)
            return False

        content = self.read(record.backup_id)
        if content is None:
            return False

        restore_fn = getattr(adapter, "restore_from_backup", None)
        if not callable(restore_fn):
            raise BackupError("Platform adapter does not implement restore_from_backup")

        try:
            restored = bool(restore_fn(content, scope=record.scope, name=record.name))
        except Exception as e:
            logger.error(f"Restore of {backup_id} failed: {e}")
            return False

        if restored:
            logger.info(f"Restored {record.scope} medium from {backup_id}")
        return restored

    def purge(self, max_per_scope: int = 20, max_age_days: float = 30) -> int:
        """
        Delete snapshots outside the retention policy.

        Each scope is evaluated on its own: within a scope, snapshots are
        ordered newest first and a file is deleted when it falls beyond the
        ``max_per_scope`` most recent, or when it is older than
        ``max_age_days``. Files whose timestamp cannot be parsed are only
        subject to the count rule.

        Args:
            max_per_scope: Number of snapshots to keep per scope.
            max_age_days: Maximum snapshot age in days.

        Returns:
            Number of files deleted.
        """
        directory = self.get_backup_dir()
        try:
            names = os.listdir(directory)
        except OSError:
            return 0

        by_scope: dict[str, list[str]] = {}
        for name in names:
            if not name.endswith(BACKUP_SUFFIX):
                continue
            scope = name.split("-", 1)[0]
            by_scope.setdefault(scope, []).append(name)

        now = datetime.now(UTC)
        max_age = timedelta(days=max_age_days)
        deleted = 0

        for scope, files in by_scope.items():
            files.sort(key=_name_recency_key, reverse=True)
            for index, name in enumerate(files):
                stamp = parse_timestamp(name)
                too_old = stamp is not None and now - stamp > max_age
                if index < max_per_scope and not too_old:
                    continue
                try:
                    (directory / name).unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning(f"Could not delete backup {name}: {e}")

        if deleted:
            logger.info(f"Purged {deleted} backup(s) from {directory}")
        return deleted


def _name_recency_key(name: str) -> tuple[str, int, str]:
    # Same-millisecond snapshots only differ by their collision counter.
    match = TIMESTAMP_PATTERN.search(name)
    counter = COLLISION_COUNTER_PATTERN.search(name)
    return (
        match.group(0) if match else "",
        int(counter.group(1)) if counter else 0,
        name,
    )


def _recency_key(record: BackupRecord) -> tuple[str, int, str]:
    return _name_recency_key(record.backup_id)
