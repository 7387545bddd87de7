"""
Environment manager facade.

EnvManager is the single surface callers use. It holds the adapter chosen
for the host platform and the process' BackupStore, and adds the PATH-like
list operations on top of the adapter's get/set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from envm import pathutils
from envm.adapters import PlatformAdapter, select_adapter
from envm.adapters.base import MutationResult, Scope
from envm.backup.store import BackupRecord, BackupStore, RetentionPolicy
from envm.config.settings import Settings

logger = logging.getLogger(__name__)


class EnvManager:
    """
    Cross-platform environment variable manager.

    Usage:
        manager = EnvManager.from_settings(load_config())
        manager.set("EDITOR", "vim", scope="user")
        manager.path_prepend(["/opt/tools/bin"], scope="user")
    """

    def __init__(
        self,
        adapter: PlatformAdapter | None = None,
        backup_store: BackupStore | None = None,
        retention: RetentionPolicy | None = None,
        backup_enabled: bool = True,
        verify: bool = True,
        rollback_on_fail: bool = True,
    ) -> None:
        """
        Initialize the manager.

        Args:
            adapter: Platform adapter. Selected from the host OS if omitted.
            backup_store: Snapshot store. Defaults to the adapter's store, or
                a store in the default directory.
            retention: Policy used by ``purge_backups`` when called without
                explicit thresholds.
            backup_enabled: Default for the ``backup`` option of mutations.
            verify: Default for the ``verify`` option of mutations.
            rollback_on_fail: Default for the ``rollback_on_fail`` option.
        """
        if backup_store is None:
            backup_store = getattr(adapter, "backup_store", None) or BackupStore()
        if adapter is None:
            adapter = select_adapter(backup_store)
        elif adapter.backup_store is None:
            adapter.backup_store = backup_store

        self.adapter = adapter
        self.backup_store = backup_store
        self.retention = retention or RetentionPolicy()
        self.backup_enabled = backup_enabled
        self.verify = verify
        self.rollback_on_fail = rollback_on_fail

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        platform_name: str | None = None,
    ) -> EnvManager:
        """Build a manager from loaded settings."""
        store = BackupStore(settings.backup.dir or None)
        adapter = select_adapter(store, settings, platform_name)
        return cls(
            adapter=adapter,
            backup_store=store,
            retention=RetentionPolicy(
                max_per_scope=settings.backup.max_per_scope,
                max_age_days=settings.backup.max_age_days,
            ),
            backup_enabled=settings.backup.enabled,
            verify=settings.mutation.verify,
            rollback_on_fail=settings.mutation.rollback_on_fail,
        )

    @property
    def platform(self) -> str:
        """``"posix"`` or ``"win"``."""
        return self.adapter.platform_name

    @property
    def delimiter(self) -> str:
        """Default delimiter for PATH-like variables on this platform."""
        return self.adapter.delimiter

    # Variables

    def get_raw(self, name: str, scope: Scope | str = Scope.SESSION) -> str | None:
        return self.adapter.get_raw(name, scope)

    def get_expanded(
        self,
        name: str,
        scope: Scope | str = Scope.SESSION,
        expand_across_scopes: bool = False,
    ) -> str | None:
        return self.adapter.get_expanded(name, scope, expand_across_scopes=expand_across_scopes)

    def set(
        self,
        name: str,
        value: str,
        scope: Scope | str = Scope.SESSION,
        backup: bool | None = None,
        verify: bool | None = None,
        rollback_on_fail: bool | None = None,
    ) -> MutationResult:
        """Set a variable. Options left as None fall back to the manager defaults."""
        return self.adapter.set(
            name,
            value,
            scope,
            **self._mutation_options(backup, verify, rollback_on_fail),
        )

    def unset(
        self,
        name: str,
        scope: Scope | str = Scope.SESSION,
        backup: bool | None = None,
        verify: bool | None = None,
        rollback_on_fail: bool | None = None,
    ) -> MutationResult:
        """Remove a variable. Options left as None fall back to the manager defaults."""
        return self.adapter.unset(
            name,
            scope,
            **self._mutation_options(backup, verify, rollback_on_fail),
        )

    def restore_from_backup(self, content: str, scope: Scope | str, name: str | None = None) -> bool:
        return self.adapter.restore_from_backup(content, scope, name=name)

    def _mutation_options(
        self,
        backup: bool | None,
        verify: bool | None,
        rollback_on_fail: bool | None,
    ) -> dict[str, bool]:
        return {
            "backup": self.backup_enabled if backup is None else backup,
            "verify": self.verify if verify is None else verify,
            "rollback_on_fail": self.rollback_on_fail if rollback_on_fail is None else rollback_on_fail,
        }

    # Backups

    def list_backups(self, scope: Scope | str) -> list[str]:
        return self.backup_store.list(Scope.parse(scope).value)

    def list_backup_records(self, scope: Scope | str | None = None) -> list[BackupRecord]:
        return self.backup_store.list_records(Scope.parse(scope).value if scope else None)

    def restore_backup(self, backup_id: str) -> bool:
        """Replay a snapshot by id into its medium."""
        return self.backup_store.restore(backup_id, self.adapter)

    def purge_backups(
        self,
        max_per_scope: int | None = None,
        max_age_days: float | None = None,
    ) -> int:
        """Apply the retention policy. Thresholds default to the configured ones."""
        return self.backup_store.purge(
            max_per_scope=self.retention.max_per_scope if max_per_scope is None else max_per_scope,
            max_age_days=self.retention.max_age_days if max_age_days is None else max_age_days,
        )

    def set_backup_dir(self, path: str | Path | None) -> None:
        self.backup_store.set_backup_dir(path)

    def get_backup_dir(self) -> Path:
        return self.backup_store.get_backup_dir()

    # PATH-like variables

    def path_get(
        self,
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        raw: bool = False,
    ) -> str | None:
        """Return a PATH-like variable, expanded unless ``raw``."""
        if raw:
            return self.get_raw(name, scope)
        return self.get_expanded(name, scope)

    def path_segments(
        self,
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        delimiter: str | None = None,
    ) -> list[str]:
        """Return the raw segments of a PATH-like variable."""
        return pathutils.split(self.get_raw(name, scope), delimiter or self.delimiter)

    def path_prepend(
        self,
        values: Iterable[str],
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        unique: bool = True,
        validate: bool = False,
        delimiter: str | None = None,
    ) -> MutationResult:
        """
        Put segments in front of a PATH-like variable.

        Raises:
            ValueError: If ``validate`` is set and a segment is invalid.
        """
        segments = [*values, *self.path_segments(name, scope, delimiter)]
        return self._write_segments(name, scope, segments, unique, validate, delimiter)

    def path_append(
        self,
        values: Iterable[str],
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        unique: bool = True,
        validate: bool = False,
        delimiter: str | None = None,
    ) -> MutationResult:
        """
        Add segments at the end of a PATH-like variable.

        Raises:
            ValueError: If ``validate`` is set and a segment is invalid.
        """
        segments = [*self.path_segments(name, scope, delimiter), *values]
        return self._write_segments(name, scope, segments, unique, validate, delimiter)

    def path_remove(
        self,
        values: Iterable[str],
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        delimiter: str | None = None,
    ) -> MutationResult:
        """Drop every occurrence of ``values`` from a PATH-like variable."""
        removed = set(values)
        segments = [s for s in self.path_segments(name, scope, delimiter) if s not in removed]
        return self._write_segments(name, scope, segments, False, False, delimiter)

    def path_sort(
        self,
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        delimiter: str | None = None,
    ) -> MutationResult:
        """Sort the segments of a PATH-like variable alphabetically."""
        segments = sorted(self.path_segments(name, scope, delimiter))
        return self._write_segments(name, scope, segments, False, False, delimiter)

    def path_unique(
        self,
        name: str = "PATH",
        scope: Scope | str = Scope.SESSION,
        delimiter: str | None = None,
    ) -> MutationResult:
        """Remove duplicate segments, case-insensitively on Windows."""
        segments = self.path_segments(name, scope, delimiter)
        return self._write_segments(name, scope, segments, True, False, delimiter)

    def _write_segments(
        self,
        name: str,
        scope: Scope | str,
        segments: list[str],
        unique: bool,
        validate: bool,
        delimiter: str | None,
    ) -> MutationResult:
        if unique:
            segments = pathutils.unique(segments, self.adapter.case_insensitive)
        if validate and not pathutils.validate(segments):
            raise ValueError("Invalid path segments")
        value = pathutils.join(segments, delimiter or self.delimiter)
        logger.debug("Writing %d segment(s) to %s", len(segments), name)
        return self.set(name, value, scope)
