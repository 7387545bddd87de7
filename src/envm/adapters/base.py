"""
Shared adapter contract and the write-verify-rollback protocol.

Both platform adapters expose the same operations (``get_raw``,
``get_expanded``, ``set``, ``unset``, ``restore_from_backup``). Subclasses only
describe how to read, snapshot, write and restore their medium; the protocol
that wraps every persistent mutation lives here so the two platforms cannot
drift apart.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from envm.backup.store import BackupStore

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Error raised by a medium hook. Converted into failed results by the protocol."""

    pass


class InvalidScopeError(ValueError):
    """Raised when a scope name is not one of session, user or system."""

    pass


class Scope(Enum):
    """Storage scopes a variable can live in."""

    SESSION = "session"
    USER = "user"
    SYSTEM = "system"

    @property
    def is_persistent(self) -> bool:
        """Whether the scope outlives the current process."""
        return self is not Scope.SESSION

    @classmethod
    def parse(cls, value: Scope | str) -> Scope:
        """Convert a string to a Scope."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise InvalidScopeError(f"Invalid scope: {value}. Must be one of: {valid}") from None


@dataclass
class MutationResult:
    """
    Outcome of a set or unset.

    Attributes:
        ok: True only if the mutation is known to have taken effect. With
            verification enabled this equals ``verification``.
        scope: Scope that was mutated.
        name: Variable name as stored (uppercased on Windows).
        previous: Value before the mutation, if it could be read.
        new_value: Intended value, None for unset.
        verification: Whether the re-read matched the intended state. None
            when verification was disabled or never reached.
        rollback: None if no rollback was attempted, True if the medium was
            restored from its snapshot, False if that restore failed.
        notes: Diagnostics such as the medium touched or the error raised.
        backup_path: Snapshot written before the mutation, if any.
    """

    ok: bool
    scope: str
    name: str
    previous: str | None = None
    new_value: str | None = None
    verification: bool | None = None
    rollback: bool | None = None
    notes: list[str] = field(default_factory=list)
    backup_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert result to a JSON-serializable dictionary."""
        return {
            "ok": self.ok,
            "scope": self.scope,
            "name": self.name,
            "previous": self.previous,
            "next": self.new_value,
            "verification": self.verification,
            "rollback": self.rollback,
            "notes": list(self.notes),
            "backup": str(self.backup_path) if self.backup_path else None,
        }


class PlatformAdapter(ABC):
    """
    Base class for platform adapters.

    Subclasses set ``platform_name``, ``delimiter`` and ``reference_pattern``
    and implement the medium hooks. Session scope always goes straight to
    ``os.environ``.
    """

    platform_name = ""
    delimiter = ":"
    case_insensitive = False
    reference_pattern: re.Pattern[str] = re.compile(r"(?!)")

    def __init__(self, backup_store: BackupStore | None = None) -> None:
        self.backup_store = backup_store

    # Public operations

    def normalize_name(self, name: str) -> str:
        """Return the name as the platform stores it."""
        return name

    def get_raw(self, name: str, scope: Scope | str) -> str | None:
        """
        Return the literal stored value of a variable.

        A missing medium (file or registry key) is reported as an absent
        value, not an error.
        """
        scope = Scope.parse(scope)
        name = self.normalize_name(name)
        if scope is Scope.SESSION:
            return os.environ.get(name)
        return self._read_value(name, scope)

    def get_expanded(
        self,
        name: str,
        scope: Scope | str,
        expand_across_scopes: bool = False,
    ) -> str | None:
        """
        Return the value with references substituted once.

        References resolve against the live process environment. A
        reference to the variable itself is left untouched, and the
        result is not expanded again, so chains of indirection only
        resolve as far as the environment already has them resolved.

        Args:
            name: Variable name.
            scope: Scope to read the raw value from.
            expand_across_scopes: Also look up references missing from the
                environment in the user and system media.
        """
        name = self.normalize_name(name)
        raw = self.get_raw(name, scope)
        if not raw:
            return raw

        def substitute(match: re.Match[str]) -> str:
            reference = self.normalize_name(
                next(group for group in match.groups() if group is not None)
            )
            if reference == name:
                return match.group(0)
            return self._lookup_reference(reference, expand_across_scopes)

        return self.reference_pattern.sub(substitute, raw)

    def set(
        self,
        name: str,
        value: str,
        scope: Scope | str,
        backup: bool = True,
        verify: bool = True,
        rollback_on_fail: bool = True,
    ) -> MutationResult:
        """
        Set a variable in a scope.

        Args:
            name: Variable name.
            value: New value.
            scope: Target scope.
            backup: Snapshot the medium before writing.
            verify: Re-read the variable after writing.
            rollback_on_fail: Restore the snapshot if verification fails.

        Returns:
            MutationResult describing what happened.
        """
        return self._mutate(name, value, scope, backup, verify, rollback_on_fail)

    def unset(
        self,
        name: str,
        scope: Scope | str,
        backup: bool = True,
        verify: bool = True,
        rollback_on_fail: bool = True,
    ) -> MutationResult:
        """Remove a variable from a scope. Options mirror ``set``."""
        return self._mutate(name, None, scope, backup, verify, rollback_on_fail)

    def restore_from_backup(
        self,
        content: str,
        scope: Scope | str,
        name: str | None = None,
    ) -> bool:
        """
        Overwrite a scope's medium with snapshot content.

        Returns:
            True on success. False for session scope or on any I/O or
            import failure.
        """
        scope = Scope.parse(scope)
        if not scope.is_persistent:
            return False
        try:
            self._restore_snapshot(scope, content)
        except (OSError, AdapterError) as e:
            logger.error(f"Could not restore {scope.value} medium: {e}")
            return False
        logger.info(f"Restored {scope.value} medium ({self.describe_medium(scope)})")
        return True

    # Protocol

    def _mutate(
        self,
        name: str,
        value: str | None,
        scope: Scope | str,
        backup: bool,
        verify: bool,
        rollback_on_fail: bool,
    ) -> MutationResult:
        scope = Scope.parse(scope)
        name = self.normalize_name(name)
        action = "set" if value is not None else "unset"

        if not scope.is_persistent:
            previous = os.environ.get(name)
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
            return MutationResult(
                ok=True,
                scope=scope.value,
                name=name,
                previous=previous,
                new_value=value,
                verification=True,
                notes=["session only"],
            )

        medium = self.describe_medium(scope)
        result = MutationResult(ok=False, scope=scope.value, name=name, new_value=value)
        result.notes.append(medium)
        result.previous = self._read_value(name, scope)

        snapshot = self._snapshot(scope)

        if backup:
            if self.backup_store is None:
                result.notes.append("backup requested but no backup store configured")
            else:
                try:
                    result.backup_path = self.backup_store.create_backup(
                        scope.value, name, snapshot
                    )
                except OSError as e:
                    logger.error(f"Backup of {medium} failed, {action} {name} aborted: {e}")
                    result.notes.append(f"backup failed: {e}")
                    return result

        try:
            self._write_value(name, value, scope, snapshot)
        except (OSError, AdapterError) as e:
            logger.error(f"Could not {action} {name} in {medium}: {e}")
            result.verification = False
            result.notes.append(str(e))
            return result

        logger.info(f"{action} {name} ({scope.value}) written to {medium}")

        if not verify:
            result.ok = True
            return result

        result.verification = self._read_value(name, scope) == value
        result.ok = result.verification
        if result.verification:
            return result

        logger.warning(f"Verification of {action} {name} in {medium} failed")
        if rollback_on_fail and result.backup_path is not None:
            result.rollback = self._rollback(
                scope, name, result.previous, result.backup_path, snapshot
            )
            result.notes.append(
                "rolled back to " + result.backup_path.name
                if result.rollback
                else "rollback failed, medium left as written"
            )
        else:
            result.notes.append("verification failed, medium left as written")
        return result

    def _rollback(
        self,
        scope: Scope,
        name: str,
        previous: str | None,
        backup_path: Path,
        snapshot: str,
    ) -> bool:
        content = None
        if self.backup_store is not None:
            content = self.backup_store.read(backup_path.name)
        if content is None:
            content = snapshot
        try:
            self._restore_snapshot(scope, content)
        except (OSError, AdapterError) as e:
            logger.error(f"Rollback of {self.describe_medium(scope)} failed: {e}")
            return False
        logger.info(f"Rolled back {self.describe_medium(scope)} from {backup_path.name}")
        return True

    def _lookup_reference(self, reference: str, expand_across_scopes: bool) -> str:
        value = os.environ.get(reference)
        if value is None and expand_across_scopes:
            for scope in (Scope.USER, Scope.SYSTEM):
                value = self._read_value(reference, scope)
                if value is not None:
                    break
        return value or ""

    # Medium hooks

    @abstractmethod
    def describe_medium(self, scope: Scope) -> str:
        """Human readable location of a scope's medium."""

    @abstractmethod
    def _read_value(self, name: str, scope: Scope) -> str | None:
        """Read one variable from a persistent medium. Absent media yield None."""

    @abstractmethod
    def _snapshot(self, scope: Scope) -> str:
        """Return the full medium content, or "" if it cannot be read."""

    @abstractmethod
    def _write_value(self, name: str, value: str | None, scope: Scope, snapshot: str) -> None:
        """Write (or remove, when ``value`` is None) one variable."""

    @abstractmethod
    def _restore_snapshot(self, scope: Scope, content: str) -> None:
        """Replace the medium wholesale with snapshot content."""
