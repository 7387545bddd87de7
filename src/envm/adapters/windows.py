"""
Windows adapter.

Persistent scopes are registry keys, accessed by shelling out to ``reg.exe``:

- user: ``HKCU\\Environment``
- system: ``HKLM\\SYSTEM\\CurrentControlSet\\Control\\Session Manager\\Environment``

Snapshots are full ``reg export`` dumps of the key and are replayed with
``reg import``. Variable names are uppercased before every operation.
"""

from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envm.adapters.base import AdapterError, PlatformAdapter, Scope
from envm.backup.store import BackupStore

logger = logging.getLogger(__name__)

USER_KEY = r"HKCU\Environment"
SYSTEM_KEY = r"HKLM\SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

REGISTRY_KEYS = {
    Scope.USER: USER_KEY,
    Scope.SYSTEM: SYSTEM_KEY,
}

# "    PATH    REG_EXPAND_SZ    C:\Windows"; columns are separated by four
# spaces, so leading and trailing blanks of the value are kept.
QUERY_LINE_PATTERN = re.compile(r"^\s+(.+?)    (REG_[A-Z_]+)(?:    (.*))?$")

# reg.exe writes exports as UTF-16 with a BOM
EXPORT_ENCODING = "utf-16"

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class RegistryError(AdapterError):
    """Raised when a reg.exe invocation fails or exits nonzero."""

    pass


class WindowsAdapter(PlatformAdapter):
    """Adapter for Windows hosts."""

    platform_name = "win"
    delimiter = ";"
    case_insensitive = True
    reference_pattern = re.compile(r"%([A-Za-z0-9_]+)%")

    def __init__(
        self,
        backup_store: BackupStore | None = None,
        runner: Runner | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            backup_store: Store used for pre-mutation snapshots.
            runner: Callable with the ``subprocess.run`` signature used to
                invoke reg.exe. Defaults to ``subprocess.run``.
        """
        super().__init__(backup_store)
        self._run = runner or subprocess.run

    def normalize_name(self, name: str) -> str:
        return name.upper()

    def registry_key(self, scope: Scope) -> str:
        try:
            return REGISTRY_KEYS[scope]
        except KeyError:
            raise AdapterError(f"{scope.value} scope has no registry key") from None

    def describe_medium(self, scope: Scope) -> str:
        return self.registry_key(scope)

    def _reg(self, *args: str) -> subprocess.CompletedProcess[Any]:
        """Run ``reg`` with ``args``. Nonzero exit codes raise RegistryError."""
        command = ["reg", *args]
        try:
            completed = self._run(command, capture_output=True, text=True)
        except (OSError, subprocess.SubprocessError) as e:
            raise RegistryError(f"reg {args[0]} could not be run: {e}") from e
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise RegistryError(
                f"reg {args[0]} exited with code {completed.returncode}: {detail}"
            )
        return completed

    def _read_value(self, name: str, scope: Scope) -> str | None:
        try:
            completed = self._reg("query", self.registry_key(scope), "/v", name)
        except RegistryError as e:
            logger.debug("Registry query for %s returned nothing: %s", name, e)
            return None

        for line in (completed.stdout or "").splitlines():
            match = QUERY_LINE_PATTERN.match(line)
            if match and match.group(1).upper() == name:
                return (match.group(3) or "").rstrip("\r\n")
        return None

    def _snapshot(self, scope: Scope) -> str:
        key = self.registry_key(scope)
        with tempfile.TemporaryDirectory(prefix="envm-") as temp_dir:
            export_path = Path(temp_dir) / "export.reg"
            try:
                self._reg("export", key, str(export_path), "/y")
                return export_path.read_text(encoding=EXPORT_ENCODING)
            except (OSError, UnicodeError, RegistryError) as e:
                logger.warning(f"Could not export {key}: {e}")
                return ""

    def _write_value(self, name: str, value: str | None, scope: Scope, snapshot: str) -> None:
        key = self.registry_key(scope)
        if value is None:
            try:
                self._reg("delete", key, "/v", name, "/f")
            except RegistryError:
                # Deleting a value that is already gone is not a failure.
                if self._read_value(name, scope) is not None:
                    raise
            return

        value_type = "REG_EXPAND_SZ" if "%" in value else "REG_SZ"
        self._reg("add", key, "/v", name, "/t", value_type, "/d", value, "/f")

    def _restore_snapshot(self, scope: Scope, content: str) -> None:
        if not content.strip():
            raise RegistryError(f"Empty registry snapshot for {self.registry_key(scope)}")
        with tempfile.TemporaryDirectory(prefix="envm-") as temp_dir:
            import_path = Path(temp_dir) / "restore.reg"
            try:
                import_path.write_text(content, encoding=EXPORT_ENCODING)
            except UnicodeError as e:
                raise RegistryError(f"Snapshot cannot be encoded for reg import: {e}") from e
            self._reg("import", str(import_path))

    def _rollback(
        self,
        scope: Scope,
        name: str,
        previous: str | None,
        backup_path: Path,
        snapshot: str,
    ) -> bool:
        # reg import merges into the key, so a value that did not exist
        # before the mutation has to be deleted explicitly.
        if not super()._rollback(scope, name, previous, backup_path, snapshot):
            return False
        if previous is None and self._read_value(name, scope) is not None:
            try:
                self._reg("delete", self.registry_key(scope), "/v", name, "/f")
            except RegistryError as e:
                logger.error(f"Rollback could not remove {name}: {e}")
                return False
        return True
