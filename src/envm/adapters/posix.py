"""
POSIX adapter.

User scope lives in a managed block of the user's profile file::

    # envm-begin
    export EDITOR='vim'
    # envm-end

Everything outside the block is preserved verbatim. System scope is a flat
``NAME='value'`` file, ``/etc/environment`` by default.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path

from envm.adapters.base import AdapterError, PlatformAdapter, Scope
from envm.backup.store import FILE_ERRORS, BackupStore

logger = logging.getLogger(__name__)

MANAGED_BEGIN = "# envm-begin"
MANAGED_END = "# envm-end"
DEFAULT_SYSTEM_ENV_FILE = Path("/etc/environment")

MANAGED_BLOCK_PATTERN = re.compile(r"# envm-begin\n(.*?)# envm-end", re.DOTALL)
EXPORT_LINE_PATTERN = re.compile(r"^\s*export\s+(\w+)=(.*)$")
ASSIGNMENT_LINE_PATTERN = re.compile(r"^\s*(?:export\s+)?(\w+)=(.*)$")


def quote(value: str) -> str:
    """Single-quote a value for a shell assignment."""
    return "'" + value.replace("'", "'\\''") + "'"


def unquote(text: str) -> str:
    """Undo ``quote``. Double-quoted and bare values are accepted as well."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1].replace("'\\''", "'")
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


def render_profile(content: str, name: str, value: str | None) -> str:
    """
    Rewrite the managed block of a profile with one variable changed.

    Args:
        content: Current profile content.
        name: Variable to set or remove.
        value: New value, or None to remove the entry.

    Returns:
        New profile content. A block is appended when none exists and a
        value is being set.
    """
    match = MANAGED_BLOCK_PATTERN.search(content)
    if match is None and value is None:
        return content

    lines = match.group(1).split("\n") if match else []
    entry = f"export {name}={quote(value)}" if value is not None else None

    kept: list[str] = []
    found = False
    for line in lines:
        line_match = EXPORT_LINE_PATTERN.match(line)
        if line_match and line_match.group(1) == name:
            if entry is not None and not found:
                kept.append(entry)
            found = True
            continue
        if line:
            kept.append(line)
    if entry is not None and not found:
        kept.append(entry)

    block = "\n".join([MANAGED_BEGIN, *kept, MANAGED_END])
    if match:
        return content[: match.start()] + block + content[match.end():]

    separator = "" if not content or content.endswith("\n") else "\n"
    return f"{content}{separator}{block}\n"


def render_system_env(content: str, name: str, value: str | None) -> str:
    """Rewrite a ``NAME='value'`` file with one variable changed."""
    lines = content.split("\n")
    entry = f"{name}={quote(value)}" if value is not None else None

    kept: list[str] = []
    found = False
    for line in lines:
        line_match = ASSIGNMENT_LINE_PATTERN.match(line)
        if line_match and line_match.group(1) == name:
            if entry is not None and not found:
                kept.append(entry)
            found = True
            continue
        kept.append(line)

    if entry is not None and not found:
        # Keep the trailing newline, if any, after the new entry.
        if kept and kept[-1] == "":
            kept.insert(len(kept) - 1, entry)
        else:
            kept.append(entry)
    return "\n".join(kept)


class PosixAdapter(PlatformAdapter):
    """Adapter for Linux, macOS and other POSIX hosts."""

    platform_name = "posix"
    delimiter = ":"
    case_insensitive = False
    reference_pattern = re.compile(r"\$(\w+)|\$\{(\w+)\}")

    def __init__(
        self,
        backup_store: BackupStore | None = None,
        profile_path: str | Path | None = None,
        system_env_path: str | Path | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            backup_store: Store used for pre-mutation snapshots.
            profile_path: User profile file (default: ``~/.profile``).
            system_env_path: System environment file
                (default: ``/etc/environment``).
        """
        super().__init__(backup_store)
        self._profile_path = Path(profile_path).expanduser() if profile_path else None
        self.system_env_path = (
            Path(system_env_path).expanduser() if system_env_path else DEFAULT_SYSTEM_ENV_FILE
        )

    @property
    def profile_path(self) -> Path:
        """Profile file holding the managed block."""
        if self._profile_path is not None:
            return self._profile_path
        return Path.home() / ".profile"

    def medium_path(self, scope: Scope) -> Path:
        if scope is Scope.USER:
            return self.profile_path
        if scope is Scope.SYSTEM:
            return self.system_env_path
        raise AdapterError(f"{scope.value} scope has no file medium")

    def describe_medium(self, scope: Scope) -> str:
        return str(self.medium_path(scope))

    def _read_file(self, path: Path) -> str | None:
        try:
            with open(path, encoding="utf-8", errors=FILE_ERRORS) as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            return None

    def _write_file(self, path: Path, content: str) -> None:
        # Write beside the real file and swap it in; symlinked dotfiles
        # keep their link.
        target = path.resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.envm-tmp")
        try:
            with open(temp_path, "w", encoding="utf-8", errors=FILE_ERRORS) as f:
                f.write(content)
            if target.exists():
                shutil.copymode(target, temp_path)
            os.replace(temp_path, target)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def _read_value(self, name: str, scope: Scope) -> str | None:
        content = self._read_file(self.medium_path(scope))
        if content is None:
            return None

        if scope is Scope.USER:
            match = MANAGED_BLOCK_PATTERN.search(content)
            if match is None:
                return None
            lines = match.group(1).split("\n")
            pattern = EXPORT_LINE_PATTERN
        else:
            lines = content.split("\n")
            pattern = ASSIGNMENT_LINE_PATTERN

        for line in lines:
            line_match = pattern.match(line)
            if line_match and line_match.group(1) == name:
                return unquote(line_match.group(2))
        return None

    def _snapshot(self, scope: Scope) -> str:
        return self._read_file(self.medium_path(scope)) or ""

    def _write_value(self, name: str, value: str | None, scope: Scope, snapshot: str) -> None:
        if value is not None and ("\n" in value or "\r" in value):
            raise AdapterError(f"Value for {name} contains a line break")
        if scope is Scope.USER:
            content = render_profile(snapshot, name, value)
        else:
            content = render_system_env(snapshot, name, value)
        if content == snapshot:
            logger.debug("%s already up to date", self.medium_path(scope))
            return
        self._write_file(self.medium_path(scope), content)

    def _restore_snapshot(self, scope: Scope, content: str) -> None:
        self._write_file(self.medium_path(scope), content)
