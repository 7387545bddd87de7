"""
Platform adapters for envm.

``select_adapter`` picks the POSIX or Windows adapter once, from the host
OS, so callers never branch on the platform themselves.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from envm.adapters.base import (
    AdapterError,
    InvalidScopeError,
    MutationResult,
    PlatformAdapter,
    Scope,
)
from envm.adapters.posix import PosixAdapter
from envm.adapters.windows import RegistryError, WindowsAdapter
from envm.backup.store import BackupStore

if TYPE_CHECKING:
    from envm.config.settings import Settings

PLATFORMS = ("posix", "win")


def detect_platform() -> str:
    """Return ``"win"`` on Windows hosts and ``"posix"`` everywhere else."""
    return "win" if os.name == "nt" else "posix"


def select_adapter(
    backup_store: BackupStore | None = None,
    settings: Settings | None = None,
    platform_name: str | None = None,
) -> PlatformAdapter:
    """
    Build the adapter for the host platform.

    Args:
        backup_store: Store handed to the adapter for snapshots.
        settings: Loaded settings; supplies the POSIX file locations.
        platform_name: Force ``"posix"`` or ``"win"`` instead of detecting.

    Returns:
        A PosixAdapter or WindowsAdapter.
    """
    platform_name = platform_name or detect_platform()
    if platform_name not in PLATFORMS:
        raise ValueError(f"Unknown platform: {platform_name}")

    if platform_name == "win":
        return WindowsAdapter(backup_store)

    profile_path = settings.posix.profile_path if settings else None
    system_env_path = settings.posix.system_env_path if settings else None
    return PosixAdapter(
        backup_store,
        profile_path=profile_path or None,
        system_env_path=system_env_path or None,
    )


__all__ = [
    "AdapterError",
    "InvalidScopeError",
    "MutationResult",
    "PlatformAdapter",
    "PosixAdapter",
    "RegistryError",
    "Scope",
    "WindowsAdapter",
    "detect_platform",
    "select_adapter",
]
