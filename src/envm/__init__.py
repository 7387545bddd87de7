"""
envm - cross-platform environment variable manager

Reads, sets and removes environment variables in three scopes:

    - session: the current process environment
    - user: a managed block in the user's profile (POSIX) or HKCU (Windows)
    - system: /etc/environment (POSIX) or the machine registry key (Windows)

Every persistent change is snapshotted first, verified by reading it back,
and rolled back to the snapshot when verification fails.
"""

__version__ = "0.3.0"

from envm.adapters.base import MutationResult, Scope
from envm.backup.store import BackupStore
from envm.config.settings import Settings, load_config
from envm.manager import EnvManager

__all__ = [
    "__version__",
    "EnvManager",
    "BackupStore",
    "MutationResult",
    "Scope",
    "Settings",
    "load_config",
]
