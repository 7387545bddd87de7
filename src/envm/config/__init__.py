"""
Configuration management for envm.

This module handles loading, validating, and saving configuration settings.
"""

from envm.config.settings import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    BackupConfig,
    ConfigurationError,
    MutationConfig,
    PosixConfig,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "BackupConfig",
    "PosixConfig",
    "MutationConfig",
    "load_config",
    "save_config",
    "get_config_path",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
]
