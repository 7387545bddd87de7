"""
Configuration settings management for envm.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.envm/config.yaml by default, with the
path overridable via the ENVM_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".envm"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass
class BackupConfig:
    """Snapshot and retention settings."""

    enabled: bool = True
    # Empty means <working directory>/.backup/.envm-backups
    dir: str = ""
    max_per_scope: int = 20
    max_age_days: int = 30
    purge_on_exit: bool = True


@dataclass
class PosixConfig:
    """File locations used by the POSIX adapter."""

    # Empty means ~/.profile
    profile_path: str = ""
    system_env_path: str = "/etc/environment"


@dataclass
class MutationConfig:
    """Defaults applied to set and unset."""

    verify: bool = True
    rollback_on_fail: bool = True


@dataclass
class Settings:
    """
    Complete envm configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with ENVM_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Snapshot directory and retention policy.
        posix: Profile and system environment file locations.
        mutation: Default verify/rollback behaviour.
    """

    log_level: str = "WARNING"

    backup: BackupConfig = field(default_factory=BackupConfig)
    posix: PosixConfig = field(default_factory=PosixConfig)
    mutation: MutationConfig = field(default_factory=MutationConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from ENVM_CONFIG environment variable if set,
    otherwise returns the default path (~/.envm/config.yaml).
    """
    env_path = os.environ.get("ENVM_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.
    A missing file is not an error; defaults are used.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses ENVM_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigurationError(f"Invalid boolean value: {value}")


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid integer value: {value}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    envm_data = data.get("envm") or {}
    if "log_level" in envm_data:
        settings.log_level = str(envm_data["log_level"]).upper()

    backup = data.get("backup") or {}
    if "enabled" in backup:
        settings.backup.enabled = _to_bool(backup["enabled"])
    if "dir" in backup:
        settings.backup.dir = str(backup["dir"] or "")
    if "max_per_scope" in backup:
        settings.backup.max_per_scope = _to_int(backup["max_per_scope"])
    if "max_age_days" in backup:
        settings.backup.max_age_days = _to_int(backup["max_age_days"])
    if "purge_on_exit" in backup:
        settings.backup.purge_on_exit = _to_bool(backup["purge_on_exit"])

    posix = data.get("posix") or {}
    if "profile_path" in posix:
        settings.posix.profile_path = str(posix["profile_path"] or "")
    if "system_env_path" in posix:
        settings.posix.system_env_path = str(posix["system_env_path"] or "")

    mutation = data.get("mutation") or {}
    if "verify" in mutation:
        settings.mutation.verify = _to_bool(mutation["verify"])
    if "rollback_on_fail" in mutation:
        settings.mutation.rollback_on_fail = _to_bool(mutation["rollback_on_fail"])

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "ENVM_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "ENVM_BACKUP_DIR": ("backup.dir", str),
        "ENVM_BACKUP_ENABLED": ("backup.enabled", _to_bool),
        "ENVM_MAX_PER_SCOPE": ("backup.max_per_scope", _to_int),
        "ENVM_MAX_AGE_DAYS": ("backup.max_age_days", _to_int),
        "ENVM_PROFILE": ("posix.profile_path", str),
        "ENVM_SYSTEM_ENV_FILE": ("posix.system_env_path", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.backup.max_per_scope < 0:
        raise ConfigurationError("backup.max_per_scope must not be negative")

    if settings.backup.max_age_days < 0:
        raise ConfigurationError("backup.max_age_days must not be negative")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "envm": {
            "log_level": settings.log_level,
        },
        "backup": {
            "enabled": settings.backup.enabled,
            "dir": settings.backup.dir,
            "max_per_scope": settings.backup.max_per_scope,
            "max_age_days": settings.backup.max_age_days,
            "purge_on_exit": settings.backup.purge_on_exit,
        },
        "posix": {
            "profile_path": settings.posix.profile_path,
            "system_env_path": settings.posix.system_env_path,
        },
        "mutation": {
            "verify": settings.mutation.verify,
            "rollback_on_fail": settings.mutation.rollback_on_fail,
        },
    }
