"""
Configuration settings management for credkeep.

Credential settings live in the ``settings.credentials`` section of the main
configuration document (``~/.credkeep/config.yaml`` by default), next to the
server and network definitions they protect. Environment variables prefixed
with CREDKEEP_ override the file.

The state directory is ~/.credkeep, overridable via the CREDKEEP_HOME
environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

# Default state directory
DEFAULT_STATE_DIR = Path.home() / ".credkeep"
CONFIG_FILE_NAME = "config.yaml"
DEFAULT_EXTERNAL_FILE = ".credentials"

SETTINGS_SECTION = "settings"
CREDENTIALS_SECTION = "credentials"

# Setting names as seen by the user (/SET name value)
STORAGE_MODE_SETTING = "credential_storage_mode"
EXTERNAL_FILE_SETTING = "credential_external_file"
CONFIG_ENCRYPT_SETTING = "credential_config_encrypt"

_TRUE_WORDS = {"on", "true", "yes", "1"}
_FALSE_WORDS = {"off", "false", "no", "0"}


@dataclass
class Settings:
    """
    Complete credkeep configuration settings.

    Attributes:
        storage_mode: Where credentials are stored ("config" or "external").
        external_file: External credentials file, relative to the state
            directory unless absolute.
        config_encrypt: Whether credentials are encrypted at rest.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
    """

    storage_mode: str = "config"
    external_file: str = DEFAULT_EXTERNAL_FILE
    config_encrypt: bool = False
    log_level: str = "INFO"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_state_dir() -> Path:
    """
    Get the state directory.

    Returns the path from CREDKEEP_HOME environment variable if set,
    otherwise returns the default path (~/.credkeep).
    """
    env_path = os.environ.get("CREDKEEP_HOME")
    if env_path:
        return Path(env_path)
    return DEFAULT_STATE_DIR


def get_config_path(state_dir: Path | None = None) -> Path:
    """Get the main configuration file path."""
    return (state_dir or get_state_dir()) / CONFIG_FILE_NAME


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load credential settings from the main configuration file.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses CREDKEEP_HOME or the default state directory.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

    return settings_from_dict(data)


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Write credential settings into the main configuration file.

    Other sections of the file (servers, chatnets, ...) are preserved and
    the file is replaced atomically. No document hooks run, so credential
    fields are written exactly as they are stored.

    Raises:
        ConfigurationError: If the configuration cannot be read or written.
    """
    from credkeep.config.document import ConfigDocument

    if config_path is None:
        config_path = get_config_path()

    doc = ConfigDocument(config_path)
    doc.parse(run_hooks=False)
    store_settings(doc.data, settings)
    doc.write(run_hooks=False)


def settings_from_dict(data: dict[str, Any]) -> Settings:
    """Build validated Settings from a parsed configuration document."""
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    settings = _apply_config_data(Settings(), data)
    settings = _apply_environment_overrides(settings)
    _validate_config(settings)
    return settings


def store_settings(data: dict[str, Any], settings: Settings) -> None:
    """Write Settings into the ``settings.credentials`` section of a document."""
    section = data.setdefault(SETTINGS_SECTION, {})
    if not isinstance(section, dict):
        section = data[SETTINGS_SECTION] = {}
    section[CREDENTIALS_SECTION] = _settings_to_dict(settings)


def apply_setting(settings: Settings, name: str, value: Any) -> None:
    """
    Change one setting by its user-facing name.

    Args:
        settings: Settings to modify in place.
        name: One of credential_storage_mode, credential_external_file,
            credential_config_encrypt (case-insensitive).
        value: New value; strings are converted to the setting's type.

    Raises:
        ConfigurationError: If the name is unknown or the value is invalid.
    """
    key = name.strip().lower()
    candidate = replace(settings)
    if key == STORAGE_MODE_SETTING:
        candidate.storage_mode = str(value).strip().lower()
    elif key == EXTERNAL_FILE_SETTING:
        candidate.external_file = str(value).strip()
    elif key == CONFIG_ENCRYPT_SETTING:
        candidate.config_encrypt = parse_bool(value)
    else:
        raise ConfigurationError(f"Unknown setting: {name}")

    _validate_config(candidate)
    for f in fields(Settings):
        setattr(settings, f.name, getattr(candidate, f.name))


def parse_bool(value: Any) -> bool:
    """Convert an on/off style value to bool."""
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value}. Use ON or OFF.")


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    section = data.get(SETTINGS_SECTION)
    credentials = section.get(CREDENTIALS_SECTION) if isinstance(section, dict) else None
    if not isinstance(credentials, dict):
        return settings

    if STORAGE_MODE_SETTING in credentials:
        settings.storage_mode = str(credentials[STORAGE_MODE_SETTING]).lower()
    if EXTERNAL_FILE_SETTING in credentials:
        settings.external_file = str(credentials[EXTERNAL_FILE_SETTING])
    if CONFIG_ENCRYPT_SETTING in credentials:
        settings.config_encrypt = parse_bool(credentials[CONFIG_ENCRYPT_SETTING])
    if "log_level" in credentials:
        settings.log_level = str(credentials["log_level"]).upper()

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "CREDKEEP_STORAGE_MODE": ("storage_mode", str.lower),
        "CREDKEEP_EXTERNAL_FILE": ("external_file", str),
        "CREDKEEP_CONFIG_ENCRYPT": ("config_encrypt", parse_bool),
        "CREDKEEP_LOG_LEVEL": ("log_level", str.upper),
    }

    for env_var, (attr, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            setattr(settings, attr, converter(value))

    return settings


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_modes = {"config", "external"}
    if settings.storage_mode not in valid_modes:
        raise ConfigurationError(
            f"Invalid {STORAGE_MODE_SETTING}: {settings.storage_mode}. "
            f"Must be one of: {', '.join(sorted(valid_modes))}"
        )

    if not settings.external_file:
        raise ConfigurationError(f"{EXTERNAL_FILE_SETTING} cannot be empty")

    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        STORAGE_MODE_SETTING: settings.storage_mode,
        EXTERNAL_FILE_SETTING: settings.external_file,
        CONFIG_ENCRYPT_SETTING: settings.config_encrypt,
        "log_level": settings.log_level,
    }
