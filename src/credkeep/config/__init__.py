"""
Configuration management for credkeep.

This module handles the main configuration document (the chat client's
server, network and proxy definitions) and the credential settings stored
inside it.
"""

from credkeep.config.document import ConfigDocument
from credkeep.config.settings import (
    ConfigurationError,
    Settings,
    apply_setting,
    get_config_path,
    get_state_dir,
    load_config,
    save_config,
)

__all__ = [
    # Document
    "ConfigDocument",
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "apply_setting",
    "get_state_dir",
    "get_config_path",
    "ConfigurationError",
]
