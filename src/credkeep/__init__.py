"""
credkeep - credential management and at-rest encryption for a chat client

credkeep keeps the sensitive values of a chat client's configuration (server
passwords, SASL credentials, proxy passwords, operator passwords, TLS
passphrases and login auto-commands) either embedded in the main
configuration or in a separate owner-only file, and optionally encrypted
under a master password.

Key Features:
    - AES-256-CBC encryption with a per-value PBKDF2 salt
    - Migration between the main configuration and an external file
    - Bulk encryption/decryption when the encryption setting is toggled
    - Transparent encrypt-on-save and decrypt-on-load configuration hooks
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from credkeep.config.settings import Settings, load_config
from credkeep.credentials.manager import CredentialManager

__all__ = [
    "__version__",
    "CredentialManager",
    "Settings",
    "load_config",
]
