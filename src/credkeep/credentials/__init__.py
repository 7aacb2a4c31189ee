"""
Credential storage and encryption.

This package holds the crypto primitives, the in-memory credential store,
the migration and encryption-toggle engines, the configuration hooks, and
the CredentialManager that ties them together.
"""

from credkeep.credentials.crypto import decrypt, encrypt, looks_encrypted
from credkeep.credentials.classifier import is_autosendcmd_sensitive, is_sensitive_field
from credkeep.credentials.manager import CredentialManager
from credkeep.credentials.master import MasterPassword
from credkeep.credentials.migration import MigrationResult
from credkeep.credentials.models import (
    CredentialContext,
    CredentialError,
    CredentialRecord,
    CryptoError,
    DecryptionError,
    EncryptionError,
    ExternalFileError,
    MasterPasswordRequiredError,
    MigrationError,
    StorageMode,
    context_to_string,
    storage_mode_to_string,
    string_to_context,
)
from credkeep.credentials.store import CredentialStore

__all__ = [
    # Manager
    "CredentialManager",
    "CredentialStore",
    "MasterPassword",
    "MigrationResult",
    # Models
    "CredentialContext",
    "CredentialRecord",
    "StorageMode",
    "context_to_string",
    "string_to_context",
    "storage_mode_to_string",
    # Crypto
    "encrypt",
    "decrypt",
    "looks_encrypted",
    # Classifier
    "is_sensitive_field",
    "is_autosendcmd_sensitive",
    # Errors
    "CredentialError",
    "CryptoError",
    "EncryptionError",
    "DecryptionError",
    "MasterPasswordRequiredError",
    "ExternalFileError",
    "MigrationError",
]
