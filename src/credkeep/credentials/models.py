"""
Data models for credential management.

Defines the credential contexts, storage modes, the in-memory credential
record, and the exception hierarchy shared by the credentials package.

Design Decisions:
    - Network identifiers compare case-insensitively (ASCII casefold)
    - A record never tracks whether its value is encrypted; callers look
      at the value's shape (see crypto.looks_encrypted)
    - Every context maps to exactly one field name and one section of the
      external credentials file; the tables below are checked for
      completeness at import time
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class CredentialError(Exception):
    """Base exception for credential-related errors."""

    pass


class CryptoError(CredentialError):
    """Raised when a value cannot be encrypted or decrypted."""

    pass


class EncryptionError(CryptoError):
    """Raised when encryption fails (random source, key derivation, cipher)."""

    pass


class DecryptionError(CryptoError):
    """
    Raised when decryption fails.

    Malformed input and a wrong master password both surface as this
    error; the two cases are deliberately indistinguishable.
    """

    pass


class MasterPasswordRequiredError(CredentialError):
    """Raised when an operation needs the master password and none is set."""

    pass


class ExternalFileError(CredentialError):
    """Raised when the external credentials file cannot be read or written."""

    pass


class MigrationError(CredentialError):
    """Raised when credentials cannot be moved between storage locations."""

    pass


class StorageMode(Enum):
    """Where credential-bearing fields live."""

    CONFIG = "config"
    EXTERNAL = "external"

    @classmethod
    def parse(cls, value: str) -> StorageMode:
        """
        Parse a storage mode setting value.

        Anything other than "external" (case-insensitive) selects CONFIG,
        matching how the chat client reads the setting.
        """
        if value.strip().lower() == cls.EXTERNAL.value:
            return cls.EXTERNAL
        return cls.CONFIG


class CredentialSection(Enum):
    """Sections of the external credentials file."""

    SERVERS = "servers"
    CHATNETS = "chatnets"
    PROXIES = "proxies"


class CredentialContext(Enum):
    """Category of a stored credential."""

    SERVER_PASSWORD = "server_password"
    SASL_USERNAME = "sasl_username"
    SASL_PASSWORD = "sasl_password"
    PROXY_PASSWORD = "proxy_password"
    OPER_PASSWORD = "oper_password"
    TLS_PASS = "tls_pass"
    AUTOSENDCMD = "autosendcmd"

    @property
    def field_name(self) -> str:
        """Configuration key that holds this credential."""
        return _FIELD_NAMES[self]

    @property
    def section(self) -> CredentialSection:
        """External file section this credential is written to."""
        return _SECTIONS[self]


_FIELD_NAMES: dict[CredentialContext, str] = {
    CredentialContext.SERVER_PASSWORD: "password",
    CredentialContext.SASL_USERNAME: "sasl_username",
    CredentialContext.SASL_PASSWORD: "sasl_password",
    CredentialContext.PROXY_PASSWORD: "password",
    CredentialContext.OPER_PASSWORD: "oper_password",
    CredentialContext.TLS_PASS: "tls_pass",
    CredentialContext.AUTOSENDCMD: "autosendcmd",
}

_SECTIONS: dict[CredentialContext, CredentialSection] = {
    CredentialContext.SERVER_PASSWORD: CredentialSection.SERVERS,
    CredentialContext.SASL_USERNAME: CredentialSection.CHATNETS,
    CredentialContext.SASL_PASSWORD: CredentialSection.CHATNETS,
    CredentialContext.PROXY_PASSWORD: CredentialSection.PROXIES,
    CredentialContext.OPER_PASSWORD: CredentialSection.SERVERS,
    CredentialContext.TLS_PASS: CredentialSection.SERVERS,
    CredentialContext.AUTOSENDCMD: CredentialSection.CHATNETS,
}

if set(_FIELD_NAMES) != set(CredentialContext) or set(_SECTIONS) != set(CredentialContext):
    raise RuntimeError("Every CredentialContext needs a field name and a section")


def context_to_string(context: CredentialContext) -> str:
    """Return the canonical name of a credential context."""
    return context.value


def string_to_context(name: str) -> CredentialContext:
    """
    Look up a credential context by name (case-insensitive).

    Raises:
        ValueError: If the name is not a known context.
    """
    try:
        return CredentialContext(name.strip().lower())
    except ValueError:
        valid = ", ".join(c.value for c in CredentialContext)
        raise ValueError(
            f"Unknown credential context: {name}. Must be one of: {valid}"
        ) from None


def storage_mode_to_string(mode: StorageMode) -> str:
    return mode.value


def context_for_field(section: CredentialSection, field_name: str) -> CredentialContext:
    """
    Return the context stored under ``field_name`` in a section.

    Raises:
        ValueError: If the section has no such credential field.
    """
    for context in CredentialContext:
        if context.section is section and context.field_name == field_name:
            return context
    raise ValueError(f"No credential field {field_name} in {section.value}")


def network_key(network: str) -> str:
    """Normalize a network identifier for case-insensitive comparison."""
    return network.lower()


@dataclass
class CredentialRecord:
    """
    A single stored credential.

    Attributes:
        network: Network or server identifier, compared case-insensitively.
        context: What kind of credential this is.
        stored_value: Plaintext or serialized ciphertext, stored as-is.
    """

    network: str
    context: CredentialContext
    stored_value: str

    def matches(self, network: str, context: CredentialContext) -> bool:
        """Check whether this record is the one keyed by (network, context)."""
        return self.context is context and network_key(self.network) == network_key(network)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (the stored value is included as-is)."""
        return {
            "network": self.network,
            "context": self.context.value,
            "stored_value": self.stored_value,
        }
