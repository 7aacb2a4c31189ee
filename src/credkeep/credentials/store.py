"""
In-memory credential store.

Holds one record per (network, context) pair. Values are kept exactly as
they will be persisted: plaintext, or serialized ciphertext when encryption
is enabled and a master password is available.

Failure policy:
    - set() never refuses a value because the master password is missing;
      the value is stored in plaintext and a warning is logged. Availability
      wins over confidentiality here, and the caller is expected to surface
      the warning to the user.
    - get() returns None (with a logged reason) when a ciphertext cannot be
      decrypted, instead of returning the ciphertext.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from credkeep.credentials import crypto
from credkeep.credentials.master import MasterPassword
from credkeep.credentials.models import (
    CredentialContext,
    CredentialRecord,
    CryptoError,
)

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Collection of credential records keyed by (network, context).

    Usage:
        master = MasterPassword()
        store = CredentialStore(master)
        store.set("irc.example.org", CredentialContext.SASL_PASSWORD, "hunter2", encrypt=True)
        password = store.get("irc.example.org", CredentialContext.SASL_PASSWORD)

    Attributes:
        master: Master password used for encryption and decryption.
    """

    def __init__(self, master: MasterPassword) -> None:
        self.master = master
        self._records: list[CredentialRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def find(self, network: str, context: CredentialContext) -> CredentialRecord | None:
        """Return the record for (network, context), or None."""
        for record in self._records:
            if record.matches(network, context):
                return record
        return None

    def set(
        self,
        network: str,
        context: CredentialContext,
        value: str,
        encrypt: bool = False,
    ) -> bool:
        """
        Store a credential, replacing any previous value for the same key.

        Args:
            network: Network or server identifier.
            context: Credential category.
            value: Plaintext, or an already serialized ciphertext.
            encrypt: Whether encryption is enabled. Values already in
                ciphertext shape are stored as-is.

        Returns:
            True if stored. False only if encryption was attempted and
            failed; the previous value is kept in that case.
        """
        if not network:
            raise ValueError("Network name cannot be empty")

        stored = value
        if encrypt and not crypto.looks_encrypted(value):
            if not self.master.is_set():
                logger.warning(
                    "Encryption is ON but master password not set. "
                    "Storing %s for %s in plaintext.",
                    context.value,
                    network,
                )
            else:
                try:
                    stored = crypto.encrypt(value, self.master.require())
                except CryptoError as e:
                    logger.warning(
                        "Failed to encrypt %s for %s: %s", context.value, network, e
                    )
                    return False

        self.put(network, context, stored)
        return True

    def put(self, network: str, context: CredentialContext, stored_value: str) -> None:
        """Store a value as-is, without any encryption decision."""
        record = self.find(network, context)
        if record is None:
            self._records.append(CredentialRecord(network, context, stored_value))
        else:
            record.stored_value = stored_value

    def get(self, network: str, context: CredentialContext) -> str | None:
        """
        Retrieve a credential in plaintext.

        Returns:
            The plaintext value, or None if there is no such record or the
            stored ciphertext cannot be decrypted.
        """
        record = self.find(network, context)
        if record is None:
            return None

        if not crypto.looks_encrypted(record.stored_value):
            return record.stored_value

        if not self.master.is_set():
            logger.warning(
                "Credential for %s (%s) is encrypted but no master password set",
                network,
                context.value,
            )
            return None

        try:
            return crypto.decrypt(record.stored_value, self.master.require())
        except CryptoError:
            logger.warning("Failed to decrypt credential for %s (%s)", network, context.value)
            return None

    def get_stored(self, network: str, context: CredentialContext) -> str | None:
        """Return the raw stored value (plaintext or ciphertext) for a key."""
        record = self.find(network, context)
        return record.stored_value if record is not None else None

    def remove(self, network: str, context: CredentialContext) -> bool:
        """
        Remove a credential.

        Returns:
            True if a record was removed.
        """
        record = self.find(network, context)
        if record is None:
            return False
        self._records.remove(record)
        return True

    def list(self) -> list[CredentialRecord]:
        """Return copies of all records, in insertion order."""
        return [replace(record) for record in self._records]

    def replace_all(self, records: Iterable[CredentialRecord]) -> None:
        """Drop every record and load ``records`` as-is (later keys win)."""
        self._records = []
        for record in records:
            self.put(record.network, record.context, record.stored_value)

    def clear(self) -> None:
        self._records = []
