"""
Encryption toggle engine.

Bulk-converts every record of a credential store between plaintext and
ciphertext when config encryption is switched on or off. Each value gets its
own salt, so every conversion pays for one key derivation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from credkeep.credentials import crypto
from credkeep.credentials.models import CryptoError
from credkeep.credentials.store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Counts from a bulk conversion."""

    converted: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def success(self) -> bool:
        return self.failed == 0


def encrypt_all(store: CredentialStore) -> ConversionResult:
    """
    Encrypt every plaintext record of the store in place.

    Raises:
        MasterPasswordRequiredError: If the store has no master password.
    """
    password = store.master.require()
    result = ConversionResult()

    for record in store.list():
        if crypto.looks_encrypted(record.stored_value):
            result.skipped += 1
            continue
        try:
            store.put(record.network, record.context, crypto.encrypt(record.stored_value, password))
            result.converted += 1
            logger.debug("Encrypted %s for %s", record.context.value, record.network)
        except CryptoError as e:
            result.failed += 1
            logger.warning(
                "Failed to encrypt %s for %s: %s", record.context.value, record.network, e
            )

    logger.info(
        "Encrypted %d credentials (%d already encrypted, %d failed)",
        result.converted,
        result.skipped,
        result.failed,
    )
    return result


def decrypt_all(store: CredentialStore) -> ConversionResult:
    """
    Decrypt every ciphertext record of the store in place.

    Records that cannot be decrypted keep their ciphertext.

    Raises:
        MasterPasswordRequiredError: If the store has no master password.
    """
    password = store.master.require()
    result = ConversionResult()

    for record in store.list():
        if not crypto.looks_encrypted(record.stored_value):
            result.skipped += 1
            continue
        try:
            store.put(record.network, record.context, crypto.decrypt(record.stored_value, password))
            result.converted += 1
            logger.debug("Decrypted %s for %s", record.context.value, record.network)
        except CryptoError:
            result.failed += 1
            logger.warning("Failed to decrypt %s for %s", record.context.value, record.network)

    logger.info(
        "Decrypted %d credentials (%d already plaintext, %d failed)",
        result.converted,
        result.skipped,
        result.failed,
    )
    return result
