"""
Configuration hook adapters.

These functions walk the servers, chatnets and proxies sections of a raw
configuration document and rewrite credential-bearing fields in place:

    encrypt_document  - before save, encrypt every plaintext credential
    decrypt_document  - after load, decrypt every ciphertext credential
    strip_document    - remove credential fields entirely (external mode)

They depend only on the document's tree-walk API and never touch the
credential store. A field that fails to convert is left as it was and
counted, so one bad value never blocks a save or a load.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from credkeep.config.document import ConfigDocument
from credkeep.credentials import crypto
from credkeep.credentials.classifier import SECTION_FIELDS, credential_fields
from credkeep.credentials.master import MasterPassword
from credkeep.credentials.models import CryptoError

logger = logging.getLogger(__name__)


@dataclass
class HookResult:
    """Counts of fields changed and fields that could not be converted."""

    changed: int = 0
    failed: int = 0


def encrypt_document(document: ConfigDocument, master: MasterPassword) -> HookResult:
    """
    Encrypt every plaintext credential field of a document in place.

    Fields already in ciphertext shape are left untouched.
    """
    result = HookResult()
    password = master.require()

    for section in SECTION_FIELDS:
        for key, block in document.blocks(section):
            for name, value in credential_fields(section, block):
                if crypto.looks_encrypted(value):
                    continue
                try:
                    block[name] = crypto.encrypt(value, password)
                    result.changed += 1
                except CryptoError as e:
                    result.failed += 1
                    logger.warning(
                        "Failed to encrypt %s in %s%s: %s", name, section, _label(key, block), e
                    )

    return result


def decrypt_document(document: ConfigDocument, master: MasterPassword) -> HookResult:
    """
    Decrypt every ciphertext credential field of a document in place.

    Fields that cannot be decrypted (wrong password, corrupt data) are left
    as ciphertext.
    """
    result = HookResult()
    password = master.require()

    for section in SECTION_FIELDS:
        for key, block in document.blocks(section):
            for name, value in credential_fields(section, block):
                if not crypto.looks_encrypted(value):
                    continue
                try:
                    block[name] = crypto.decrypt(value, password)
                    result.changed += 1
                except CryptoError:
                    result.failed += 1
                    logger.warning(
                        "Failed to decrypt %s in %s%s", name, section, _label(key, block)
                    )

    return result


def strip_document(document: ConfigDocument) -> HookResult:
    """Remove every credential field from a document."""
    result = HookResult()

    for section in SECTION_FIELDS:
        for _, block in document.blocks(section):
            for name, _value in credential_fields(section, block):
                ConfigDocument.set_str(block, name, None)
                result.changed += 1

    return result


def count_plaintext(document: ConfigDocument) -> int:
    """Count credential fields of a document that are not encrypted."""
    return sum(
        1
        for section in SECTION_FIELDS
        for _, block in document.blocks(section)
        for _name, value in credential_fields(section, block)
        if not crypto.looks_encrypted(value)
    )


def write_decrypted_copy(source: Path, destination: Path, master: MasterPassword) -> HookResult:
    """
    Write a decrypted copy of a configuration file.

    The source file is read without hooks and left untouched; the copy is
    written with owner-only permissions.

    Raises:
        ConfigurationError: If the source cannot be read or the copy written.
        MasterPasswordRequiredError: If no master password is set.
    """
    document = ConfigDocument.open_raw(source)
    result = decrypt_document(document, master)
    document.write(destination, mode=0o600, run_hooks=False)
    return result


def _label(key: str | None, block: dict) -> str:
    name = key or block.get("address") or block.get("chatnet")
    return f" ({name})" if name else ""
