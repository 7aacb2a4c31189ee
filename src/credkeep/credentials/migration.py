"""
Migration engine.

Moves credential-bearing fields between the main configuration document and
the external credentials file. Values are treated as opaque: whatever is
stored (plaintext or ciphertext) is copied unchanged, so no master password
is needed to relocate data.

Each file is written atomically, but a migration as a whole is not a
transaction. If the second write fails after the first succeeded, the
result reports ``started=True`` and the caller must tell the user that the
configuration may be inconsistent. Nothing is rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from credkeep.config.document import Block, ConfigDocument
from credkeep.config.settings import ConfigurationError
from credkeep.credentials.classifier import credential_fields
from credkeep.credentials.external import ExternalCredentialFile
from credkeep.credentials.hooks import strip_document
from credkeep.credentials.models import CredentialSection, ExternalFileError, network_key

logger = logging.getLogger(__name__)

INCONSISTENT_STATE_MESSAGE = "Migration failed - config may be in inconsistent state"


@dataclass
class MigrationResult:
    """
    Outcome of a migration.

    Attributes:
        success: True if every step completed.
        moved: Number of credential fields copied.
        error: Description of the failure, if any.
        started: True once the first file was written. A failed migration
            with ``started`` False changed nothing on disk.
    """

    success: bool
    moved: int = 0
    error: str | None = None
    started: bool = False


def migrate_to_external(
    document: ConfigDocument, external: ExternalCredentialFile
) -> MigrationResult:
    """
    Move credential fields from the main document to the external file.

    Values are read from the main file as stored on disk, bypassing the read
    hooks, so ciphertext stays ciphertext. If the main file has never been
    written, the in-memory tree is used instead.

    The external file is replaced, the fields are stripped from the
    in-memory document, and the document is saved.
    """
    try:
        source = _stored_document(document)
    except ConfigurationError as e:
        logger.error("Cannot open main config for migration: %s", e)
        return MigrationResult(success=False, error=str(e))

    target = ConfigDocument(external.path)
    moved = 0

    servers = target.section(CredentialSection.SERVERS.value, create=True)
    for _, server in source.blocks(CredentialSection.SERVERS.value):
        found = credential_fields(CredentialSection.SERVERS.value, server)
        if not found:
            continue
        block: Block = {}
        for key in ("address", "chatnet"):
            value = ConfigDocument.get_str(server, key)
            if value:
                block[key] = value
        block.update(found)
        servers.append(block)
        moved += len(found)

    target.section(CredentialSection.CHATNETS.value, create=True)
    for name, chatnet in source.blocks(CredentialSection.CHATNETS.value):
        found = credential_fields(CredentialSection.CHATNETS.value, chatnet)
        if not found or not name:
            continue
        target.add_block(CredentialSection.CHATNETS.value, name).update(found)
        moved += len(found)

    proxies = target.section(CredentialSection.PROXIES.value, create=True)
    for _, proxy in source.blocks(CredentialSection.PROXIES.value):
        found = credential_fields(CredentialSection.PROXIES.value, proxy)
        address = ConfigDocument.get_str(proxy, "address")
        if not found or not address:
            continue
        proxies.append({"address": address, **dict(found)})
        moved += len(found)

    try:
        external.write_document(target)
    except ExternalFileError as e:
        logger.error("Cannot write external credentials file: %s", e)
        return MigrationResult(success=False, error=str(e))

    strip_document(document)
    try:
        document.write()
    except ConfigurationError as e:
        logger.error(INCONSISTENT_STATE_MESSAGE)
        return MigrationResult(success=False, moved=moved, error=str(e), started=True)

    logger.info("Migrated %d credential fields to %s", moved, external.path)
    return MigrationResult(success=True, moved=moved, started=True)


def migrate_to_config(
    document: ConfigDocument, external: ExternalCredentialFile
) -> MigrationResult:
    """
    Move credential fields from the external file back into the main
    document.

    Server blocks are matched on address or chatnet, proxy blocks on
    address, both case-insensitively; unmatched entries create new blocks.
    The external file is deleted only after the main document was saved. A
    missing external file moves nothing.
    """
    if external.exists():
        try:
            source = external.read_document()
        except ExternalFileError as e:
            logger.error("Cannot read external credentials file: %s", e)
            return MigrationResult(success=False, error=str(e))
    else:
        logger.debug("No external credentials file at %s", external.path)
        source = ConfigDocument(external.path)

    moved = 0

    for _, server in source.blocks(CredentialSection.SERVERS.value):
        found = credential_fields(CredentialSection.SERVERS.value, server)
        address = ConfigDocument.get_str(server, "address")
        chatnet = ConfigDocument.get_str(server, "chatnet")
        if not found or not (address or chatnet):
            continue
        block = _find_server(document, address, chatnet)
        if block is None:
            block = document.add_block(CredentialSection.SERVERS.value)
            if address:
                block["address"] = address
            if chatnet:
                block["chatnet"] = chatnet
        block.update(found)
        moved += len(found)

    for name, chatnet_block in source.blocks(CredentialSection.CHATNETS.value):
        found = credential_fields(CredentialSection.CHATNETS.value, chatnet_block)
        if not found or not name:
            continue
        document.add_block(CredentialSection.CHATNETS.value, name).update(found)
        moved += len(found)

    for _, proxy in source.blocks(CredentialSection.PROXIES.value):
        found = credential_fields(CredentialSection.PROXIES.value, proxy)
        address = ConfigDocument.get_str(proxy, "address")
        if not found or not address:
            continue
        block = _find_proxy(document, address)
        if block is None:
            block = document.add_block(CredentialSection.PROXIES.value)
            block["address"] = address
        block.update(found)
        moved += len(found)

    try:
        document.write()
    except ConfigurationError as e:
        logger.error(INCONSISTENT_STATE_MESSAGE)
        return MigrationResult(success=False, moved=moved, error=str(e), started=True)

    try:
        external.delete()
    except ExternalFileError as e:
        logger.warning("Credentials migrated but external file not removed: %s", e)

    logger.info("Migrated %d credential fields to %s", moved, document.path)
    return MigrationResult(success=True, moved=moved, started=True)


def _stored_document(document: ConfigDocument) -> ConfigDocument:
    if document.path is not None and document.path.exists():
        return ConfigDocument.open_raw(document.path)
    return ConfigDocument(document.path, document.to_dict())


def _find_server(document: ConfigDocument, address: str | None, chatnet: str | None) -> Block | None:
    wanted = {network_key(value) for value in (address, chatnet) if value}
    for _, block in document.blocks(CredentialSection.SERVERS.value):
        for key in ("address", "chatnet"):
            value = ConfigDocument.get_str(block, key)
            if value and network_key(value) in wanted:
                return block
    return None


def _find_proxy(document: ConfigDocument, address: str) -> Block | None:
    for _, block in document.blocks(CredentialSection.PROXIES.value):
        value = ConfigDocument.get_str(block, "address")
        if value and network_key(value) == network_key(address):
            return block
    return None
