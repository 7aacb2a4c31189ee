"""
External credentials file.

In external storage mode, credential fields are removed from the main
configuration and kept in a separate file (``~/.credkeep/.credentials`` by
default) that uses the same tree shape:

    servers:
      - address: irc.example.org
        chatnet: irc.example.org
        password: <plaintext or ciphertext>
        tls_pass: ...
        oper_password: ...
    chatnets:
      example:
        sasl_username: ...
        sasl_password: ...
        autosendcmd: ...
    proxies:
      - address: proxy.example.org
        password: ...

Values are written and read exactly as stored; this module never encrypts
or decrypts. The file is written atomically with owner-only permissions.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from credkeep.config.document import ConfigDocument
from credkeep.config.settings import ConfigurationError
from credkeep.credentials.classifier import credential_fields
from credkeep.credentials.models import (
    CredentialRecord,
    CredentialSection,
    ExternalFileError,
    context_for_field,
    network_key,
)

logger = logging.getLogger(__name__)

FILE_MODE = 0o600


class ExternalCredentialFile:
    """
    Reader/writer for the external credentials file.

    Attributes:
        path: Location of the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def read_document(self) -> ConfigDocument:
        """
        Parse the file as a raw document.

        Raises:
            ExternalFileError: If the file is missing or cannot be parsed.
        """
        try:
            return ConfigDocument.open_raw(self.path)
        except ConfigurationError as e:
            raise ExternalFileError(str(e)) from e

    def write_document(self, document: ConfigDocument) -> None:
        """
        Write a document to the file with owner-only permissions.

        Raises:
            ExternalFileError: If the file cannot be written.
        """
        try:
            document.write(self.path, mode=FILE_MODE, run_hooks=False)
        except ConfigurationError as e:
            raise ExternalFileError(str(e)) from e

    def save(self, records: Iterable[CredentialRecord]) -> None:
        """
        Replace the file content with ``records``.

        Raises:
            ExternalFileError: If the file cannot be written.
        """
        document = ConfigDocument(self.path)
        for section in CredentialSection:
            document.section(section.value, create=True)

        servers: dict[str, dict[str, str]] = {}
        proxies: dict[str, dict[str, str]] = {}

        for record in records:
            section = record.context.section
            if section is CredentialSection.SERVERS:
                block = servers.get(network_key(record.network))
                if block is None:
                    block = document.add_block(section.value)
                    block["address"] = record.network
                    block["chatnet"] = record.network
                    servers[network_key(record.network)] = block
            elif section is CredentialSection.PROXIES:
                block = proxies.get(network_key(record.network))
                if block is None:
                    block = document.add_block(section.value)
                    block["address"] = record.network
                    proxies[network_key(record.network)] = block
            else:
                block = document.add_block(section.value, record.network)

            block[record.context.field_name] = record.stored_value

        self.write_document(document)
        logger.debug("Saved external credentials to %s", self.path)

    def load(self) -> list[CredentialRecord]:
        """
        Read all records from the file, values as stored.

        Server credentials are keyed by address, falling back to chatnet;
        network credentials by network name; proxy credentials by address.

        Raises:
            ExternalFileError: If the file is missing or cannot be parsed.
        """
        document = self.read_document()
        records: list[CredentialRecord] = []

        for section in CredentialSection:
            for key, block in document.blocks(section.value):
                if section is CredentialSection.CHATNETS:
                    network = key
                else:
                    network = ConfigDocument.get_str(block, "address")
                    if section is CredentialSection.SERVERS and not network:
                        network = ConfigDocument.get_str(block, "chatnet")
                if not network:
                    continue
                for name, value in credential_fields(section.value, block):
                    records.append(
                        CredentialRecord(network, context_for_field(section, name), value)
                    )

        logger.debug("Loaded %d credentials from %s", len(records), self.path)
        return records

    def delete(self) -> None:
        """
        Remove the file.

        Raises:
            ExternalFileError: If the file exists and cannot be removed.
        """
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise ExternalFileError(f"Cannot remove {self.path}: {e}") from e
