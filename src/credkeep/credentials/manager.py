"""
Credential manager.

CredentialManager owns the process-wide credential state (master password,
storage mode, encryption flag, credential store) and wires it into the host
application: the configuration document's read/write hooks and the signal
bus. Several independent managers can coexist, which keeps tests isolated.

Lifecycle:
    manager = CredentialManager(state_dir)
    manager.init()               # load settings, register hooks and signals
    manager.set_master_password("correct-password")
    manager.set("irc.example.org", CredentialContext.SASL_PASSWORD, "hunter2")
    manager.save_document()
    manager.deinit()             # unregister, zero the master password

Setting changes go through set_setting(), which emits "setup changed". The
handler reads the external file path first, then the storage mode (running a
migration on a real transition), then the encryption flag (running a bulk
conversion on a real transition).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from credkeep.config.document import Block, ConfigDocument
from credkeep.config.settings import (
    CONFIG_ENCRYPT_SETTING,
    STORAGE_MODE_SETTING,
    ConfigurationError,
    Settings,
    apply_setting,
    get_config_path,
    get_state_dir,
    settings_from_dict,
    store_settings,
)
from credkeep.credentials import crypto, hooks, migration, toggle
from credkeep.credentials.classifier import credential_fields
from credkeep.credentials.external import ExternalCredentialFile
from credkeep.credentials.master import MasterPassword
from credkeep.credentials.migration import MigrationResult
from credkeep.credentials.models import (
    CredentialContext,
    CredentialError,
    CredentialRecord,
    CredentialSection,
    CryptoError,
    ExternalFileError,
    MigrationError,
    StorageMode,
    context_for_field,
)
from credkeep.credentials.store import CredentialStore
from credkeep.signals import SignalBus

logger = logging.getLogger(__name__)

DECRYPTED_FILE_NAME = "config.decrypted"

LOCKED_WARNING = (
    "Credentials Locked: configuration encryption is ON, but your credentials "
    "are currently LOCKED. Use 'credkeep passwd' to unlock them."
)
UNPROTECTED_WARNING = (
    "Encryption is ON but no master password is set. Credentials will NOT be "
    "encrypted until you set one with 'credkeep passwd'."
)

_DIALOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
}


class CredentialManager:
    """
    Credential state and its integration with the host application.

    Attributes:
        state_dir: Directory holding the configuration and external file.
        bus: Signal bus shared with the host.
        document: Main configuration document.
        settings: Current credential settings.
        master: Master password holder.
        store: In-memory credential store.
        storage_mode: Active storage mode.
        config_encrypt: Whether encryption at rest is active.
        external: External credentials file.
        last_migration: Result of the most recent storage mode migration.
    """

    def __init__(
        self,
        state_dir: Path | None = None,
        bus: SignalBus | None = None,
        document: ConfigDocument | None = None,
    ) -> None:
        self.state_dir = state_dir or get_state_dir()
        self.bus = bus or SignalBus()
        self.document = document or ConfigDocument(get_config_path(self.state_dir))
        self.settings = Settings()
        self.master = MasterPassword()
        self.store = CredentialStore(self.master)
        self.storage_mode = StorageMode.CONFIG
        self.config_encrypt = False
        self.external = ExternalCredentialFile(self._resolve_path(self.settings.external_file))
        self.last_migration: MigrationResult | None = None
        self._initialized = False
        self._in_reemit = False

    # Lifecycle

    def init(self) -> None:
        """
        Load settings and register hooks and signal handlers.

        Settings found at startup are taken as the current state; no
        migration or conversion runs here.

        Raises:
            ConfigurationError: If the configuration cannot be loaded.
        """
        if self._initialized:
            return

        self.document.add_read_hook(self.config_read_hook)
        self.document.add_write_hook(self.config_write_hook)
        self.document.parse(run_hooks=False)

        self.settings = settings_from_dict(self.document.data)
        self.external = ExternalCredentialFile(self._resolve_path(self.settings.external_file))
        self.storage_mode = StorageMode.parse(self.settings.storage_mode)
        self.config_encrypt = self.settings.config_encrypt

        self.document.run_read_hooks()

        self.bus.add("setup changed", self._on_setup_changed)
        self.bus.add("chatnet read", self._on_chatnet_read)
        self.bus.add("chatnet saved", self._on_chatnet_saved)
        self.bus.add("server setup saved", self._on_server_setup_saved)
        self._initialized = True

        if self.storage_mode is StorageMode.EXTERNAL or self.config_encrypt:
            self.external_load()

        if self.config_encrypt and not self.master.is_set():
            self._dialog("warning", LOCKED_WARNING)

        logger.debug(
            "Credential manager initialized (mode=%s, encrypt=%s)",
            self.storage_mode.value,
            self.config_encrypt,
        )

    def deinit(self) -> None:
        """Unregister everything, zero the master password and drop all records."""
        self.document.remove_read_hook(self.config_read_hook)
        self.document.remove_write_hook(self.config_write_hook)
        self.bus.remove("setup changed", self._on_setup_changed)
        self.bus.remove("chatnet read", self._on_chatnet_read)
        self.bus.remove("chatnet saved", self._on_chatnet_saved)
        self.bus.remove("server setup saved", self._on_server_setup_saved)
        self.master.clear()
        self.store.clear()
        self._initialized = False

    # Master password

    def set_master_password(self, password: str | bytes | bytearray, unlock: bool = True) -> None:
        """
        Set the master password and, by default, unlock stored credentials.

        Raises:
            ValueError: If the password is empty.
        """
        self.master.set(password)
        logger.info("Master password set")
        if unlock:
            self.unlock_config()

    def clear_master_password(self) -> None:
        self.master.clear()
        logger.info("Master password cleared")

    def has_master_password(self) -> bool:
        return self.master.is_set()

    def unlock_config(self) -> None:
        """
        Make stored credentials readable after the master password was set.

        In config mode the in-memory document is decrypted; in external mode
        the external file is reloaded. Dependents are told to reload with
        "setup reread".
        """
        if self.storage_mode is StorageMode.CONFIG:
            if self.master.is_set():
                hooks.decrypt_document(self.document, self.master)
            self.bus.emit("setup reread")
        elif self.external_load():
            self.bus.emit("setup reread")
        else:
            logger.warning("Failed to load external credentials after unlocking")

    # Credential CRUD

    def set(self, network: str, context: CredentialContext, value: str) -> bool:
        """
        Store a credential, encrypting it when encryption is enabled.

        In external mode the external file is rewritten.

        Returns:
            False if encryption was attempted and failed, or the external
            file could not be written.
        """
        plaintext_fallback = (
            self.config_encrypt
            and not self.master.is_set()
            and not crypto.looks_encrypted(value)
        )
        if not self.store.set(network, context, value, encrypt=self.config_encrypt):
            return False
        if plaintext_fallback:
            self._dialog(
                "warning",
                f"Encryption is ON but master password not set. "
                f"Stored {context.value} for {network} in plaintext.",
            )
        if self.storage_mode is StorageMode.EXTERNAL:
            return self.external_save()
        return True

    def get(self, network: str, context: CredentialContext) -> str | None:
        """Return a credential in plaintext, or None if absent or unreadable."""
        return self.store.get(network, context)

    def remove(self, network: str, context: CredentialContext) -> bool:
        """Remove a credential. In external mode the external file is rewritten."""
        removed = self.store.remove(network, context)
        if removed and self.storage_mode is StorageMode.EXTERNAL:
            self.external_save()
        return removed

    def list(self) -> list[CredentialRecord]:
        """Snapshot of the credential store."""
        return self.store.list()

    def list_credentials(self) -> list[CredentialRecord]:
        """
        List every credential in the active storage location, values as
        stored.

        In config mode the records come from the in-memory document; in
        external mode from the store.
        """
        if self.storage_mode is StorageMode.EXTERNAL:
            return self.store.list()

        records = []
        for section in CredentialSection:
            for key, block in self.document.blocks(section.value):
                network = key or block.get("address") or block.get("chatnet")
                if not network:
                    continue
                for name, value in credential_fields(section.value, block):
                    records.append(
                        CredentialRecord(str(network), context_for_field(section, name), value)
                    )
        return records

    def unreadable_credentials(self) -> list[CredentialRecord]:
        """List encrypted credentials the current master password cannot decrypt."""
        unreadable = []
        for record in self.list_credentials():
            if not crypto.looks_encrypted(record.stored_value):
                continue
            if not self.master.is_set():
                unreadable.append(record)
                continue
            try:
                crypto.decrypt(record.stored_value, self.master.require())
            except CryptoError:
                unreadable.append(record)
        return unreadable

    # Settings

    def set_setting(self, name: str, value: Any) -> None:
        """
        Change a credential setting and react to it.

        The new value is written into the document's settings section before
        "setup changed" is emitted, so a migration saves it along with the
        moved fields.

        Raises:
            ConfigurationError: If the name is unknown or the value invalid.
        """
        apply_setting(self.settings, name, value)
        store_settings(self.document.data, self.settings)
        self.bus.emit("setup changed")

    def _on_setup_changed(self) -> None:
        self._external_file_changed()
        self._storage_mode_changed()
        self._config_encrypt_changed()

    def _external_file_changed(self) -> None:
        path = self._resolve_path(self.settings.external_file)
        if path != self.external.path:
            self.external = ExternalCredentialFile(path)
            logger.debug("External credentials file is now %s", path)

    def _storage_mode_changed(self) -> None:
        new_mode = StorageMode.parse(self.settings.storage_mode)
        old_mode = self.storage_mode
        if new_mode is old_mode:
            return

        self.storage_mode = new_mode
        if new_mode is StorageMode.EXTERNAL:
            result = self.migrate_to_external()
        else:
            result = self.migrate_to_config()
        self.last_migration = result

        if result.success:
            self._dialog(
                "info",
                f"Migrated {result.moved} credential fields to {self._location()}.",
            )
        elif not result.started:
            # Nothing was written, keep the previous mode so the write hook
            # does not strip fields that were never copied.
            self.storage_mode = old_mode
            self.settings.storage_mode = old_mode.value
            store_settings(self.document.data, self.settings)
            self._dialog("error", f"Migration failed: {result.error}")
        else:
            self._dialog("error", f"{migration.INCONSISTENT_STATE_MESSAGE}: {result.error}")

    def _config_encrypt_changed(self) -> None:
        enable = self.settings.config_encrypt
        if enable == self.config_encrypt:
            return

        if not self.master.is_set():
            if enable:
                self.config_encrypt = True
                self._dialog("warning", UNPROTECTED_WARNING)
            else:
                self.settings.config_encrypt = True
                store_settings(self.document.data, self.settings)
                self._dialog(
                    "error",
                    "Cannot disable encryption without the master password. "
                    "Use 'credkeep passwd' first.",
                )
            return

        self.config_encrypt = enable
        if enable:
            logger.info("Encryption enabled - converting all credentials to encrypted format")
            result = toggle.encrypt_all(self.store)
            verb = "encrypted"
        else:
            logger.info("Encryption disabled - converting all credentials to plaintext")
            result = toggle.decrypt_all(self.store)
            if self.storage_mode is StorageMode.CONFIG:
                hooks.decrypt_document(self.document, self.master)
            verb = "decrypted"

        if result.failed:
            self._dialog("warning", f"{result.failed} credentials could not be {verb}.")

        if self.storage_mode is StorageMode.EXTERNAL:
            if self.external_save():
                self._dialog("info", f"All credentials {verb} and saved to external file.")
        else:
            self._dialog("info", f"All credentials {verb}. Save the configuration to write them.")

    # Migration

    def migrate(self, target: StorageMode) -> MigrationResult:
        """
        Switch storage mode, moving credentials to the new location.

        Raises:
            MigrationError: If already in ``target`` mode or the migration failed.
        """
        if target is self.storage_mode:
            raise MigrationError(f"Already using {target.value} storage mode")

        self.last_migration = None
        self.set_setting(STORAGE_MODE_SETTING, target.value)
        result = self.last_migration
        if result is None:
            raise MigrationError("Storage mode change did not run a migration")
        if not result.success:
            raise MigrationError(result.error or "Migration failed")
        return result

    def migrate_to_external(self) -> MigrationResult:
        """Move credential fields out of the main document into the external file."""
        result = migration.migrate_to_external(self.document, self.external)
        if result.success:
            self.external_load()
        return result

    def migrate_to_config(self) -> MigrationResult:
        """Move credential fields from the external file back into the main document."""
        result = migration.migrate_to_config(self.document, self.external)
        if result.success:
            if self.master.is_set():
                hooks.decrypt_document(self.document, self.master)
            self.bus.emit("setup reread")
        return result

    # Encryption of the main document

    def encrypt_config(self) -> bool:
        """
        Enable encryption and save the main document.

        Raises:
            MasterPasswordRequiredError: If no master password is set.
        """
        self.master.require()
        if self.config_encrypt:
            logger.warning("Config encryption already enabled")
            return False

        self.set_setting(CONFIG_ENCRYPT_SETTING, True)
        try:
            self.save_document()
        except ConfigurationError as e:
            logger.warning("Failed to save encrypted config: %s", e)
            self.set_setting(CONFIG_ENCRYPT_SETTING, False)
            logger.warning("Encryption failed - config may be in inconsistent state")
            return False
        return True

    def disable_encryption(self) -> bool:
        """
        Disable encryption and save the main document in plaintext.

        Raises:
            MasterPasswordRequiredError: If no master password is set.
            ConfigurationError: If the document cannot be written.
        """
        self.master.require()
        if not self.config_encrypt:
            logger.warning("Config encryption not enabled")
            return False

        self.set_setting(CONFIG_ENCRYPT_SETTING, False)
        self.save_document()
        return True

    def decrypt_config(self) -> Path:
        """
        Write a decrypted copy of the on-disk main document next to it.

        The original file is left untouched.

        Returns:
            Path of the decrypted copy.

        Raises:
            CredentialError: If encryption is not enabled.
            MasterPasswordRequiredError: If no master password is set.
            ConfigurationError: If the document cannot be read or the copy written.
        """
        if not self.config_encrypt:
            raise CredentialError("Config encryption not enabled")
        self.master.require()

        if self.document.path is None:
            raise ConfigurationError("Configuration document has no path")

        destination = self.state_dir / DECRYPTED_FILE_NAME
        result = hooks.write_decrypted_copy(self.document.path, destination, self.master)
        if result.failed:
            self._dialog(
                "warning",
                f"{result.failed} values could not be decrypted and were copied as-is.",
            )
        logger.info("Decrypted config written to %s", destination)
        return destination

    def save_document(self) -> None:
        """
        Write the main document, running the credential hooks.

        Raises:
            ConfigurationError: If the document cannot be written.
        """
        store_settings(self.document.data, self.settings)
        self.document.write()

    # External file

    def external_save(self) -> bool:
        """Write every record of the store to the external file."""
        try:
            self.external.save(self.store.list())
        except ExternalFileError as e:
            logger.error("Failed to save external credentials: %s", e)
            return False
        return True

    def external_load(self) -> bool:
        """
        Replace the store content with the external file's records.

        A missing file is an empty store.
        """
        if not self.external.exists():
            logger.debug("No external credentials file at %s", self.external.path)
            self.store.clear()
            return True

        try:
            records = self.external.load()
        except ExternalFileError as e:
            logger.error("Failed to load external credentials: %s", e)
            return False

        self.store.replace_all(records)
        return True

    def external_reload(self) -> bool:
        return self.external_load()

    # Configuration hooks

    def config_write_hook(self, document: ConfigDocument) -> None:
        """Run on a copy of the main document right before it is written."""
        if self.storage_mode is StorageMode.EXTERNAL:
            hooks.strip_document(document)
            return

        if not self.config_encrypt:
            return

        if self.master.is_set():
            hooks.encrypt_document(document, self.master)
        elif hooks.count_plaintext(document):
            logger.warning(
                "Encryption is ON but master password not set. "
                "Credentials saved to config in plaintext."
            )

    def config_read_hook(self, document: ConfigDocument) -> None:
        """Run on the main document right after it is parsed."""
        if self.storage_mode is not StorageMode.CONFIG or not self.config_encrypt:
            return
        if not self.master.is_set():
            logger.debug("Credentials in config stay encrypted until unlocked")
            return
        hooks.decrypt_document(document, self.master)

    # Signal handlers

    def _on_chatnet_read(self, name: str, node: Block) -> None:
        if self._in_reemit or not name or node is None:
            return
        if self.storage_mode is StorageMode.CONFIG:
            return

        changed = False
        for context in (CredentialContext.SASL_USERNAME, CredentialContext.SASL_PASSWORD):
            if ConfigDocument.get_str(node, context.field_name):
                continue
            value = self.store.get(name, context)
            if value is not None:
                node[context.field_name] = value
                changed = True

        if changed:
            self._in_reemit = True
            try:
                self.bus.emit("chatnet read", name, node)
            finally:
                self._in_reemit = False

    def _on_chatnet_saved(self, name: str, node: Block) -> None:
        if not name or node is None:
            return
        if self.storage_mode is StorageMode.CONFIG:
            return
        self._capture(name, CredentialSection.CHATNETS, node)

    def _on_server_setup_saved(self, address: str, node: Block) -> None:
        if not address or node is None:
            return
        if self.storage_mode is StorageMode.CONFIG:
            return
        self._capture(address, CredentialSection.SERVERS, node)

    def _capture(self, network: str, section: CredentialSection, node: Block) -> None:
        captured = 0
        for name, value in credential_fields(section.value, node):
            context = context_for_field(section, name)
            plaintext_fallback = (
                self.config_encrypt
                and not self.master.is_set()
                and not crypto.looks_encrypted(value)
            )
            if not self.store.set(network, context, value, encrypt=self.config_encrypt):
                # Left in the node so the value is not lost
                self._dialog(
                    "error",
                    f"Failed to encrypt {context.value} for {network}; "
                    "it was left in the configuration.",
                )
                continue
            if plaintext_fallback:
                self._dialog(
                    "warning",
                    f"Encryption is ON but master password not set. "
                    f"Stored {context.value} for {network} in plaintext.",
                )
            ConfigDocument.set_str(node, name, None)
            captured += 1

        if captured:
            self.external_save()

    # Status

    def status(self) -> dict[str, Any]:
        """Snapshot of the manager state for display."""
        return {
            "storage_mode": self.storage_mode.value,
            "external_file": str(self.external.path),
            "config_encrypt": self.config_encrypt,
            "master_password_set": self.master.is_set(),
            "credentials": len(self.list_credentials()),
        }

    def security_warnings(self) -> list[str]:
        """Warnings that stay active until the underlying problem is fixed."""
        warnings = []
        if self.config_encrypt and not self.master.is_set():
            warnings.append(UNPROTECTED_WARNING)
        return warnings

    # Helpers

    def _resolve_path(self, name: str) -> Path:
        path = Path(name).expanduser()
        if path.is_absolute():
            return path
        return self.state_dir / path

    def _location(self) -> str:
        if self.storage_mode is StorageMode.EXTERNAL:
            return str(self.external.path)
        return str(self.document.path)

    def _dialog(self, kind: str, message: str) -> None:
        logger.log(_DIALOG_LEVELS.get(kind, logging.WARNING), message)
        self.bus.emit("gui dialog", kind, message)
