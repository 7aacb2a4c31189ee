"""Tests for the external credentials file, config hooks and migration engine."""

import copy
import shutil
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from credkeep.config.document import ConfigDocument
from credkeep.config.settings import ConfigurationError
from credkeep.credentials import crypto, hooks
from credkeep.credentials.external import ExternalCredentialFile
from credkeep.credentials.master import MasterPassword
from credkeep.credentials.migration import migrate_to_config, migrate_to_external
from credkeep.credentials.models import (
    CredentialContext,
    CredentialRecord,
    ExternalFileError,
    MasterPasswordRequiredError,
)

SAMPLE_CONFIG = {
    "servers": [
        {"address": "irc.example.org", "chatnet": "example", "port": 6697, "password": "srvpw"},
        {"address": "irc.other.net", "chatnet": "other", "port": 6667},
    ],
    "chatnets": {
        "example": {
            "type": "IRC",
            "sasl_username": "me",
            "sasl_password": "saslpw",
            "autosendcmd": "/msg NickServ identify nspw",
        },
        "other": {"type": "IRC", "autosendcmd": "/join #chan"},
    },
    "proxies": [{"address": "proxy.example.org", "port": 1080, "password": "proxypw"}],
    "settings": {"core": {"real_name": "Me"}},
}


class TempDirTestCase(unittest.TestCase):
    """Temporary directory and fast key derivation."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.state_dir = Path(self.temp_dir)
        patcher = patch.object(crypto, "PBKDF2_ITERATIONS", 1000)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, data: dict) -> ConfigDocument:
        path = self.state_dir / "config.yaml"
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        doc = ConfigDocument(path)
        doc.parse()
        return doc


class TestExternalCredentialFile(TempDirTestCase):
    """Tests for ExternalCredentialFile."""

    def test_save_and_load(self) -> None:
        """Test records survive a save/load cycle unchanged."""
        external = ExternalCredentialFile(self.state_dir / ".credentials")
        records = [
            CredentialRecord("irc.example.org", CredentialContext.SERVER_PASSWORD, "srvpw"),
            CredentialRecord("irc.example.org", CredentialContext.OPER_PASSWORD, "operpw"),
            CredentialRecord("example", CredentialContext.SASL_USERNAME, "me"),
            CredentialRecord("example", CredentialContext.SASL_PASSWORD, "saslpw"),
            CredentialRecord("proxy.example.org", CredentialContext.PROXY_PASSWORD, "proxypw"),
        ]
        external.save(records)
        loaded = external.load()

        self.assertEqual(
            sorted((r.network, r.context.value, r.stored_value) for r in loaded),
            sorted((r.network, r.context.value, r.stored_value) for r in records),
        )

    def test_file_layout(self) -> None:
        """Test the file has servers, chatnets and proxies sections."""
        external = ExternalCredentialFile(self.state_dir / ".credentials")
        external.save(
            [
                CredentialRecord("irc.example.org", CredentialContext.SERVER_PASSWORD, "pw"),
                CredentialRecord("example", CredentialContext.SASL_PASSWORD, "pw2"),
            ]
        )
        data = yaml.safe_load(external.path.read_text())

        self.assertEqual(
            data["servers"],
            [{"address": "irc.example.org", "chatnet": "irc.example.org", "password": "pw"}],
        )
        self.assertEqual(data["chatnets"], {"example": {"sasl_password": "pw2"}})
        self.assertEqual(data["proxies"], [])

    def test_owner_only_permissions(self) -> None:
        """Test the file is created with mode 0600."""
        external = ExternalCredentialFile(self.state_dir / ".credentials")
        external.save([])
        self.assertEqual(stat.S_IMODE(external.path.stat().st_mode), 0o600)

    def test_load_missing(self) -> None:
        """Test loading a missing file raises ExternalFileError."""
        with self.assertRaises(ExternalFileError):
            ExternalCredentialFile(self.state_dir / "missing").load()

    def test_load_server_without_address(self) -> None:
        """Test server blocks fall back to chatnet as the network."""
        path = self.state_dir / ".credentials"
        path.write_text("servers:\n  - chatnet: example\n    password: pw\n  - port: 1\n")
        loaded = ExternalCredentialFile(path).load()
        self.assertEqual(
            [(r.network, r.context) for r in loaded],
            [("example", CredentialContext.SERVER_PASSWORD)],
        )

    def test_delete(self) -> None:
        """Test deleting the file, twice."""
        external = ExternalCredentialFile(self.state_dir / ".credentials")
        external.save([])
        external.delete()
        external.delete()
        self.assertFalse(external.exists())


class TestConfigHooks(TempDirTestCase):
    """Tests for encrypt_document, decrypt_document and strip_document."""

    def setUp(self) -> None:
        super().setUp()
        self.master = MasterPassword()
        self.master.set("correct-password")

    def test_encrypt_then_decrypt(self) -> None:
        """Test encrypting and decrypting a document restores it."""
        doc = ConfigDocument(None, copy.deepcopy(SAMPLE_CONFIG))
        original = doc.to_dict()

        result = hooks.encrypt_document(doc, self.master)
        self.assertEqual(result.changed, 5)
        self.assertTrue(crypto.looks_encrypted(doc.data["servers"][0]["password"]))
        self.assertTrue(crypto.looks_encrypted(doc.data["proxies"][0]["password"]))
        self.assertTrue(crypto.looks_encrypted(doc.data["chatnets"]["example"]["autosendcmd"]))
        self.assertEqual(doc.data["chatnets"]["other"]["autosendcmd"], "/join #chan")
        self.assertEqual(doc.data["servers"][0]["port"], 6697)

        hooks.decrypt_document(doc, self.master)
        self.assertEqual(doc.data, original)

    def test_encrypt_skips_ciphertext(self) -> None:
        """Test already encrypted fields are left untouched."""
        ciphertext = crypto.encrypt("pw", "correct-password")
        doc = ConfigDocument(None, {"servers": [{"address": "a", "password": ciphertext}]})
        result = hooks.encrypt_document(doc, self.master)

        self.assertEqual(result.changed, 0)
        self.assertEqual(doc.data["servers"][0]["password"], ciphertext)

    def test_decrypt_wrong_password_keeps_ciphertext(self) -> None:
        """Test fields that fail to decrypt stay as ciphertext."""
        ciphertext = crypto.encrypt("pw", "other-password")
        doc = ConfigDocument(None, {"servers": [{"address": "a", "password": ciphertext}]})
        with self.assertLogs("credkeep.credentials.hooks", level="WARNING"):
            result = hooks.decrypt_document(doc, self.master)

        self.assertEqual(result.failed, 1)
        self.assertEqual(doc.data["servers"][0]["password"], ciphertext)

    def test_hooks_require_master(self) -> None:
        """Test encrypt/decrypt without a master password raise."""
        doc = ConfigDocument(None, {})
        with self.assertRaises(MasterPasswordRequiredError):
            hooks.encrypt_document(doc, MasterPassword())
        with self.assertRaises(MasterPasswordRequiredError):
            hooks.decrypt_document(doc, MasterPassword())

    def test_strip(self) -> None:
        """Test stripping removes only credential fields."""
        doc = ConfigDocument(None, copy.deepcopy(SAMPLE_CONFIG))
        hooks.strip_document(doc)

        self.assertNotIn("password", doc.data["servers"][0])
        self.assertEqual(doc.data["servers"][0]["address"], "irc.example.org")
        self.assertEqual(doc.data["chatnets"]["example"], {"type": "IRC"})
        self.assertEqual(doc.data["chatnets"]["other"]["autosendcmd"], "/join #chan")
        self.assertNotIn("password", doc.data["proxies"][0])

    def test_count_plaintext(self) -> None:
        """Test counting plaintext credential fields."""
        doc = ConfigDocument(None, copy.deepcopy(SAMPLE_CONFIG))
        self.assertEqual(hooks.count_plaintext(doc), 5)
        hooks.encrypt_document(doc, self.master)
        self.assertEqual(hooks.count_plaintext(doc), 0)

    def test_write_decrypted_copy(self) -> None:
        """Test exporting a decrypted copy leaves the source untouched."""
        doc = ConfigDocument(self.state_dir / "config.yaml", copy.deepcopy(SAMPLE_CONFIG))
        hooks.encrypt_document(doc, self.master)
        doc.write(run_hooks=False)
        source_text = doc.path.read_text()

        destination = self.state_dir / "config.decrypted"
        hooks.write_decrypted_copy(doc.path, destination, self.master)

        self.assertEqual(doc.path.read_text(), source_text)
        exported = yaml.safe_load(destination.read_text())
        self.assertEqual(exported["servers"][0]["password"], "srvpw")
        self.assertEqual(stat.S_IMODE(destination.stat().st_mode), 0o600)


class TestMigration(TempDirTestCase):
    """Tests for migrate_to_external and migrate_to_config."""

    def setUp(self) -> None:
        super().setUp()
        self.external = ExternalCredentialFile(self.state_dir / ".credentials")

    def test_to_external_moves_fields(self) -> None:
        """Test credential fields move to the external file."""
        doc = self.write_config(SAMPLE_CONFIG)
        result = migrate_to_external(doc, self.external)

        self.assertTrue(result.success)
        self.assertEqual(result.moved, 5)

        main = yaml.safe_load(doc.path.read_text())
        self.assertNotIn("password", main["servers"][0])
        self.assertNotIn("sasl_password", main["chatnets"]["example"])
        self.assertEqual(main["chatnets"]["other"]["autosendcmd"], "/join #chan")
        self.assertEqual(main["settings"]["core"]["real_name"], "Me")

        ext = yaml.safe_load(self.external.path.read_text())
        self.assertEqual(
            ext["servers"],
            [{"address": "irc.example.org", "chatnet": "example", "password": "srvpw"}],
        )
        self.assertEqual(
            ext["chatnets"]["example"],
            {
                "sasl_username": "me",
                "sasl_password": "saslpw",
                "autosendcmd": "/msg NickServ identify nspw",
            },
        )
        self.assertEqual(ext["proxies"], [{"address": "proxy.example.org", "password": "proxypw"}])

    def test_to_external_replaces_previous_content(self) -> None:
        """Test the external file is cleared before migration."""
        self.external.save([CredentialRecord("stale", CredentialContext.SASL_PASSWORD, "old")])
        doc = self.write_config(SAMPLE_CONFIG)
        migrate_to_external(doc, self.external)

        ext = yaml.safe_load(self.external.path.read_text())
        self.assertNotIn("stale", ext["chatnets"])

    def test_round_trip_preserves_ciphertext(self) -> None:
        """Test ciphertext is byte-identical after moving out and back."""
        ciphertext = crypto.encrypt("saslpw", "correct-password")
        data = copy.deepcopy(SAMPLE_CONFIG)
        data["chatnets"]["example"]["sasl_password"] = ciphertext
        doc = self.write_config(data)

        self.assertTrue(migrate_to_external(doc, self.external).success)
        self.assertEqual(
            yaml.safe_load(self.external.path.read_text())["chatnets"]["example"]["sasl_password"],
            ciphertext,
        )

        self.assertTrue(migrate_to_config(doc, self.external).success)
        main = yaml.safe_load(doc.path.read_text())
        self.assertEqual(main["chatnets"]["example"]["sasl_password"], ciphertext)
        self.assertFalse(self.external.exists())

    def test_to_config_merges_by_address_or_chatnet(self) -> None:
        """Test servers match on address or chatnet, case-insensitively."""
        doc = self.write_config(
            {
                "servers": [
                    {"address": "IRC.EXAMPLE.ORG", "port": 6697},
                    {"address": "irc.other.net", "chatnet": "Other"},
                ]
            }
        )
        self.external.path.write_text(
            yaml.safe_dump(
                {
                    "servers": [
                        {"address": "irc.example.org", "password": "pw1"},
                        {"chatnet": "other", "password": "pw2"},
                        {"address": "new.example.org", "chatnet": "new", "tls_pass": "pw3"},
                    ],
                    "chatnets": {"fresh": {"sasl_password": "pw4"}},
                    "proxies": [{"address": "proxy.example.org", "password": "pw5"}],
                }
            )
        )
        result = migrate_to_config(doc, self.external)

        self.assertTrue(result.success)
        self.assertEqual(result.moved, 5)
        servers = doc.data["servers"]
        self.assertEqual(servers[0], {"address": "IRC.EXAMPLE.ORG", "port": 6697, "password": "pw1"})
        self.assertEqual(servers[1]["password"], "pw2")
        self.assertEqual(
            servers[2], {"address": "new.example.org", "chatnet": "new", "tls_pass": "pw3"}
        )
        self.assertEqual(doc.data["chatnets"]["fresh"], {"sasl_password": "pw4"})
        self.assertEqual(doc.data["proxies"], [{"address": "proxy.example.org", "password": "pw5"}])

    def test_to_config_missing_file_moves_nothing(self) -> None:
        """Test migrating back without an external file succeeds with nothing moved."""
        doc = self.write_config({"servers": []})
        result = migrate_to_config(doc, self.external)
        self.assertTrue(result.success)
        self.assertEqual(result.moved, 0)

    def test_to_config_keeps_external_file_on_save_failure(self) -> None:
        """Test the external file survives when the main document cannot be saved."""
        doc = self.write_config({"servers": []})
        self.external.save([CredentialRecord("net", CredentialContext.SASL_PASSWORD, "pw")])

        with patch.object(ConfigDocument, "write", side_effect=ConfigurationError("disk full")):
            with self.assertLogs("credkeep.credentials.migration", level="ERROR") as logs:
                result = migrate_to_config(doc, self.external)

        self.assertFalse(result.success)
        self.assertTrue(result.started)
        self.assertTrue(self.external.exists())
        self.assertIn("inconsistent state", logs.output[0])

    def test_to_external_write_failure_changes_nothing(self) -> None:
        """Test a failed external write leaves the main document intact."""
        doc = self.write_config(SAMPLE_CONFIG)
        with patch.object(
            ExternalCredentialFile, "write_document", side_effect=ExternalFileError("denied")
        ):
            result = migrate_to_external(doc, self.external)

        self.assertFalse(result.success)
        self.assertFalse(result.started)
        self.assertEqual(doc.data["servers"][0]["password"], "srvpw")

    def test_to_external_main_save_failure_reports_inconsistency(self) -> None:
        """Test a failed main save after the external write is reported, not rolled back."""
        doc = self.write_config(SAMPLE_CONFIG)
        original_write = ConfigDocument.write

        def fail_main(document, *args, **kwargs):
            if document.path == self.external.path:
                return original_write(document, *args, **kwargs)
            raise ConfigurationError("disk full")

        with patch.object(ConfigDocument, "write", autospec=True, side_effect=fail_main):
            with self.assertLogs("credkeep.credentials.migration", level="ERROR") as logs:
                result = migrate_to_external(doc, self.external)

        self.assertFalse(result.success)
        self.assertTrue(result.started)
        self.assertTrue(self.external.exists())
        self.assertIn("inconsistent state", logs.output[0])

    def test_to_external_unsaved_document(self) -> None:
        """Test a document never written to disk migrates from memory."""
        doc = ConfigDocument(self.state_dir / "config.yaml", copy.deepcopy(SAMPLE_CONFIG))
        result = migrate_to_external(doc, self.external)

        self.assertTrue(result.success)
        self.assertEqual(result.moved, 5)
        self.assertTrue(doc.path.exists())


if __name__ == "__main__":
    unittest.main()
