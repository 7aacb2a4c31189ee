"""
Command-line interface for credkeep.

Provides commands to inspect and manage the credentials of a chat client
configuration: unlocking with the master password, listing, migrating
between the main configuration and the external file, and toggling
encryption at rest.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import NoReturn

from credkeep import __version__
from credkeep.config.settings import ConfigurationError
from credkeep.credentials import crypto
from credkeep.credentials.manager import CredentialManager
from credkeep.credentials.models import (
    CredentialContext,
    CredentialError,
    MigrationError,
    StorageMode,
    string_to_context,
)

logger = logging.getLogger(__name__)

MASTER_PASSWORD_ENV = "CREDKEEP_MASTER_PASSWORD"

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_verbose(message: str, level: int = 1) -> None:
    """
    Print a verbose message only if verbosity is high enough.

    Args:
        message: The message to print.
        level: Required verbosity level to show this message.
    """
    if _verbose_level >= level and not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def context_argument(value: str) -> CredentialContext:
    """argparse type for credential context names."""
    try:
        return string_to_context(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the credkeep CLI."""
    parser = argparse.ArgumentParser(
        prog="credkeep",
        description="Credential storage and encryption for chat client configuration",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"credkeep {__version__}",
    )

    parser.add_argument(
        "--home",
        metavar="PATH",
        help="Override state directory (default: $CREDKEEP_HOME or ~/.credkeep)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show credential management status",
        description="Display storage mode, external file, encryption and master password state.",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List stored credentials (values masked)",
        description="List every credential in the active storage location.",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    list_parser.set_defaults(func=cmd_list)

    # passwd command
    passwd_parser = subparsers.add_parser(
        "passwd",
        help="Unlock credentials with the master password",
        description=(
            "Set the master password for this session and check which "
            f"credentials it unlocks. Reads ${MASTER_PASSWORD_ENV} if set."
        ),
    )
    passwd_parser.set_defaults(func=cmd_passwd)

    # migrate command
    migrate_parser = subparsers.add_parser(
        "migrate",
        help="Move credentials between config and external file",
        description="Switch storage mode, moving credential fields to the new location.",
    )
    migrate_parser.add_argument(
        "target",
        choices=[mode.value for mode in StorageMode],
        help="Where credentials should live",
    )
    migrate_parser.set_defaults(func=cmd_migrate)

    # encrypt command
    encrypt_parser = subparsers.add_parser(
        "encrypt",
        help="Enable encryption of stored credentials",
    )
    encrypt_parser.set_defaults(func=cmd_encrypt)

    # decrypt command
    decrypt_parser = subparsers.add_parser(
        "decrypt",
        help="Disable encryption and store credentials in plaintext",
    )
    decrypt_parser.set_defaults(func=cmd_decrypt)

    # export-decrypted command
    export_parser = subparsers.add_parser(
        "export-decrypted",
        help="Write a decrypted copy of the configuration",
        description="Write config.decrypted (owner-only) next to the configuration file.",
    )
    export_parser.set_defaults(func=cmd_export_decrypted)

    # reload command
    reload_parser = subparsers.add_parser(
        "reload",
        help="Reload the external credentials file",
    )
    reload_parser.set_defaults(func=cmd_reload)

    # set command
    set_parser = subparsers.add_parser(
        "set",
        help="Store a credential (external storage mode)",
        description="Store a credential in the external file. Prompts for the value if omitted.",
    )
    set_parser.add_argument("network", help="Network, server address or proxy address")
    set_parser.add_argument(
        "context",
        type=context_argument,
        help=", ".join(context.value for context in CredentialContext),
    )
    set_parser.add_argument("value", nargs="?", help="Credential value")
    set_parser.set_defaults(func=cmd_set)

    # remove command
    remove_parser = subparsers.add_parser(
        "remove",
        help="Remove a credential (external storage mode)",
    )
    remove_parser.add_argument("network", help="Network, server address or proxy address")
    remove_parser.add_argument("context", type=context_argument, help="Credential context")
    remove_parser.set_defaults(func=cmd_remove)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def open_manager(args: argparse.Namespace) -> CredentialManager:
    """Create and initialize a manager for the selected state directory."""
    state_dir = Path(args.home).expanduser() if args.home else None
    manager = CredentialManager(state_dir)
    manager.init()

    # -v and -q take precedence over the configured level
    if not args.verbose and not args.quiet:
        logging.getLogger().setLevel(manager.settings.log_level)

    output_verbose(f"Configuration: {manager.document.path}")
    output_verbose(f"External credentials file: {manager.external.path}")
    return manager


def read_master_password(confirm: bool = False) -> str:
    """
    Get the master password from the environment or a prompt.

    Args:
        confirm: Ask twice when prompting.

    Raises:
        CredentialError: If the password is empty or the confirmation differs.
    """
    password = os.environ.get(MASTER_PASSWORD_ENV)
    if password:
        return password

    password = getpass.getpass("Master password: ")
    if not password:
        raise CredentialError("Master password cannot be empty")
    if confirm and getpass.getpass("Confirm master password: ") != password:
        raise CredentialError("Passwords do not match")
    return password


def unlock(manager: CredentialManager, confirm: bool = False) -> None:
    """Prompt for the master password and unlock the manager's credentials."""
    manager.set_master_password(read_master_password(confirm=confirm))


def mask(context: CredentialContext, stored_value: str) -> str:
    """Display form of a stored value; only SASL usernames are shown."""
    if crypto.looks_encrypted(stored_value):
        return "<encrypted>"
    if context is CredentialContext.SASL_USERNAME:
        return stored_value
    return "*" * 8


def cmd_status(args: argparse.Namespace) -> int:
    """Show credential management status."""
    manager = open_manager(args)
    try:
        status = manager.status()
        warnings = manager.security_warnings()

        if args.json:
            output(json.dumps({**status, "warnings": warnings}, indent=2), force=True)
            return 0

        output("Credential Management Status")
        output("=" * 50)
        output(f"  Storage mode:      {status['storage_mode']}")
        output(f"  External file:     {status['external_file']}")
        output(f"  Config encryption: {'ON' if status['config_encrypt'] else 'OFF'}")
        output(f"  Master password:   {'SET' if status['master_password_set'] else 'NOT SET'}")
        output(f"  Credentials:       {status['credentials']}")
        for warning in warnings:
            output()
            output(f"WARNING: {warning}")
        return 0
    finally:
        manager.deinit()


def cmd_list(args: argparse.Namespace) -> int:
    """List stored credentials with masked values."""
    manager = open_manager(args)
    try:
        records = manager.list_credentials()

        if args.json:
            rows = [
                {
                    "network": record.network,
                    "context": record.context.value,
                    "value": mask(record.context, record.stored_value),
                    "encrypted": crypto.looks_encrypted(record.stored_value),
                }
                for record in records
            ]
            output(json.dumps(rows, indent=2), force=True)
            return 0

        location = (
            str(manager.external.path)
            if manager.storage_mode is StorageMode.EXTERNAL
            else str(manager.document.path)
        )
        output(f"Credentials in {location}:")
        if not records:
            output("  (none)")
            return 0

        for record in records:
            output(
                f"  {record.network:<30} {record.context.value:<16} "
                f"{mask(record.context, record.stored_value)}"
            )
        output()
        output(f"Total: {len(records)} credentials")
        return 0
    finally:
        manager.deinit()


def cmd_passwd(args: argparse.Namespace) -> int:
    """Unlock credentials with the master password."""
    manager = open_manager(args)
    try:
        unlock(manager)
        output("Master password set. Unlocking credentials...")

        locked = manager.unreadable_credentials()
        if locked:
            output_error(
                f"{len(locked)} credentials could not be decrypted "
                "(wrong password or corrupt data):"
            )
            for record in locked:
                output_error(f"  {record.network} ({record.context.value})")
            return 1

        output("All credentials are readable.")
        return 0
    finally:
        manager.deinit()


def cmd_migrate(args: argparse.Namespace) -> int:
    """Move credentials to the requested storage location."""
    target = StorageMode.parse(args.target)
    manager = open_manager(args)
    try:
        output(f"Migrating credentials to {target.value} storage...")
        try:
            result = manager.migrate(target)
        except MigrationError as e:
            output_error(f"Migration failed: {e}")
            return 1

        output(f"Moved {result.moved} credential fields.")
        return 0
    finally:
        manager.deinit()


def cmd_encrypt(args: argparse.Namespace) -> int:
    """Enable encryption of stored credentials."""
    manager = open_manager(args)
    try:
        if manager.config_encrypt:
            output("Encryption is already enabled. Credentials are encrypted.")
            return 0

        unlock(manager, confirm=True)
        if not manager.encrypt_config():
            output_error("Failed to enable encryption")
            return 1

        output("Credentials encrypted.")
        return 0
    finally:
        manager.deinit()


def cmd_decrypt(args: argparse.Namespace) -> int:
    """Disable encryption and store credentials in plaintext."""
    manager = open_manager(args)
    try:
        if not manager.config_encrypt:
            output("Encryption is already disabled. Credentials are in plaintext.")
            return 0

        unlock(manager)
        locked = manager.unreadable_credentials()
        if locked:
            output_error(
                f"{len(locked)} credentials cannot be decrypted with this password. "
                "Encryption left enabled."
            )
            return 1

        manager.disable_encryption()
        output("Credentials decrypted.")
        return 0
    finally:
        manager.deinit()


def cmd_export_decrypted(args: argparse.Namespace) -> int:
    """Write a decrypted copy of the configuration."""
    manager = open_manager(args)
    try:
        unlock(manager)
        path = manager.decrypt_config()
        output(f"Decrypted configuration written to: {path}")
        output("This file contains plaintext credentials. Delete it when done.")
        return 0
    finally:
        manager.deinit()


def cmd_reload(args: argparse.Namespace) -> int:
    """Reload the external credentials file."""
    manager = open_manager(args)
    try:
        if not manager.external_reload():
            output_error("Failed to reload external credentials")
            return 1
        output(f"Reloaded {len(manager.list())} credentials from {manager.external.path}")
        return 0
    finally:
        manager.deinit()


def cmd_set(args: argparse.Namespace) -> int:
    """Store a credential in the external file."""
    manager = open_manager(args)
    try:
        if manager.storage_mode is not StorageMode.EXTERNAL:
            output_error(
                "In config storage mode credentials live in the server and network "
                "definitions. Run 'credkeep migrate external' to manage them here."
            )
            return 1

        value = args.value
        if value is None:
            value = getpass.getpass(f"{args.context.value} for {args.network}: ")
        if not value:
            output_error("Credential value cannot be empty")
            return 1

        if manager.config_encrypt:
            unlock(manager)

        if not manager.set(args.network, args.context, value):
            output_error("Failed to store credential")
            return 1

        output(f"Stored {args.context.value} for {args.network}.")
        return 0
    finally:
        manager.deinit()


def cmd_remove(args: argparse.Namespace) -> int:
    """Remove a credential from the external file."""
    manager = open_manager(args)
    try:
        if manager.storage_mode is not StorageMode.EXTERNAL:
            output_error("Credentials can only be removed here in external storage mode.")
            return 1

        if not manager.remove(args.network, args.context):
            output_error(f"No {args.context.value} stored for {args.network}")
            return 1

        output(f"Removed {args.context.value} for {args.network}.")
        return 0
    finally:
        manager.deinit()


def main() -> NoReturn:
    """Main entry point for the credkeep CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
