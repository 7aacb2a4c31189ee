"""
Sensitivity classifier for configuration fields.

Decides whether a configuration key/value pair carries a credential. Field
names are matched against a fixed list; free-form auto-connect commands are
matched against known credential-bearing command substrings.

The autosendcmd pattern list is necessarily incomplete. Over-protecting a
harmless field is acceptable; missing a credential is not, so new services
should be added here rather than special-cased elsewhere.
"""

from __future__ import annotations

from typing import Any

from credkeep.credentials.crypto import looks_encrypted

SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "sasl_password",
        "sasl_username",
        "proxy_password",
        "irssiproxy_password",
        "oper_password",
        "tls_pass",
        "autosendcmd",
        "fe_web_password",
    }
)

AUTOSENDCMD_FIELD = "autosendcmd"

AUTOSENDCMD_PATTERNS: tuple[str, ...] = (
    "NickServ identify",
    "Q@CServe.quakenet.org AUTH",
    "NS IDENTIFY",
    "MSG NickServ",
    "PRIVMSG NickServ",
    "PRIVMSG Q@CServe.quakenet.org",
)


# Credential-bearing fields per configuration section. These are the fields
# the hooks encrypt/decrypt/strip and the migration engine relocates.
SECTION_FIELDS: dict[str, tuple[str, ...]] = {
    "servers": ("password", "tls_pass", "oper_password"),
    "chatnets": ("sasl_username", "sasl_password", "autosendcmd"),
    "proxies": ("password",),
}


def is_autosendcmd_sensitive(command: str) -> bool:
    """Check whether an auto-connect command contains a known login command.

    Matching ignores case, since servers accept commands and service nicks
    in any case.
    """
    folded = command.casefold()
    return any(pattern.casefold() in folded for pattern in AUTOSENDCMD_PATTERNS)


def is_sensitive_field(key: str, value: str | None = None) -> bool:
    """
    Check whether a configuration field is credential-bearing.

    Args:
        key: Configuration key (case-insensitive).
        value: Field value. Only consulted for ``autosendcmd``, which is
            sensitive only when it contains a known login command.

    Returns:
        True if the field should be protected.
    """
    name = key.lower()
    if name == AUTOSENDCMD_FIELD:
        return value is not None and is_autosendcmd_sensitive(value)
    return name in SENSITIVE_FIELDS


def credential_fields(section: str, block: dict[str, Any]) -> list[tuple[str, str]]:
    """
    List the credential-bearing fields present in a configuration block.

    An ``autosendcmd`` that is already encrypted counts as credential-bearing
    even though its content can no longer be inspected.

    Args:
        section: Section name (servers, chatnets, proxies).
        block: One block of that section.

    Returns:
        (field, value) pairs for non-empty credential fields.
    """
    found = []
    for name in SECTION_FIELDS.get(section, ()):
        value = block.get(name)
        if value is None or isinstance(value, (dict, list)):
            continue
        value = str(value)
        if not value:
            continue
        if is_sensitive_field(name, value) or looks_encrypted(value):
            found.append((name, value))
    return found
