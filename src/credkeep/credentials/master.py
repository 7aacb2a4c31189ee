"""
Master password holder.

The master password is the only secret credkeep keeps in memory for the
lifetime of a session. It is stored in a bytearray so that it can be
overwritten with zeros when replaced or cleared.

Note: Python does not guarantee immediate memory clearing due to garbage
collection and string interning. Passing the password in as ``str`` leaves
an immutable copy owned by the caller; passing a bytearray avoids that.
"""

from __future__ import annotations

from credkeep.credentials.crypto import zero_bytes
from credkeep.credentials.models import MasterPasswordRequiredError


class MasterPassword:
    """
    Process-wide master password, absent until set.

    Usage:
        master = MasterPassword()
        master.set("correct-password")
        key_material = master.require()
        master.clear()
    """

    def __init__(self) -> None:
        self._buffer: bytearray | None = None

    def set(self, password: str | bytes | bytearray) -> None:
        """
        Replace the master password, zeroing any previous one.

        Raises:
            ValueError: If the password is empty.
        """
        if isinstance(password, str):
            password = password.encode("utf-8")
        if not password:
            raise ValueError("Master password cannot be empty")

        self.clear()
        self._buffer = bytearray(password)

    def clear(self) -> None:
        """Zero and drop the master password. Safe to call when absent."""
        if self._buffer is not None:
            zero_bytes(self._buffer)
            self._buffer = None

    def is_set(self) -> bool:
        return self._buffer is not None

    def require(self) -> bytearray:
        """
        Return the password buffer for a crypto call.

        The buffer is owned by this object; callers must not keep it.

        Raises:
            MasterPasswordRequiredError: If no master password is set.
        """
        if self._buffer is None:
            raise MasterPasswordRequiredError(
                "Master password not set. Use 'credkeep passwd' to unlock credentials."
            )
        return self._buffer

    def __repr__(self) -> str:
        return f"MasterPassword(set={self.is_set()})"
