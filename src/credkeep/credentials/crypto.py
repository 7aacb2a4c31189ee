"""
Cryptographic primitives for credential values.

Each credential value is encrypted independently with AES-256-CBC under a
key derived from the master password with PBKDF2-HMAC-SHA256. A fresh
random salt and IV are generated per value, so encrypting the same
plaintext twice never produces the same output.

Serialized format:
    hex(salt, 32 bytes) ":" hex(iv, 16 bytes) ":" base64(ciphertext)

A value without any ":" is treated as legacy plaintext by decrypt().

Security Notes:
    - The derived key is held in a bytearray and zeroed after use. Python
      does not guarantee that no other copy survives in memory; this is a
      best-effort reduction of the exposure window.
    - CBC without a MAC gives no integrity guarantee. A wrong password
      normally surfaces as a padding failure, which is reported exactly
      like malformed input.
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credkeep.credentials.models import DecryptionError, EncryptionError

# Security parameters - changing these breaks existing ciphertexts
PBKDF2_ITERATIONS = 100_000
SALT_LENGTH = 32  # 256 bits
IV_LENGTH = 16  # AES block size
KEY_LENGTH = 32  # AES-256
SEPARATOR = ":"

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_BASE64_RE = re.compile(r"(?:[A-Za-z0-9+/]{4})+(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?")

Password = str | bytes | bytearray


def generate_random_bytes(length: int) -> bytes:
    """
    Return ``length`` cryptographically secure random bytes.

    Raises:
        EncryptionError: If the operating system random source is unavailable.
    """
    try:
        return secrets.token_bytes(length)
    except (NotImplementedError, OSError) as e:
        raise EncryptionError(f"Secure random source unavailable: {e}") from e


def derive_key(
    password: Password,
    salt: bytes,
    iterations: int | None = None,
    key_length: int = KEY_LENGTH,
) -> bytearray:
    """
    Derive a symmetric key from a password using PBKDF2-HMAC-SHA256.

    Args:
        password: Master password (str is UTF-8 encoded).
        salt: Random salt bytes.
        iterations: PBKDF2 iteration count. Defaults to PBKDF2_ITERATIONS.
        key_length: Length of the derived key in bytes.

    Returns:
        The derived key as a bytearray so the caller can zero it.

    Raises:
        EncryptionError: If key derivation fails.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")

    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=key_length,
            salt=salt,
            iterations=iterations or PBKDF2_ITERATIONS,
        )
        return bytearray(kdf.derive(password))
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Key derivation failed: {e}") from e


def zero_bytes(buffer: bytearray) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    buffer[:] = bytes(len(buffer))


def encrypt(plaintext: str, password: Password) -> str:
    """
    Encrypt a credential value.

    Args:
        plaintext: Value to encrypt.
        password: Master password.

    Returns:
        Serialized ciphertext ``salt_hex:iv_hex:ciphertext_b64``.

    Raises:
        EncryptionError: If random generation, key derivation, or the
            cipher fails.
    """
    salt = generate_random_bytes(SALT_LENGTH)
    iv = generate_random_bytes(IV_LENGTH)
    key = derive_key(password, salt)

    try:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Encryption failed: {e}") from e
    finally:
        zero_bytes(key)

    return SEPARATOR.join(
        (salt.hex(), iv.hex(), base64.b64encode(ciphertext).decode("ascii"))
    )


def decrypt(serialized: str, password: Password) -> str:
    """
    Decrypt a serialized credential value.

    Values containing no separator are returned unchanged: they predate
    encryption and are plaintext.

    Args:
        serialized: Output of encrypt(), or legacy plaintext.
        password: Master password.

    Returns:
        The decrypted plaintext.

    Raises:
        DecryptionError: If the value is malformed or the password is wrong.
    """
    if SEPARATOR not in serialized:
        return serialized

    salt, iv, ciphertext = _split(serialized)
    key = derive_key(password, salt)

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError:
        # Covers bad block length, bad padding, and non-UTF-8 output alike
        raise DecryptionError("Cannot decrypt value (wrong password or corrupt data)") from None
    finally:
        zero_bytes(key)


def looks_encrypted(value: str | None) -> bool:
    """
    Check whether a value has the exact shape of a serialized ciphertext.

    This is stricter than the separator test used by decrypt(): a plaintext
    such as ``"pass:word"`` is not mistaken for ciphertext.
    """
    if not value or value.count(SEPARATOR) != 2:
        return False

    salt_hex, iv_hex, body = value.split(SEPARATOR)
    if len(salt_hex) != SALT_LENGTH * 2 or len(iv_hex) != IV_LENGTH * 2:
        return False
    if not (_HEX_RE.fullmatch(salt_hex) and _HEX_RE.fullmatch(iv_hex)):
        return False
    if not _BASE64_RE.fullmatch(body):
        return False

    return len(base64.b64decode(body)) % IV_LENGTH == 0


def _split(serialized: str) -> tuple[bytes, bytes, bytes]:
    """Parse the three fields of a serialized value."""
    parts = serialized.split(SEPARATOR, 2)
    if len(parts) != 3 or not all(parts):
        raise DecryptionError("Malformed encrypted value: expected salt:iv:data")

    salt_hex, iv_hex, body = parts
    if not (_HEX_RE.fullmatch(salt_hex) and _HEX_RE.fullmatch(iv_hex)):
        raise DecryptionError("Malformed encrypted value: salt and IV must be hex")

    salt = bytes.fromhex(salt_hex) if len(salt_hex) % 2 == 0 else b""
    iv = bytes.fromhex(iv_hex) if len(iv_hex) % 2 == 0 else b""
    if len(salt) != SALT_LENGTH or len(iv) != IV_LENGTH:
        raise DecryptionError(
            f"Malformed encrypted value: salt must be {SALT_LENGTH} bytes "
            f"and IV {IV_LENGTH} bytes"
        )

    try:
        ciphertext = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError("Malformed encrypted value: data is not base64") from None

    return salt, iv, ciphertext
