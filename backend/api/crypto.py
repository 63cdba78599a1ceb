"""
Credential encryption.

Marketplace credentials are stored as `salt:iv:authTag:ciphertext`, each part
lowercase hex. A fresh salt and IV are drawn per encryption; the AES-256 key
is derived from the ENCRYPTION_KEY secret with PBKDF2-HMAC-SHA256, and
AES-GCM authenticates the ciphertext so tampering is detected on decrypt.
"""

import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from api.config import settings

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


class CryptoError(Exception):
    """Base class for credential crypto failures."""


class EncryptionKeyMissingError(CryptoError):
    def __init__(self):
        super().__init__("ENCRYPTION_KEY environment variable is not set")


class DecryptionError(CryptoError):
    pass


class InvalidEncryptedFormatError(DecryptionError):
    def __init__(self, message: str = "Invalid encrypted data format"):
        super().__init__(message)


def _secret(key: Optional[str]) -> bytes:
    # Read at call time: a missing key only fails the operation that needs it
    secret = key if key is not None else settings.encryption_key
    if not secret:
        raise EncryptionKeyMissingError()
    return secret.encode('utf-8')


def derive_key(secret: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret)


def encrypt(plaintext: str, key: Optional[str] = None) -> str:
    """
    Encrypt a string for storage.

    Two calls with the same plaintext never produce the same output.

    Raises:
        EncryptionKeyMissingError: No key passed and ENCRYPTION_KEY unset
    """
    secret = _secret(key)
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)

    sealed = AESGCM(derive_key(secret, salt)).encrypt(iv, plaintext.encode('utf-8'), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return ':'.join(part.hex() for part in (salt, iv, tag, ciphertext))


def _split(blob: str) -> Tuple[bytes, bytes, bytes, bytes]:
    parts = (blob or '').split(':')
    if len(parts) != 4:
        raise InvalidEncryptedFormatError()
    try:
        salt, iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError:
        raise InvalidEncryptedFormatError("Invalid encrypted data format: parts must be hex")
    if len(salt) != SALT_LENGTH or len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise InvalidEncryptedFormatError()
    return salt, iv, tag, ciphertext


def decrypt(blob: str, key: Optional[str] = None) -> str:
    """
    Decrypt a `salt:iv:authTag:ciphertext` blob.

    Raises:
        EncryptionKeyMissingError: No key passed and ENCRYPTION_KEY unset
        InvalidEncryptedFormatError: Not four hex parts of the expected sizes
        DecryptionError: Authentication failed (tampered data or wrong key)
    """
    salt, iv, tag, ciphertext = _split(blob)
    secret = _secret(key)

    try:
        plaintext = AESGCM(derive_key(secret, salt)).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode('utf-8')
    except (InvalidTag, UnicodeDecodeError):
        raise DecryptionError("Failed to decrypt credentials")


def encrypt_credentials(email: str, cookie: str, key: Optional[str] = None) -> Tuple[str, str]:
    return encrypt(email, key), encrypt(cookie, key)


def decrypt_credentials(encrypted_email: str, encrypted_cookie: str, key: Optional[str] = None) -> Tuple[str, str]:
    return decrypt(encrypted_email, key), decrypt(encrypted_cookie, key)
