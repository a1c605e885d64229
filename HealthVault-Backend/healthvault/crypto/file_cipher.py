from typing import Tuple
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from healthvault.errors import AuthenticationError, FormatError

#: AES-256
KEY_SIZE = 32
#: 96-bit nonce for GCM
IV_SIZE = 12


def generate_key() -> bytes:
    """Return a fresh 256-bit key from the OS CSPRNG."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def _cipher_for(key: bytes) -> AESGCM:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise FormatError("Encryption key must be 32 bytes")
    return AESGCM(bytes(key))


def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt with AES-GCM under a newly drawn IV.

    Returns ``(ciphertext, iv)``; the 16-byte tag is appended to the
    ciphertext. The IV is never taken from the caller.
    """
    aesgcm = _cipher_for(key)
    iv = os.urandom(IV_SIZE)
    return aesgcm.encrypt(iv, bytes(plaintext), None), iv


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    aesgcm = _cipher_for(key)
    if len(iv) != IV_SIZE:
        raise FormatError("IV must be 12 bytes")
    try:
        return aesgcm.decrypt(bytes(iv), bytes(ciphertext), None)
    except InvalidTag:
        raise AuthenticationError()
