"""Wire representation of key material and IVs.

Keys cross every serialization boundary (JSON, database, escrow bundle) as
lowercase hex. IVs travel as arrays of byte values, matching how they are
embedded in record metadata.
"""
import binascii
import string

from healthvault.errors import FormatError

_HEX_DIGITS = frozenset(string.hexdigits)


def key_to_hex(key: bytes) -> str:
    if not isinstance(key, (bytes, bytearray, memoryview)):
        raise FormatError("Key must be a byte buffer")
    return bytes(key).hex()


def hex_to_key(hex_str: str, length: int = None) -> bytes:
    if not isinstance(hex_str, str):
        raise FormatError("Key must be a hex string")
    if len(hex_str) % 2:
        raise FormatError("Hex key has odd length")
    # bytes.fromhex tolerates whitespace, the wire format does not
    if not _HEX_DIGITS.issuperset(hex_str):
        raise FormatError("Hex key contains non-hex characters")
    try:
        key = bytes.fromhex(hex_str)
    except (ValueError, binascii.Error):
        raise FormatError("Hex key could not be decoded")
    if length is not None and len(key) != length:
        raise FormatError(f"Key must be {length} bytes long")
    return key


def iv_to_list(iv: bytes) -> list:
    return list(bytes(iv))


def iv_from_list(values, length: int = None) -> bytes:
    if not isinstance(values, (list, tuple)):
        raise FormatError("IV must be an array of byte values")
    for value in values:
        # bool is an int subclass; true/false in JSON is still malformed
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
            raise FormatError("IV contains a value outside 0-255")
    if length is not None and len(values) != length:
        raise FormatError(f"IV must be {length} bytes long")
    return bytes(values)
