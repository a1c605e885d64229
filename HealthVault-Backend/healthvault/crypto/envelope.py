"""
Envelope around :mod:`healthvault.crypto.file_cipher`.

``seal`` turns a plaintext file into an opaque blob plus the metadata needed
to decrypt it later; ``open`` reverses it and restores the original name and
MIME type so downstream viewers render the file correctly.
"""
from dataclasses import dataclass

from healthvault.crypto import file_cipher
from healthvault.crypto.key_codec import iv_from_list, iv_to_list
from healthvault.errors import FormatError

OPAQUE_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class FileBlob:
    content: bytes
    name: str
    mime_type: str


@dataclass(frozen=True)
class SealedFile:
    encrypted_file: FileBlob
    metadata: dict
    # Returned apart from metadata so it is never persisted by accident.
    key: bytes


class EncryptedFileEnvelope:

    @staticmethod
    def seal(file: FileBlob) -> SealedFile:
        key = file_cipher.generate_key()
        ciphertext, iv = file_cipher.encrypt(file.content, key)
        encrypted = FileBlob(content=ciphertext, name=file.name, mime_type=OPAQUE_MIME_TYPE)
        metadata = {
            "iv": iv_to_list(iv),
            "originalName": file.name,
            "originalType": file.mime_type,
        }
        return SealedFile(encrypted_file=encrypted, metadata=metadata, key=key)

    @staticmethod
    def open(encrypted_file: FileBlob, key: bytes, metadata: dict) -> FileBlob:
        if not metadata or "iv" not in metadata:
            raise FormatError("Encryption metadata is missing")
        iv = iv_from_list(metadata["iv"], length=file_cipher.IV_SIZE)
        plaintext = file_cipher.decrypt(encrypted_file.content, key, iv)
        return FileBlob(
            content=plaintext,
            name=metadata.get("originalName") or encrypted_file.name,
            mime_type=metadata.get("originalType") or OPAQUE_MIME_TYPE,
        )
