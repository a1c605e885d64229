"""Opaque ciphertext storage on the local filesystem.

Blobs are addressed by the URL returned from ``save``; the server never
inspects their contents.
"""
import os
import re
import time
import uuid

from healthvault.config import UPLOAD_DIR, MAX_UPLOAD_BYTES
from healthvault.utils.logger import logger

URL_PREFIX = "/files"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BlobTooLargeError(ValueError):
    pass


class EmptyBlobError(ValueError):
    pass


class LocalBlobStore:

    def __init__(self, root: str = UPLOAD_DIR, max_bytes: int = MAX_UPLOAD_BYTES):
        self.root = root
        self.max_bytes = max_bytes
        os.makedirs(self.root, exist_ok=True)

    @staticmethod
    def stored_name_for(file_name: str) -> str:
        base = _UNSAFE_CHARS.sub("_", os.path.basename(file_name or "")).strip("._") or "file"
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{base}"

    def save(self, file_name: str, data: bytes) -> str:
        if not data:
            raise EmptyBlobError("Empty file")
        if len(data) > self.max_bytes:
            raise BlobTooLargeError("File exceeds the upload size limit")
        stored_name = self.stored_name_for(file_name)
        with open(self._path(stored_name), "wb") as f:
            f.write(data)
        logger.info("Stored blob %s (%d bytes)", stored_name, len(data))
        return f"{URL_PREFIX}/{stored_name}"

    def path_for_url(self, file_url: str) -> str:
        return self._path(file_url.rsplit("/", 1)[-1])

    def read(self, stored_name: str) -> bytes:
        with open(self._path(stored_name), "rb") as f:
            return f.read()

    def delete_url(self, file_url: str) -> None:
        path = self.path_for_url(file_url)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning("Blob for %s was already gone", file_url)

    def _path(self, stored_name: str) -> str:
        if os.path.basename(stored_name) != stored_name or stored_name in ("", ".", ".."):
            raise FileNotFoundError(stored_name)
        return os.path.join(self.root, stored_name)


_store = None


def get_blob_store() -> LocalBlobStore:
    global _store
    if _store is None:
        _store = LocalBlobStore()
    return _store
