import threading
from typing import Dict, Optional

from healthvault.crypto.file_cipher import KEY_SIZE
from healthvault.crypto.key_codec import hex_to_key, key_to_hex
from healthvault.errors import FormatError
from healthvault.utils.logger import logger


class SessionKeyCache:
    """Per-session map of record id -> key, held as hex like the wire format.

    A convenience for avoiding repeated key fetches within one session. It is
    not a security boundary: entries are plaintext in memory and survive a
    revocation until ``clear()`` runs on logout.
    """

    def __init__(self):
        self._keys: Dict[str, str] = {}
        self._lock = threading.Lock()

    def store(self, record_id, key) -> None:
        hex_key = key if isinstance(key, str) else key_to_hex(key)
        # normalized so uppercase input and byte input land on the same entry
        hex_key = key_to_hex(hex_to_key(hex_key, length=KEY_SIZE))
        with self._lock:
            self._keys[str(record_id)] = hex_key
        logger.debug("Cached encryption key for record %s", record_id)

    def get(self, record_id) -> Optional[bytes]:
        with self._lock:
            hex_key = self._keys.get(str(record_id))
        if hex_key is None:
            return None
        try:
            return hex_to_key(hex_key)
        except FormatError:
            logger.error("Discarding unreadable cached key for record %s", record_id)
            self.remove(record_id)
            return None

    def remove(self, record_id) -> None:
        with self._lock:
            self._keys.pop(str(record_id), None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._keys)
            self._keys.clear()
        logger.info("Cleared %d encryption keys from session", count)
        return count

    def __contains__(self, record_id) -> bool:
        with self._lock:
            return str(record_id) in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
