import threading

import pytest

from healthvault.crypto import file_cipher
from healthvault.errors import FormatError
from healthvault.services.session_key_cache import SessionKeyCache


def test_store_and_get_bytes_or_hex():
    cache = SessionKeyCache()
    key = file_cipher.generate_key()
    cache.store(7, key)
    cache.store("8", key.hex())

    assert cache.get(7) == key
    assert cache.get("7") == key
    assert cache.get(8) == key
    assert 7 in cache
    assert len(cache) == 2


def test_missing_entry_returns_none():
    assert SessionKeyCache().get(42) is None


def test_store_rejects_malformed_hex():
    with pytest.raises(FormatError):
        SessionKeyCache().store(1, "not-hex")


@pytest.mark.parametrize("bad", ["ab" * 16, "ab" * 33, b"short"])
def test_store_rejects_wrong_key_length(bad):
    cache = SessionKeyCache()
    with pytest.raises(FormatError):
        cache.store(1, bad)
    assert 1 not in cache


def test_uppercase_hex_is_stored_lowercase():
    cache = SessionKeyCache()
    key = file_cipher.generate_key()
    cache.store(3, key.hex().upper())

    assert cache._keys["3"] == key.hex()
    assert cache.get(3) == key


def test_clear_drops_everything():
    cache = SessionKeyCache()
    for i in range(5):
        cache.store(i, file_cipher.generate_key())

    assert cache.clear() == 5
    assert len(cache) == 0
    assert cache.get(0) is None


def test_concurrent_writers():
    cache = SessionKeyCache()
    keys = {i: file_cipher.generate_key() for i in range(200)}

    def writer(ids):
        for i in ids:
            cache.store(i, keys[i])

    threads = [threading.Thread(target=writer, args=(range(n, 200, 4),)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 200
    assert all(cache.get(i) == keys[i] for i in keys)
