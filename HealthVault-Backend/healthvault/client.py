"""
HTTP client for the patient and doctor side of HealthVault.

Encryption and decryption happen here, never on the server. Keys obtained
during a session are kept in the :class:`SessionKeyCache` handed to the
client; call :meth:`HealthVaultClient.logout` to drop them.

Key lookup order when opening a record:

1. the session cache;
2. the recovery key in the record's metadata (only returned to the owner);
3. for doctors, the escrow endpoint, which the server gates on an active grant.
"""
import json

import requests

from healthvault.crypto.envelope import EncryptedFileEnvelope, FileBlob
from healthvault.crypto.key_codec import hex_to_key, key_to_hex
from healthvault.errors import (
    AuthenticationError,
    AuthorizationError,
    FormatError,
    InvalidTransitionError,
    KeyUnavailableError,
)
from healthvault.services.session_key_cache import SessionKeyCache
from healthvault.utils.logger import logger

DEFAULT_TIMEOUT = 30

_STATUS_ERRORS = {
    403: AuthorizationError,
    409: InvalidTransitionError,
    422: FormatError,
}


class HealthVaultClient:

    def __init__(self, base_url: str, token: str, role: str, key_cache: SessionKeyCache,
                 session=None, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.role = role
        self.key_cache = key_cache
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {token}"}

    # ------------------------------------------------------------ plumbing

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _check(self, response, not_found=None):
        if response.status_code < 400:
            return response
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None
        error_cls = _STATUS_ERRORS.get(response.status_code)
        if response.status_code == 404 and not_found is not None:
            error_cls = not_found
        if error_cls is not None:
            raise error_cls(detail if isinstance(detail, str) else None)
        raise requests.HTTPError(f"{response.status_code} error from HealthVault: {detail}")

    def _get(self, path: str, not_found=None):
        response = self.session.get(self._url(path), headers=self.headers, timeout=self.timeout)
        return self._check(response, not_found=not_found)

    def _put(self, path: str, body=None):
        return self._check(self.session.put(self._url(path), json=body, headers=self.headers, timeout=self.timeout))

    def _post(self, path: str, **kwargs):
        return self._check(self.session.post(self._url(path), headers=self.headers, timeout=self.timeout, **kwargs))

    # ------------------------------------------------------------ records

    def upload_record(self, content: bytes, name: str, mime_type: str, category: str,
                      store_recovery_key: bool = False) -> dict:
        """Seal a file locally and upload the ciphertext.

        The key stays in the session cache. With ``store_recovery_key`` a
        copy is also persisted server-side so the record survives session
        loss and can be escrowed without the client's help.
        """
        sealed = EncryptedFileEnvelope.seal(FileBlob(content=content, name=name, mime_type=mime_type))
        data = {
            "category": category,
            "iv": json.dumps(sealed.metadata["iv"]),
            "original_file_name": sealed.metadata["originalName"],
            "original_file_type": sealed.metadata["originalType"],
        }
        if store_recovery_key:
            data["encryption_key"] = key_to_hex(sealed.key)
        files = {"file": (sealed.encrypted_file.name, sealed.encrypted_file.content, sealed.encrypted_file.mime_type)}
        record = self._post("/records/upload", data=data, files=files).json()
        self.key_cache.store(record["id"], sealed.key)
        return record

    def list_records(self, patient_id: int) -> list:
        return self._get(f"/records/patient/{patient_id}").json()

    def fetch_ciphertext(self, record: dict) -> bytes:
        return self._get(record["fileUrl"]).content

    def obtain_key(self, record: dict) -> bytes:
        record_id = record["id"]
        key = self.key_cache.get(record_id)
        if key is not None:
            return key

        metadata = record.get("encryptionMetadata") or {}
        if metadata.get("encryptionKey"):
            key = hex_to_key(metadata["encryptionKey"])
        elif self.role == "doctor":
            entry = self.fetch_key(record["patientId"], record_id)
            key = hex_to_key(entry["key"])
        else:
            raise KeyUnavailableError()

        self.key_cache.store(record_id, key)
        return key

    def open_record(self, record: dict) -> FileBlob:
        metadata = record.get("encryptionMetadata")
        if not metadata or not record.get("decryptable", True):
            logger.warning("Record %s cannot be decrypted: metadata missing", record.get("id"))
            raise FormatError("Cannot decrypt: encryption metadata is missing")
        key = self.obtain_key(record)
        encrypted = FileBlob(
            content=self.fetch_ciphertext(record),
            name=record["fileName"],
            mime_type=record.get("fileType") or "application/octet-stream",
        )
        try:
            return EncryptedFileEnvelope.open(encrypted, key, metadata)
        except AuthenticationError:
            # a stale cached key must not be retried forever
            self.key_cache.remove(record["id"])
            raise

    # ------------------------------------------------------------ access requests

    def request_access(self, patient_qr_code: str) -> dict:
        return self._post("/access-requests", json={"patientQRCode": patient_qr_code}).json()

    def pending_requests(self) -> list:
        return self._get(f"/access-requests/{self.role}/pending").json()

    def grant(self, request_id: int, patient_id: int) -> dict:
        """Grant a request, forwarding cached keys for records without a recovery copy."""
        supplied = []
        for record in self.list_records(patient_id):
            key = self.key_cache.get(record["id"])
            if key is not None:
                supplied.append({"recordId": record["id"], "key": key_to_hex(key)})
        return self._put(f"/access-requests/{request_id}/grant", body={"encryptionKeys": supplied}).json()

    def deny(self, request_id: int) -> dict:
        return self._put(f"/access-requests/{request_id}/deny").json()

    def revoke(self, request_id: int) -> dict:
        return self._put(f"/access-requests/{request_id}/revoke").json()

    def fetch_key(self, patient_id: int, record_id: int) -> dict:
        """Fetch one record's key; a missing record or key raises :class:`KeyUnavailableError`."""
        return self._get(f"/access-requests/patient/{patient_id}/keys/{record_id}",
                         not_found=KeyUnavailableError).json()

    def load_bundle(self, request_id: int) -> int:
        """Pre-warm the cache from a granted request's escrow bundle."""
        entries = self._get(f"/access-requests/{request_id}/keys").json()["encryptionKeys"]
        for entry in entries:
            self.key_cache.store(entry["recordId"], entry["key"])
        return len(entries)

    def logout(self) -> None:
        self.key_cache.clear()