"""Consent-gated distribution of per-record keys to doctors.

Two paths hand key material to a doctor:

* the bundle stored on a request when the patient grants it, a pre-warmed
  copy of every key that existed at grant time;
* ``fetch_key_for``, a per-record lookup that also covers records uploaded
  after the grant. This is the authoritative path.

Both require the most recent request between the doctor and the patient to be
``granted``. Revocation stops future fetches only; keys a doctor already
cached on their side are out of reach.
"""
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from healthvault.crypto import file_cipher
from healthvault.crypto.key_codec import hex_to_key, iv_from_list, key_to_hex
from healthvault.errors import (
    AccessRequestNotFoundError,
    AuthorizationError,
    FormatError,
    KeyUnavailableError,
    RecordNotFoundError,
)
from healthvault.models.access_control import AccessRequest, AccessStatus, EscrowedKey
from healthvault.models.record import MedicalRecord
from healthvault.services.access_log_service import log_access
from healthvault.utils.logger import logger


def has_usable_metadata(record: MedicalRecord) -> bool:
    metadata = record.encryption_metadata
    if not isinstance(metadata, dict) or "iv" not in metadata:
        return False
    try:
        iv_from_list(metadata["iv"], length=file_cipher.IV_SIZE)
    except FormatError:
        return False
    return True


def _normalize_key(key_hex) -> Optional[str]:
    try:
        return key_to_hex(hex_to_key(key_hex, length=file_cipher.KEY_SIZE))
    except FormatError:
        return None


def _index_supplied_keys(supplied_keys) -> Dict[int, str]:
    index = {}
    for entry in supplied_keys or []:
        try:
            record_id = int(entry["recordId"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring supplied key entry without a valid recordId")
            continue
        key_hex = _normalize_key(entry.get("key"))
        if key_hex is None:
            logger.warning("Ignoring malformed supplied key for record %s", record_id)
            continue
        index[record_id] = key_hex
    return index


def _entry_for(record: MedicalRecord, key_hex: str) -> dict:
    metadata = record.encryption_metadata
    return {
        "recordId": record.id,
        "key": key_hex,
        "iv": list(metadata["iv"]),
        "originalFileName": metadata.get("originalName") or record.file_name,
        "originalFileType": metadata.get("originalType") or record.file_type,
    }


def escrow_all_keys_for(db: Session, patient_id: int, doctor_id: int, supplied_keys=None) -> List[dict]:
    """Package a key entry for every encrypted record the patient owns.

    The key comes from the record's recovery copy, else from the keys the
    patient's client supplied for the grant. Records without metadata or
    without any key are skipped with a warning; one bad record never fails
    the whole bundle.
    """
    supplied = _index_supplied_keys(supplied_keys)
    records = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.patient_id == patient_id)
        .order_by(MedicalRecord.id)
        .all()
    )

    bundle = []
    for record in records:
        if not has_usable_metadata(record):
            logger.warning("Record %s has no usable encryption metadata; not escrowed", record.id)
            continue
        key_hex = _normalize_key(record.encryption_metadata.get("encryptionKey")) or supplied.get(record.id)
        if key_hex is None:
            logger.warning("No key available for record %s; not escrowed", record.id)
            continue
        bundle.append(_entry_for(record, key_hex))

    logger.info("Escrowed %d of %d keys from patient %s for doctor %s",
                len(bundle), len(records), patient_id, doctor_id)
    return bundle


def store_bundle(db: Session, access_request: AccessRequest, bundle: List[dict]) -> None:
    for position, entry in enumerate(bundle):
        db.add(EscrowedKey(
            access_request_id=access_request.id,
            record_id=entry["recordId"],
            position=position,
            key=entry["key"],
            iv=entry["iv"],
            original_file_name=entry["originalFileName"],
            original_file_type=entry["originalFileType"],
        ))


def scrub_bundle(db: Session, access_request_id: int) -> int:
    return (
        db.query(EscrowedKey)
        .filter(EscrowedKey.access_request_id == access_request_id)
        .delete(synchronize_session=False)
    )


def purge_record_keys(db: Session, record_id: int) -> int:
    """Drop every escrowed copy of a record's key; used when the record is deleted."""
    return (
        db.query(EscrowedKey)
        .filter(EscrowedKey.record_id == record_id)
        .delete(synchronize_session=False)
    )


def latest_request(db: Session, doctor_id: int, patient_id: int) -> Optional[AccessRequest]:
    return (
        db.query(AccessRequest)
        .filter(AccessRequest.doctor_id == doctor_id, AccessRequest.patient_id == patient_id)
        .order_by(AccessRequest.requested_at.desc(), AccessRequest.id.desc())
        .first()
    )


def is_current_grant(db: Session, request: AccessRequest) -> bool:
    """True when ``request`` is granted and still the latest between its doctor and patient."""
    if request.status != AccessStatus.granted:
        return False
    latest = latest_request(db, request.doctor_id, request.patient_id)
    return latest is not None and latest.id == request.id


def fetch_key_for(db: Session, doctor_id: int, patient_id: int, record_id: int) -> dict:
    request = latest_request(db, doctor_id, patient_id)
    if request is None:
        # no relationship to audit against; patient_id may not even exist
        logger.warning("Key fetch refused: doctor %s never requested access to patient %s", doctor_id, patient_id)
        raise AuthorizationError()
    if request.status != AccessStatus.granted:
        logger.warning("Key fetch refused: doctor %s has no active grant from patient %s", doctor_id, patient_id)
        log_access(db, patient_id=request.patient_id, doctor_id=request.doctor_id, record_id=record_id,
                   access_request_id=request.id,
                   action="Key request refused: no active grant", access_type="DENIED_KEY_FETCH")
        raise AuthorizationError()

    record = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.id == record_id, MedicalRecord.patient_id == patient_id)
        .first()
    )
    if not record:
        raise RecordNotFoundError()

    escrowed = (
        db.query(EscrowedKey)
        .filter(EscrowedKey.access_request_id == request.id, EscrowedKey.record_id == record.id)
        .first()
    )
    if escrowed is not None:
        entry = escrowed.to_wire()
    else:
        # uploaded after the grant, or not escrowable at grant time
        if not has_usable_metadata(record):
            raise KeyUnavailableError()
        key_hex = _normalize_key(record.encryption_metadata.get("encryptionKey"))
        if key_hex is None:
            raise KeyUnavailableError()
        entry = _entry_for(record, key_hex)

    log_access(db, patient_id=patient_id, doctor_id=doctor_id, record_id=record.id,
               access_request_id=request.id, action="Doctor fetched decryption key", access_type="KEY_FETCH")
    return entry


def get_bundle(db: Session, access_request_id: int, doctor_id: int) -> List[dict]:
    request = db.query(AccessRequest).filter(AccessRequest.id == access_request_id).first()
    if not request:
        raise AccessRequestNotFoundError()
    if request.doctor_id != doctor_id or not is_current_grant(db, request):
        raise AuthorizationError()
    return [entry.to_wire() for entry in request.encryption_keys]
