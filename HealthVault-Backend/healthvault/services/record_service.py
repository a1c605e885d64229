from typing import List, Optional

from sqlalchemy.orm import Session

from healthvault.crypto import file_cipher
from healthvault.crypto.key_codec import hex_to_key, iv_from_list
from healthvault.errors import AuthorizationError, FormatError, RecordNotFoundError
from healthvault.models.record import MedicalRecord, RecordCategory
from healthvault.models.user import User
from healthvault.services.blob_store import LocalBlobStore
from healthvault.services.key_escrow_service import has_usable_metadata, purge_record_keys
from healthvault.utils.logger import logger


def build_encryption_metadata(iv: list, original_name: str, original_type: str,
                              encryption_key: Optional[str] = None) -> dict:
    """Validate the client-supplied metadata and return it in stored form."""
    iv_from_list(iv, length=file_cipher.IV_SIZE)
    if not original_name:
        raise FormatError("Original file name is required")
    metadata = {
        "iv": list(iv),
        "originalName": original_name,
        "originalType": original_type or "application/octet-stream",
    }
    if encryption_key:
        hex_to_key(encryption_key, length=file_cipher.KEY_SIZE)
        metadata["encryptionKey"] = encryption_key.lower()
    return metadata


def create_record(db: Session, store: LocalBlobStore, patient: User, file_name: str, data: bytes,
                  category: RecordCategory, encryption_metadata: dict,
                  file_type: str = "application/octet-stream") -> MedicalRecord:
    file_url = store.save(file_name, data)
    record = MedicalRecord(
        patient_id=patient.id,
        file_name=file_name,
        file_type=file_type or "application/octet-stream",
        file_url=file_url,
        category=category,
        encryption_metadata=encryption_metadata,
    )
    try:
        db.add(record)
        db.commit()
    except Exception:
        db.rollback()
        store.delete_url(file_url)
        raise
    db.refresh(record)
    logger.info("Record %s uploaded for patient %s (%s)", record.id, patient.id, category.value)
    return record


def get_record(db: Session, record_id: int) -> MedicalRecord:
    record = db.query(MedicalRecord).filter(MedicalRecord.id == record_id).first()
    if not record:
        raise RecordNotFoundError()
    return record


def get_owned_record(db: Session, record_id: int, patient: User) -> MedicalRecord:
    record = get_record(db, record_id)
    if record.patient_id != patient.id:
        raise AuthorizationError("Only the owning patient can modify this record")
    return record


def list_records(db: Session, patient_id: int) -> List[MedicalRecord]:
    return (
        db.query(MedicalRecord)
        .filter(MedicalRecord.patient_id == patient_id)
        .order_by(MedicalRecord.uploaded_at.desc(), MedicalRecord.id.desc())
        .all()
    )


def set_summary(db: Session, record_id: int, patient: User, summary: Optional[str]) -> MedicalRecord:
    record = get_owned_record(db, record_id, patient)
    record.ai_summary = summary
    db.commit()
    db.refresh(record)
    return record


def delete_record(db: Session, store: LocalBlobStore, record_id: int, patient: User) -> None:
    record = get_owned_record(db, record_id, patient)
    file_url = record.file_url
    purged = purge_record_keys(db, record.id)
    db.delete(record)
    db.commit()
    store.delete_url(file_url)
    logger.info("Record %s deleted by patient %s; %d escrowed keys purged", record_id, patient.id, purged)


def serialize_record(record: MedicalRecord, include_key: bool = False) -> dict:
    """Wire form of a record. The recovery key is only included for the owner."""
    metadata = None
    if isinstance(record.encryption_metadata, dict):
        metadata = {k: v for k, v in record.encryption_metadata.items() if k != "encryptionKey"}
        if include_key and "encryptionKey" in record.encryption_metadata:
            metadata["encryptionKey"] = record.encryption_metadata["encryptionKey"]
    return {
        "id": record.id,
        "patientId": record.patient_id,
        "fileName": record.file_name,
        "fileType": record.file_type,
        "fileUrl": record.file_url,
        "category": record.category.value,
        "uploadDate": record.uploaded_at,
        "encryptionMetadata": metadata,
        "aiSummary": record.ai_summary,
        "decryptable": has_usable_metadata(record),
    }
