from fastapi import APIRouter, Depends, UploadFile, File, Form, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
import json

from healthvault.database.connection import get_db
from healthvault.errors import AuthorizationError, FormatError
from healthvault.models.record import MedicalRecord, RecordCategory
from healthvault.models.user import User, RoleEnum
from healthvault.schemas import SummaryUpdate
from healthvault.services import record_service
from healthvault.services.access_request_service import check_access
from healthvault.services.auth_helpers import get_current_user, require_role
from healthvault.services.blob_store import BlobTooLargeError, EmptyBlobError, LocalBlobStore, get_blob_store, URL_PREFIX
from healthvault.utils.logger import logger

router = APIRouter(tags=["Record"])


def _can_view_patient(db: Session, user: User, patient_id: int) -> bool:
    if user.role == RoleEnum.patient:
        return user.id == patient_id
    granted, _ = check_access(db, user.id, patient_id)
    return granted


# Stores an already-encrypted file; metadata is kept verbatim
@router.post("/records/upload")
def upload_record(
    file: UploadFile = File(...),
    category: str = Form(...),
    iv: str = Form(...),
    original_file_name: str = Form(...),
    original_file_type: str = Form(None),
    encryption_key: str = Form(None),
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store),
    patient: User = Depends(require_role(RoleEnum.patient)),
):
    try:
        record_category = RecordCategory(category)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid category")

    try:
        iv_values = json.loads(iv)
    except json.JSONDecodeError:
        raise FormatError("IV must be a JSON array of byte values")
    metadata = record_service.build_encryption_metadata(
        iv_values, original_file_name, original_file_type, encryption_key
    )

    # one byte past the cap is enough to reject oversize uploads
    data = file.file.read(store.max_bytes + 1)
    try:
        record = record_service.create_record(
            db, store, patient,
            file_name=file.filename or original_file_name,
            data=data,
            category=record_category,
            encryption_metadata=metadata,
            file_type=file.content_type,
        )
    except EmptyBlobError:
        raise HTTPException(status_code=400, detail="Empty file")
    except BlobTooLargeError:
        raise HTTPException(status_code=413, detail="File too large")

    return record_service.serialize_record(record, include_key=True)


@router.get("/records/patient/{patient_id}")
def get_patient_records(
    patient_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not _can_view_patient(db, user, patient_id):
        raise AuthorizationError()
    is_owner = user.id == patient_id
    records = record_service.list_records(db, patient_id)
    for r in records:
        if not record_service.has_usable_metadata(r):
            logger.warning("Record %s is missing encryption metadata", r.id)
    return [record_service.serialize_record(r, include_key=is_owner) for r in records]


@router.get("/records/{record_id}")
def get_record(
    record_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    record = record_service.get_record(db, record_id)
    if not _can_view_patient(db, user, record.patient_id):
        raise AuthorizationError()
    return record_service.serialize_record(record, include_key=user.id == record.patient_id)


@router.put("/records/{record_id}/summary")
def update_summary(
    record_id: int,
    body: SummaryUpdate,
    db: Session = Depends(get_db),
    patient: User = Depends(require_role(RoleEnum.patient)),
):
    record = record_service.set_summary(db, record_id, patient, body.aiSummary)
    return record_service.serialize_record(record, include_key=True)


@router.delete("/records/{record_id}")
def delete_record(
    record_id: int,
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store),
    patient: User = Depends(require_role(RoleEnum.patient)),
):
    record_service.delete_record(db, store, record_id, patient)
    return {"message": "Record deleted", "record_id": record_id}


# Serves ciphertext only; decryption happens on the caller's side
@router.get(URL_PREFIX + "/{stored_name}")
def get_blob(
    stored_name: str,
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store),
    user: User = Depends(get_current_user),
):
    record = db.query(MedicalRecord).filter(MedicalRecord.file_url == f"{URL_PREFIX}/{stored_name}").first()
    if not record:
        raise HTTPException(status_code=404, detail="File not found")
    if not _can_view_patient(db, user, record.patient_id):
        raise AuthorizationError()
    try:
        data = store.read(stored_name)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=data, media_type="application/octet-stream")
