"""Access-request lifecycle.

    pending --grant--> granted --revoke--> revoked
    pending --deny---> denied

``denied`` and ``revoked`` are final; a doctor whose access ended files a new
request. Every transition is a single conditional UPDATE keyed on the
expected source status, so of two concurrent calls on one request only one
can succeed. A unique constraint keeps one pending request per doctor and
patient, so concurrent requests collapse onto the same row.
"""
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from healthvault.errors import (
    AccessRequestNotFoundError,
    AuthorizationError,
    InvalidTransitionError,
    UserNotFoundError,
)
from healthvault.models.access_control import AccessRequest, AccessStatus
from healthvault.models.user import User, RoleEnum
from healthvault.services.access_log_service import log_access
from healthvault.services.key_escrow_service import (
    escrow_all_keys_for,
    latest_request,
    scrub_bundle,
    store_bundle,
)
from healthvault.utils.logger import logger

TRANSITIONS = {
    (AccessStatus.pending, "grant"): AccessStatus.granted,
    (AccessStatus.pending, "deny"): AccessStatus.denied,
    (AccessStatus.granted, "revoke"): AccessStatus.revoked,
}


def next_status(current: AccessStatus, event: str) -> AccessStatus:
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(f"Cannot {event} a request that is {current.value}")


def _load_for_patient(db: Session, request_id: int, patient: User) -> AccessRequest:
    request = db.query(AccessRequest).filter(AccessRequest.id == request_id).first()
    if not request:
        raise AccessRequestNotFoundError()
    if request.patient_id != patient.id:
        raise AuthorizationError("Only the patient who owns this request can respond to it")
    return request


def _transition(db: Session, request: AccessRequest, event: str, **values) -> AccessStatus:
    source = request.status
    target = next_status(source, event)
    values.update(status=target, seen_by_doctor=False, pending_marker=None)
    updated = (
        db.query(AccessRequest)
        .filter(AccessRequest.id == request.id, AccessRequest.status == source)
        .update({getattr(AccessRequest, k): v for k, v in values.items()}, synchronize_session=False)
    )
    if updated != 1:
        # someone else moved it first
        db.rollback()
        raise InvalidTransitionError()
    return target


def _pending_between(db: Session, doctor_id: int, patient_id: int) -> Optional[AccessRequest]:
    return (
        db.query(AccessRequest)
        .filter(AccessRequest.doctor_id == doctor_id,
                AccessRequest.patient_id == patient_id,
                AccessRequest.status == AccessStatus.pending)
        .first()
    )


def _find_patient(db: Session, patient_qr_code: Optional[str], patient_id: Optional[int]) -> User:
    query = db.query(User).filter(User.role == RoleEnum.patient)
    if patient_qr_code:
        patient = query.filter(User.qr_code == patient_qr_code.strip()).first()
    elif patient_id is not None:
        patient = query.filter(User.id == patient_id).first()
    else:
        patient = None
    if not patient:
        raise UserNotFoundError("Patient not found")
    return patient


def request_access(db: Session, doctor: User, patient_qr_code: str = None, patient_id: int = None) -> AccessRequest:
    patient = _find_patient(db, patient_qr_code, patient_id)

    latest = latest_request(db, doctor.id, patient.id)
    if latest is not None and latest.status == AccessStatus.pending:
        return latest
    if latest is not None and latest.status == AccessStatus.granted:
        raise InvalidTransitionError("Access to this patient is already granted")

    request = AccessRequest(
        doctor_id=doctor.id,
        patient_id=patient.id,
        doctor_name=doctor.name,
        doctor_specialty=doctor.specialty,
        patient_name=patient.name,
        patient_email=patient.email,
        patient_qr_code=patient.qr_code,
        status=AccessStatus.pending,
        pending_marker=True,
        requested_at=datetime.utcnow(),
        seen_by_doctor=False,
    )
    db.add(request)
    try:
        db.flush()
    except IntegrityError:
        # a concurrent call created the pending request first
        db.rollback()
        existing = _pending_between(db, doctor.id, patient.id)
        if existing is None:
            raise InvalidTransitionError()
        return existing
    log_access(db, patient_id=patient.id, doctor_id=doctor.id, access_request_id=request.id,
               action=f"Dr. {doctor.name} requested access", access_type="REQUEST", commit=False)
    db.commit()
    db.refresh(request)
    logger.info("Access request %s: doctor %s -> patient %s", request.id, doctor.id, patient.id)
    return request


def grant(db: Session, request_id: int, patient: User, supplied_keys=None) -> AccessRequest:
    request = _load_for_patient(db, request_id, patient)
    _transition(db, request, "grant", responded_at=datetime.utcnow())
    try:
        bundle = escrow_all_keys_for(db, patient.id, request.doctor_id, supplied_keys)
        store_bundle(db, request, bundle)
        log_access(db, patient_id=patient.id, doctor_id=request.doctor_id, access_request_id=request.id,
                   action=f"Granted access with {len(bundle)} escrowed keys", access_type="GRANT", commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(request)
    logger.info("Access request %s granted", request.id)
    return request


def deny(db: Session, request_id: int, patient: User) -> AccessRequest:
    request = _load_for_patient(db, request_id, patient)
    _transition(db, request, "deny", responded_at=datetime.utcnow())
    log_access(db, patient_id=patient.id, doctor_id=request.doctor_id, access_request_id=request.id,
               action="Denied access request", access_type="DENY", commit=False)
    db.commit()
    db.refresh(request)
    logger.info("Access request %s denied", request.id)
    return request


def revoke(db: Session, request_id: int, patient: User) -> AccessRequest:
    request = _load_for_patient(db, request_id, patient)
    _transition(db, request, "revoke", revoked_at=datetime.utcnow())
    try:
        scrubbed = scrub_bundle(db, request.id)
        log_access(db, patient_id=patient.id, doctor_id=request.doctor_id, access_request_id=request.id,
                   action=f"Revoked access; {scrubbed} escrowed keys scrubbed", access_type="REVOKE", commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(request)
    logger.info("Access request %s revoked", request.id)
    return request


def mark_seen(db: Session, request_id: int, doctor: User) -> AccessRequest:
    request = db.query(AccessRequest).filter(AccessRequest.id == request_id).first()
    if not request:
        raise AccessRequestNotFoundError()
    if request.doctor_id != doctor.id:
        raise AuthorizationError()
    request.seen_by_doctor = True
    db.commit()
    db.refresh(request)
    return request


def _for_doctor(db: Session, doctor_id: int):
    return db.query(AccessRequest).filter(AccessRequest.doctor_id == doctor_id)


def _for_patient(db: Session, patient_id: int):
    return db.query(AccessRequest).filter(AccessRequest.patient_id == patient_id)


def doctor_pending(db: Session, doctor_id: int) -> List[AccessRequest]:
    return (_for_doctor(db, doctor_id)
            .filter(AccessRequest.status == AccessStatus.pending)
            .order_by(AccessRequest.requested_at.desc()).all())


def doctor_granted(db: Session, doctor_id: int) -> List[AccessRequest]:
    return (_for_doctor(db, doctor_id)
            .filter(AccessRequest.status == AccessStatus.granted)
            .order_by(AccessRequest.responded_at.desc()).all())


def doctor_history(db: Session, doctor_id: int) -> List[AccessRequest]:
    return (_for_doctor(db, doctor_id)
            .filter(AccessRequest.status != AccessStatus.pending)
            .order_by(AccessRequest.responded_at.desc(), AccessRequest.id.desc()).all())


def doctor_unseen_count(db: Session, doctor_id: int) -> int:
    return (_for_doctor(db, doctor_id)
            .filter(AccessRequest.status != AccessStatus.pending, AccessRequest.seen_by_doctor == False)
            .count())


def patient_pending(db: Session, patient_id: int) -> List[AccessRequest]:
    return (_for_patient(db, patient_id)
            .filter(AccessRequest.status == AccessStatus.pending)
            .order_by(AccessRequest.requested_at.desc()).all())


def patient_granted(db: Session, patient_id: int) -> List[AccessRequest]:
    return (_for_patient(db, patient_id)
            .filter(AccessRequest.status == AccessStatus.granted)
            .order_by(AccessRequest.responded_at.desc()).all())


def check_access(db: Session, doctor_id: int, patient_id: int) -> Tuple[bool, Optional[AccessRequest]]:
    request = latest_request(db, doctor_id, patient_id)
    return bool(request and request.status == AccessStatus.granted), request


def serialize_request(request: AccessRequest, include_keys: bool = False, current: bool = True) -> dict:
    """Wire form of a request. Keys are only listed for a grant that is still current."""
    data = {
        "id": request.id,
        "doctorId": request.doctor_id,
        "patientId": request.patient_id,
        "doctorName": request.doctor_name,
        "doctorSpecialty": request.doctor_specialty,
        "patientName": request.patient_name,
        "patientEmail": request.patient_email,
        "patientQRCode": request.patient_qr_code,
        "status": request.status.value,
        "requestedAt": request.requested_at,
        "respondedAt": request.responded_at,
        "revokedAt": request.revoked_at,
        "seenByDoctor": bool(request.seen_by_doctor),
    }
    if include_keys:
        keys = request.encryption_keys if current and request.status == AccessStatus.granted else []
        data["encryptionKeys"] = [entry.to_wire() for entry in keys]
    return data
