from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from healthvault.database.connection import get_db
from healthvault.models.user import User, RoleEnum
from healthvault.schemas import AccessRequestCreate, GrantBody
from healthvault.services import access_request_service as requests_svc
from healthvault.services import key_escrow_service
from healthvault.services.access_log_service import get_logs_for_user
from healthvault.services.auth_helpers import get_current_user, require_role

router = APIRouter(prefix="/access-requests", tags=["Access Control"])

doctor_only = require_role(RoleEnum.doctor)
patient_only = require_role(RoleEnum.patient)


# ---------------------------------------------------------------- doctor

@router.post("")
def send_access_request(body: AccessRequestCreate, db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    request = requests_svc.request_access(db, doctor, patient_qr_code=body.patientQRCode, patient_id=body.patientId)
    return requests_svc.serialize_request(request)


@router.get("/doctor/pending")
def doctor_pending(db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return [requests_svc.serialize_request(r) for r in requests_svc.doctor_pending(db, doctor.id)]


@router.get("/doctor/granted")
def doctor_granted(db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return [
        requests_svc.serialize_request(r, include_keys=True, current=key_escrow_service.is_current_grant(db, r))
        for r in requests_svc.doctor_granted(db, doctor.id)
    ]


@router.get("/doctor/history")
def doctor_history(db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return [requests_svc.serialize_request(r) for r in requests_svc.doctor_history(db, doctor.id)]


@router.get("/doctor/unseen-count")
def doctor_unseen_count(db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return {"count": requests_svc.doctor_unseen_count(db, doctor.id)}


@router.put("/{request_id}/mark-seen")
def mark_seen(request_id: int, db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return requests_svc.serialize_request(requests_svc.mark_seen(db, request_id, doctor))


@router.get("/check/{patient_id}")
def check_access(patient_id: int, db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    granted, request = requests_svc.check_access(db, doctor.id, patient_id)
    return {"hasAccess": granted, "request": requests_svc.serialize_request(request) if request else None}


@router.get("/{request_id}/keys")
def get_escrow_bundle(request_id: int, db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return {"encryptionKeys": key_escrow_service.get_bundle(db, request_id, doctor.id)}


@router.get("/patient/{patient_id}/keys/{record_id}")
def fetch_record_key(patient_id: int, record_id: int, db: Session = Depends(get_db), doctor: User = Depends(doctor_only)):
    return key_escrow_service.fetch_key_for(db, doctor.id, patient_id, record_id)


# ---------------------------------------------------------------- patient

@router.get("/patient/pending")
def patient_pending(db: Session = Depends(get_db), patient: User = Depends(patient_only)):
    return [requests_svc.serialize_request(r) for r in requests_svc.patient_pending(db, patient.id)]


@router.get("/patient/granted")
def patient_granted(db: Session = Depends(get_db), patient: User = Depends(patient_only)):
    return [requests_svc.serialize_request(r) for r in requests_svc.patient_granted(db, patient.id)]


@router.put("/{request_id}/grant")
def grant_access(request_id: int, body: Optional[GrantBody] = None,
                 db: Session = Depends(get_db), patient: User = Depends(patient_only)):
    supplied = [k.model_dump() for k in body.encryptionKeys] if body else None
    request = requests_svc.grant(db, request_id, patient, supplied_keys=supplied)
    return requests_svc.serialize_request(request, include_keys=True)


@router.put("/{request_id}/deny")
def deny_access(request_id: int, db: Session = Depends(get_db), patient: User = Depends(patient_only)):
    return requests_svc.serialize_request(requests_svc.deny(db, request_id, patient))


@router.put("/{request_id}/revoke")
def revoke_access(request_id: int, db: Session = Depends(get_db), patient: User = Depends(patient_only)):
    return requests_svc.serialize_request(requests_svc.revoke(db, request_id, patient), include_keys=True)


# ---------------------------------------------------------------- shared

@router.get("/logs")
def get_access_logs(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    logs = get_logs_for_user(db, user.id)
    result = []
    for log in logs:
        result.append({
            "id": log.id,
            "patient_id": log.patient_id,
            "doctor_id": log.doctor_id,
            "record_id": log.record_id,
            "access_request_id": log.access_request_id,
            "action": log.action,
            "access_type": log.access_type,
            "timestamp": log.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        })
    return {"count": len(result), "logs": result}
