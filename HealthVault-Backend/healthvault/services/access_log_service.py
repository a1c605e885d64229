from sqlalchemy.orm import Session
from sqlalchemy import or_
from healthvault.models.access_log import AccessLog
from datetime import datetime


def log_access(db: Session, patient_id: int, doctor_id: int, action: str, record_id: int = None,
               access_type: str = "ROUTINE", access_request_id: int = None, commit: bool = True):
    """Add an audit entry. With ``commit=False`` it joins the caller's transaction."""
    entry = AccessLog(
        patient_id=patient_id,
        doctor_id=doctor_id,
        record_id=record_id,
        access_request_id=access_request_id,
        action=action,
        access_type=access_type,
        timestamp=datetime.utcnow()
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    return entry


def get_logs_for_user(db: Session, user_id: int):
    return (
        db.query(AccessLog)
        .filter(or_(AccessLog.patient_id == user_id, AccessLog.doctor_id == user_id))
        .order_by(AccessLog.timestamp.desc(), AccessLog.id.desc())
        .all()
    )
