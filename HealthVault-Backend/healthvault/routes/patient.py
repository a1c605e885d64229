from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from healthvault.database.connection import get_db
from healthvault.models.user import User, RoleEnum, generate_qr_code
from healthvault.services.auth_helpers import require_role

router = APIRouter(prefix="/patients", tags=["Patient"])


# The identifier doctors scan to request access
@router.get("/me/qr-code")
def get_qr_code(db: Session = Depends(get_db), patient: User = Depends(require_role(RoleEnum.patient))):
    if not patient.qr_code:
        patient.qr_code = generate_qr_code()
        db.commit()
        db.refresh(patient)
    return {"patientId": patient.id, "qrCode": patient.qr_code}
