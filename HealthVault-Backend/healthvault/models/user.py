import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Enum
from healthvault.database.connection import Base


class RoleEnum(str, enum.Enum):
    patient = "patient"
    doctor = "doctor"


def generate_qr_code():
    return f"HV-{uuid.uuid4().hex}"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(Enum(RoleEnum), nullable=False)
    specialty = Column(String(255), nullable=True)  # doctors only

    # Scannable identifier a patient shares so doctors can request access
    qr_code = Column(String(64), unique=True, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
