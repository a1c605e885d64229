import enum
from datetime import datetime

from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, String, Text, JSON, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from healthvault.database.connection import Base


class AccessStatus(str, enum.Enum):
    pending = "pending"
    granted = "granted"
    denied = "denied"
    revoked = "revoked"


class AccessRequest(Base):
    __tablename__ = "access_requests"
    __table_args__ = (
        # at most one pending request per doctor/patient pair; NULLs never collide
        UniqueConstraint("doctor_id", "patient_id", "pending_marker", name="uq_one_pending_request"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Denormalized for display without joins
    doctor_name = Column(String(255))
    doctor_specialty = Column(String(255))
    patient_name = Column(String(255))
    patient_email = Column(String(255))
    patient_qr_code = Column(String(64))

    status = Column(Enum(AccessStatus), nullable=False, default=AccessStatus.pending, index=True)
    # True while pending, NULL once resolved
    pending_marker = Column(Boolean, nullable=True, default=True)
    requested_at = Column(DateTime, default=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)

    seen_by_doctor = Column(Boolean, default=False)

    encryption_keys = relationship(
        "EscrowedKey",
        back_populates="access_request",
        order_by="EscrowedKey.position",
        cascade="all, delete-orphan",
    )


class EscrowedKey(Base):
    """One entry of a granted request's escrow bundle."""

    __tablename__ = "escrowed_keys"

    id = Column(Integer, primary_key=True, index=True)
    access_request_id = Column(Integer, ForeignKey("access_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    record_id = Column(Integer, ForeignKey("medical_records.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    key = Column(Text, nullable=False)  # hex
    iv = Column(JSON, nullable=False)  # list of byte values
    original_file_name = Column(String(255))
    original_file_type = Column(String(255))

    access_request = relationship("AccessRequest", back_populates="encryption_keys")
    record = relationship("MedicalRecord", back_populates="escrowed_keys")

    def to_wire(self):
        return {
            "recordId": self.record_id,
            "key": self.key,
            "iv": list(self.iv or []),
            "originalFileName": self.original_file_name,
            "originalFileType": self.original_file_type,
        }
