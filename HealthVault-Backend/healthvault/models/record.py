import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Enum
from sqlalchemy.orm import relationship
from healthvault.database.connection import Base


class RecordCategory(str, enum.Enum):
    prescription = "prescription"
    lab_result = "lab-result"
    scan = "scan"
    report = "report"
    other = "other"


class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Describes the stored ciphertext blob, not the original document
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(255), default="application/octet-stream")
    file_url = Column(String(500), nullable=False)

    category = Column(Enum(RecordCategory, values_callable=lambda e: [m.value for m in e]),
                      nullable=False, default=RecordCategory.other)

    # {"iv": [...], "originalName": ..., "originalType": ..., "encryptionKey"?: hex}
    encryption_metadata = Column(JSON, nullable=True)

    ai_summary = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    escrowed_keys = relationship(
        "EscrowedKey",
        back_populates="record",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
