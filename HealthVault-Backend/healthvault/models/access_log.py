from sqlalchemy import Column, Integer, ForeignKey, String, DateTime
from datetime import datetime
from healthvault.database.connection import Base


class AccessLog(Base):
    __tablename__ = "access_logs"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Plain ids so the trail outlives deleted records and requests
    record_id = Column(Integer, nullable=True)
    access_request_id = Column(Integer, nullable=True)

    action = Column(String(255), nullable=False)
    access_type = Column(String(50), default="ROUTINE")  # ROUTINE, REQUEST, GRANT, DENY, REVOKE, KEY_FETCH, DENIED_KEY_FETCH

    timestamp = Column(DateTime, default=datetime.utcnow)
