import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="healthvault-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "healthvault-test.db")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ALGORITHM"] = "HS256"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from healthvault.crypto import file_cipher
from healthvault.crypto.key_codec import iv_to_list, key_to_hex
from healthvault.database.connection import Base, SessionLocal, engine
from healthvault.main import app
from healthvault.models.record import MedicalRecord, RecordCategory
from healthvault.models.user import RoleEnum, User, generate_qr_code


def make_token(user):
    return jwt.encode({"sub": str(user.id), "role": user.role.value}, "test-secret-key", algorithm="HS256")


def auth_headers(user):
    return {"Authorization": f"Bearer {make_token(user)}"}


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _add_user(db, name, email, role, specialty=None):
    user = User(
        name=name,
        email=email,
        role=role,
        specialty=specialty,
        qr_code=generate_qr_code() if role == RoleEnum.patient else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def patient(db):
    return _add_user(db, "Priya Patel", "priya@example.com", RoleEnum.patient)


@pytest.fixture
def other_patient(db):
    return _add_user(db, "Omar Haddad", "omar@example.com", RoleEnum.patient)


@pytest.fixture
def doctor(db):
    return _add_user(db, "Dana Reyes", "dana@clinic.example", RoleEnum.doctor, specialty="Cardiology")


@pytest.fixture
def other_doctor(db):
    return _add_user(db, "Lee Chen", "lee@clinic.example", RoleEnum.doctor, specialty="Radiology")


@pytest.fixture
def make_record(db):
    """Insert an encrypted record directly; returns ``(record, key)``."""
    def factory(patient, name="scan.png", mime_type="image/png", recovery_key=True, metadata=True,
                category=RecordCategory.scan):
        key = file_cipher.generate_key()
        ciphertext, iv = file_cipher.encrypt(b"payload for " + name.encode(), key)
        encryption_metadata = None
        if metadata:
            encryption_metadata = {"iv": iv_to_list(iv), "originalName": name, "originalType": mime_type}
            if recovery_key:
                encryption_metadata["encryptionKey"] = key_to_hex(key)
        record = MedicalRecord(
            patient_id=patient.id,
            file_name=name,
            file_type="application/octet-stream",
            file_url=f"/files/test-{name}",
            category=category,
            encryption_metadata=encryption_metadata,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record, key
    return factory
