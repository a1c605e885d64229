import pytest
from sqlalchemy.exc import IntegrityError

from healthvault.database.connection import SessionLocal
from healthvault.errors import (
    AccessRequestNotFoundError,
    AuthorizationError,
    InvalidTransitionError,
    UserNotFoundError,
)
from healthvault.models.access_control import AccessRequest, AccessStatus
from healthvault.models.access_log import AccessLog
from healthvault.services import access_request_service as svc


@pytest.fixture
def pending(db, patient, doctor):
    return svc.request_access(db, doctor, patient_qr_code=patient.qr_code)


def test_request_starts_pending_with_display_fields(pending, patient, doctor):
    assert pending.status == AccessStatus.pending
    assert pending.requested_at is not None
    assert pending.responded_at is None
    assert pending.doctor_name == "Dana Reyes"
    assert pending.doctor_specialty == "Cardiology"
    assert pending.patient_name == "Priya Patel"
    assert pending.patient_email == "priya@example.com"
    assert pending.encryption_keys == []
    assert pending.seen_by_doctor is False


def test_request_by_patient_id(db, patient, doctor):
    request = svc.request_access(db, doctor, patient_id=patient.id)
    assert request.patient_id == patient.id


def test_unknown_qr_code(db, doctor):
    with pytest.raises(UserNotFoundError):
        svc.request_access(db, doctor, patient_qr_code="HV-does-not-exist")


def test_duplicate_pending_request_is_reused(db, pending, patient, doctor):
    again = svc.request_access(db, doctor, patient_qr_code=patient.qr_code)
    assert again.id == pending.id
    assert db.query(AccessRequest).count() == 1


def test_concurrent_requests_collapse_onto_one_pending_row(db, pending, patient, doctor, monkeypatch):
    # both callers saw no open request before either inserted
    monkeypatch.setattr(svc, "latest_request", lambda *args: None)

    again = svc.request_access(db, doctor, patient_qr_code=patient.qr_code)

    assert again.id == pending.id
    assert db.query(AccessRequest).count() == 1
    assert db.query(AccessLog).filter(AccessLog.access_type == "REQUEST").count() == 1


def test_database_allows_one_pending_request_per_pair(db, pending, patient, doctor):
    db.add(AccessRequest(doctor_id=doctor.id, patient_id=patient.id,
                         status=AccessStatus.pending, pending_marker=True))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_resolving_a_request_clears_its_pending_marker(db, pending, patient):
    svc.deny(db, pending.id, patient)
    db.expire_all()
    assert db.get(AccessRequest, pending.id).pending_marker is None


def test_request_while_granted_is_rejected(db, pending, patient, doctor):
    svc.grant(db, pending.id, patient)
    with pytest.raises(InvalidTransitionError):
        svc.request_access(db, doctor, patient_qr_code=patient.qr_code)


def test_grant(db, pending, patient):
    granted = svc.grant(db, pending.id, patient)
    assert granted.status == AccessStatus.granted
    assert granted.responded_at is not None


def test_deny_keeps_bundle_empty(db, pending, patient, make_record):
    make_record(patient)
    denied = svc.deny(db, pending.id, patient)
    assert denied.status == AccessStatus.denied
    assert denied.responded_at is not None
    assert denied.encryption_keys == []


def test_deny_twice_is_an_explicit_error(db, pending, patient):
    svc.deny(db, pending.id, patient)
    with pytest.raises(InvalidTransitionError):
        svc.deny(db, pending.id, patient)
    db.expire_all()
    assert db.get(AccessRequest, pending.id).status == AccessStatus.denied


@pytest.mark.parametrize("setup, event", [
    ([], "revoke"),
    (["deny"], "grant"),
    (["deny"], "deny"),
    (["deny"], "revoke"),
    (["grant"], "grant"),
    (["grant"], "deny"),
    (["grant", "revoke"], "grant"),
    (["grant", "revoke"], "deny"),
    (["grant", "revoke"], "revoke"),
])
def test_illegal_transitions_are_rejected(db, pending, patient, setup, event):
    for step in setup:
        getattr(svc, step)(db, pending.id, patient)
    db.expire_all()
    before = db.get(AccessRequest, pending.id).status

    with pytest.raises(InvalidTransitionError):
        getattr(svc, event)(db, pending.id, patient)

    db.expire_all()
    assert db.get(AccessRequest, pending.id).status == before


def test_transition_table():
    assert svc.next_status(AccessStatus.pending, "grant") == AccessStatus.granted
    assert svc.next_status(AccessStatus.pending, "deny") == AccessStatus.denied
    assert svc.next_status(AccessStatus.granted, "revoke") == AccessStatus.revoked
    for status in (AccessStatus.denied, AccessStatus.revoked):
        for event in ("grant", "deny", "revoke"):
            with pytest.raises(InvalidTransitionError):
                svc.next_status(status, event)


def test_only_owning_patient_can_respond(db, pending, other_patient):
    for action in (svc.grant, svc.deny, svc.revoke):
        with pytest.raises(AuthorizationError):
            action(db, pending.id, other_patient)
    db.expire_all()
    assert db.get(AccessRequest, pending.id).status == AccessStatus.pending


def test_unknown_request(db, patient):
    with pytest.raises(AccessRequestNotFoundError):
        svc.grant(db, 9999, patient)


def test_concurrent_grant_only_one_wins(db, pending, patient):
    other = SessionLocal()
    try:
        # load the request in a second session before the first grant lands
        stale = other.get(AccessRequest, pending.id)
        assert stale.status == AccessStatus.pending

        svc.grant(db, pending.id, patient)

        with pytest.raises(InvalidTransitionError):
            svc.grant(other, pending.id, patient)
    finally:
        other.close()

    grants = db.query(AccessLog).filter(AccessLog.access_type == "GRANT").count()
    assert grants == 1


def test_revoked_doctor_can_file_new_request(db, pending, patient, doctor):
    svc.grant(db, pending.id, patient)
    svc.revoke(db, pending.id, patient)

    fresh = svc.request_access(db, doctor, patient_qr_code=patient.qr_code)
    assert fresh.id != pending.id
    assert fresh.status == AccessStatus.pending
    assert svc.check_access(db, doctor.id, patient.id) == (False, fresh)


def test_doctor_listings_and_read_receipts(db, pending, patient, doctor, other_patient):
    second = svc.request_access(db, doctor, patient_qr_code=other_patient.qr_code)
    assert {r.id for r in svc.doctor_pending(db, doctor.id)} == {pending.id, second.id}
    assert svc.doctor_unseen_count(db, doctor.id) == 0

    svc.grant(db, pending.id, patient)
    svc.deny(db, second.id, other_patient)

    assert [r.id for r in svc.doctor_granted(db, doctor.id)] == [pending.id]
    assert {r.id for r in svc.doctor_history(db, doctor.id)} == {pending.id, second.id}
    assert svc.doctor_unseen_count(db, doctor.id) == 2

    svc.mark_seen(db, pending.id, doctor)
    assert svc.doctor_unseen_count(db, doctor.id) == 1


def test_mark_seen_is_doctor_scoped(db, pending, other_doctor):
    with pytest.raises(AuthorizationError):
        svc.mark_seen(db, pending.id, other_doctor)


def test_patient_listings(db, pending, patient):
    assert [r.id for r in svc.patient_pending(db, patient.id)] == [pending.id]
    assert svc.patient_granted(db, patient.id) == []
    svc.grant(db, pending.id, patient)
    assert svc.patient_pending(db, patient.id) == []
    assert [r.id for r in svc.patient_granted(db, patient.id)] == [pending.id]


def test_transitions_are_audited(db, pending, patient):
    svc.grant(db, pending.id, patient)
    svc.revoke(db, pending.id, patient)
    types = [log.access_type for log in db.query(AccessLog).order_by(AccessLog.id)]
    assert types == ["REQUEST", "GRANT", "REVOKE"]
