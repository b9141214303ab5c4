from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.models.audit_log import AuditLog
from app.models.notification import Notification
from app.models.reactivation_request import DsaReactivationRequest
from app.models.user import User
from app.services.admin_users import review_summaries
from app.services.users import generate_dsa_id
from tests.conftest import FakeResult, entity_handler, make_admin, make_dsa, make_user, sequence_handler


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def test_generate_dsa_id_uses_bank_prefix():
    dsa_id = generate_dsa_id("hdfc", now_ms=1714816812345)
    assert dsa_id.startswith("HDF812345")
    assert len(dsa_id) == 12


def test_profile_visible_to_self_and_admin_only(as_user, fake_db):
    user = make_user()
    other = make_user()
    fake_db.on_get(User, other.id, other)

    assert as_user(user).get(f"/api/v1/users/{user.id}/profile").status_code == 200
    assert as_user(user).get(f"/api/v1/users/{other.id}/profile").status_code == 403
    resp = as_user(make_admin()).get(f"/api/v1/users/{other.id}/profile")
    assert get_data(resp)["email"] == other.email


def test_update_profile_merges_address(as_user, fake_db):
    user = make_user(address={"city": "Pune", "state": "MH"})

    resp = as_user(user).put(
        f"/api/v1/users/{user.id}/profile",
        json={"first_name": "Asha", "address": {"street": "12 MG Road"}},
    )

    assert resp.status_code == 200
    assert user.first_name == "Asha"
    assert user.address == {"city": "Pune", "state": "MH", "street": "12 MG Road"}
    assert fake_db.added_of(AuditLog)[0].action == "user.profile_update"


def test_update_profile_rejects_taken_phone(as_user, fake_db):
    user = make_user()
    fake_db.on_execute_return(FakeResult(scalar=1))

    resp = as_user(user).put(f"/api/v1/users/{user.id}/profile", json={"phone": "9123456780"})

    assert resp.status_code == 409
    assert resp.json()["message"] == "User with this phone number already exists"


def test_list_users_includes_dsa_statistics(as_user, fake_db):
    dsa = make_dsa()
    applicant = make_user()
    fake_db.on_execute(
        sequence_handler(
            [
                FakeResult(scalar=2),
                FakeResult(items=[dsa, applicant]),
                FakeResult(rows=[(dsa.id, "approved", 3), (dsa.id, "missed", 1)]),
            ]
        )
    )

    resp = as_user(make_admin()).get("/api/v1/admin/users", params={"role": "all", "status": "active"})

    assert resp.status_code == 200
    data = get_data(resp)
    assert data["pagination"]["total"] == 2
    stats = {item["id"]: item["statistics"] for item in data["users"]}
    assert stats[str(dsa.id)]["approved"] == 3
    assert stats[str(dsa.id)]["deadline_compliance"] == 75.0
    assert stats[str(applicant.id)] is None


def test_admin_endpoints_reject_non_admins(as_user):
    resp = as_user(make_dsa()).get("/api/v1/admin/users")
    assert resp.status_code == 403
    assert resp.json()["message"] == "Missing permission: user.manage"


def test_deactivate_user_revokes_sessions(as_user, fake_db):
    target = make_dsa(token_version=2)
    fake_db.on_get(User, target.id, target)

    resp = as_user(make_admin()).patch(
        f"/api/v1/admin/users/{target.id}/status", json={"status": "inactive", "reason": "Missed deadlines"}
    )

    assert resp.status_code == 200
    assert target.is_active is False
    assert target.token_version == 3
    assert target.deactivation_reason == "Missed deadlines"
    assert fake_db.added_of(Notification)[0].title == "Account Deactivated"


def test_admin_cannot_deactivate_self(as_user, fake_db):
    admin = make_admin()
    fake_db.on_get(User, admin.id, admin)

    resp = as_user(admin).patch(f"/api/v1/admin/users/{admin.id}/status", json={"status": "inactive"})

    assert resp.status_code == 400


def test_status_update_is_idempotent(as_user, fake_db):
    target = make_user()
    fake_db.on_get(User, target.id, target)

    resp = as_user(make_admin()).patch(f"/api/v1/admin/users/{target.id}/status", json={"status": "active"})

    assert resp.status_code == 200
    assert fake_db.committed is False


def test_verify_dsa(as_user, fake_db, no_email):
    target = make_dsa(verified=False)
    admin = make_admin()
    fake_db.on_get(User, target.id, target)

    resp = as_user(admin).put(f"/api/v1/admin/users/{target.id}/verify", json={"is_verified": True})

    assert resp.status_code == 200
    assert get_data(resp)["is_verified"] is True
    assert target.verified_by == admin.id
    assert target.verified_at is not None
    assert fake_db.added_of(AuditLog)[0].action == "dsa.verify"
    assert no_email[0][0] == "dsa_verified"
    assert no_email[0][2] == target.email


def test_verify_rejects_non_dsa(as_user, fake_db):
    target = make_user()
    fake_db.on_get(User, target.id, target)

    resp = as_user(make_admin()).put(f"/api/v1/admin/users/{target.id}/verify", json={"is_verified": True})

    assert resp.status_code == 400


def test_admin_update_rejects_bank_for_applicant(as_user, fake_db):
    target = make_user()
    fake_db.on_get(User, target.id, target)
    fake_db.on_execute_return(FakeResult(scalar=0))

    resp = as_user(make_admin()).put(f"/api/v1/admin/users/{target.id}", json={"bank_name": "SBI"})

    assert resp.status_code == 400


def test_deactivated_dsa_submits_reactivation_request(as_user, fake_db):
    dsa = make_dsa(is_active=False, deactivated_at=datetime.now(timezone.utc))

    resp = as_user(dsa).post(
        "/api/v1/dsa/reactivation-request",
        json={"reason": "I was on medical leave last week", "clarification": "Certificate attached"},
    )

    assert resp.status_code == 201
    assert get_data(resp)["status"] == "pending"
    request = fake_db.added_of(DsaReactivationRequest)[0]
    assert request.dsa_id == dsa.id


def test_active_dsa_cannot_request_reactivation(as_user):
    resp = as_user(make_dsa()).post(
        "/api/v1/dsa/reactivation-request", json={"reason": "Please reactivate my account"}
    )
    assert resp.status_code == 400


def test_duplicate_reactivation_request_conflicts(as_user, fake_db):
    dsa = make_dsa(is_active=False)
    pending = DsaReactivationRequest(id=uuid4(), dsa_id=dsa.id, reason="earlier request", status="pending")
    fake_db.on_execute(entity_handler(DsaReactivationRequest, FakeResult(items=[pending])))

    resp = as_user(dsa).post(
        "/api/v1/dsa/reactivation-request", json={"reason": "Please reactivate my account"}
    )

    assert resp.status_code == 409


def test_admin_approves_reactivation(as_user, fake_db):
    dsa = make_dsa(is_active=False, verified=False, deactivation_reason="Missed deadlines")
    pending = DsaReactivationRequest(id=uuid4(), dsa_id=dsa.id, reason="I was on leave", status="pending")
    fake_db.on_execute(entity_handler(DsaReactivationRequest, FakeResult(items=[pending])))
    fake_db.on_get(User, dsa.id, dsa)
    admin = make_admin()

    resp = as_user(admin).post(
        "/api/v1/admin/dsa-reactivation", json={"dsa_id": str(dsa.id), "action": "approve"}
    )

    assert resp.status_code == 200
    assert get_data(resp)["status"] == "approved"
    assert dsa.is_active is True
    assert dsa.is_verified is True
    assert dsa.deactivation_reason is None
    assert pending.processed_by == admin.id
    assert fake_db.added_of(AuditLog)[0].action == "dsa.reactivation.approved"


def test_admin_rejects_reactivation_with_notes(as_user, fake_db):
    dsa = make_dsa(is_active=False)
    pending = DsaReactivationRequest(id=uuid4(), dsa_id=dsa.id, reason="I was on leave", status="pending")
    fake_db.on_execute(entity_handler(DsaReactivationRequest, FakeResult(items=[pending])))
    fake_db.on_get(User, dsa.id, dsa)

    as_user(make_admin()).post(
        "/api/v1/admin/dsa-reactivation",
        json={"dsa_id": str(dsa.id), "action": "reject", "admin_notes": "Too many missed deadlines"},
    )

    assert dsa.is_active is False
    notification = fake_db.added_of(Notification)[0]
    assert notification.message.endswith("Notes: Too many missed deadlines")


def test_processing_without_pending_request_is_404(as_user, fake_db):
    resp = as_user(make_admin()).post(
        "/api/v1/admin/dsa-reactivation", json={"dsa_id": str(uuid4()), "action": "approve"}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_review_summaries_skip_query_without_dsas(fake_db):
    assert await review_summaries(fake_db, []) == {}
    assert fake_db.executed == []
