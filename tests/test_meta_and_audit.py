from datetime import datetime, timezone
from uuid import uuid4

from app.models.audit_log import AuditLog
from tests.conftest import FakeResult, make_admin, make_dsa, sequence_handler


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def test_banks_are_public(as_user):
    banks = get_data(as_user(None).get("/api/v1/meta/banks"))["banks"]
    assert "SBI" in banks


def test_application_options_carry_progress(as_user):
    data = get_data(as_user(None).get("/api/v1/meta/application-options"))
    statuses = {item["value"]: item for item in data["statuses"]}
    assert statuses["approved"]["progress"] == 100
    assert statuses["pending"]["label"] == "Pending"
    assert "urgent" in data["priorities"]


def test_upload_rules_list_mime_types(as_user):
    rules = get_data(as_user(None).get("/api/v1/meta/upload-rules"))["rules"]
    assert {rule["name"] for rule in rules} == {"document", "chat", "kyc"}


def test_audit_logs_include_actor_summary(as_user, fake_db):
    admin = make_admin(first_name="Meera", last_name="Rao")
    entry = AuditLog(
        id=uuid4(),
        actor_id=admin.id,
        action="dsa.verify",
        resource_type="user",
        resource_id=str(uuid4()),
        new_value={"is_verified": True},
        summary="dsa.verify: is_verified",
        created_at=datetime.now(timezone.utc),
    )
    orphan = AuditLog(
        id=uuid4(),
        actor_id=None,
        action="payment.callback",
        resource_type="payment",
        resource_id="PAY1",
        created_at=datetime.now(timezone.utc),
    )
    fake_db.on_execute(sequence_handler([FakeResult(scalar=2), FakeResult(rows=[(entry, admin), (orphan, None)])]))

    resp = as_user(admin).get("/api/v1/admin/audit-logs", params={"feature": ["dsa", "payment"]})

    assert resp.status_code == 200
    data = get_data(resp)
    assert data["total"] == 2
    assert data["items"][0]["actor"]["full_name"] == "Meera Rao"
    assert data["items"][1]["actor"] is None


def test_audit_logs_require_admin(as_user):
    assert as_user(make_dsa()).get("/api/v1/admin/audit-logs").status_code == 403
