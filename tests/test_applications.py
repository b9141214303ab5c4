import io
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import UploadFile
from sqlalchemy import Update
from sqlalchemy.exc import IntegrityError
from starlette.datastructures import Headers

from app.models.application_review import ApplicationReview
from app.models.audit_log import AuditLog
from app.models.file_upload import FileUpload
from app.models.loan_application import LoanApplication
from app.models.notification import Notification
from app.models.system_settings import SETTINGS_ROW_ID, SystemSettings
from app.schemas.applications import ApplicationCreate
from app.services.applications import create_application_with_files, generate_application_number, progress_for_status
from tests.conftest import (
    FakeResult,
    entity_handler,
    make_admin,
    make_application,
    make_dsa,
    make_user,
    sequence_handler,
)


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def application_payload(amount: str = "750000") -> dict:
    return {
        "personal_info": {
            "first_name": "Asha",
            "last_name": "Verma",
            "email": "asha@example.com",
            "phone": "+91 98765 43210",
            "date_of_birth": "2001-04-12",
            "aadhar_number": "1234 5678 9012",
            "pan_number": "abcde1234f",
            "address": {"street": "12 MG Road", "city": "Pune", "state": "MH", "pincode": "411001"},
        },
        "education_info": {
            "institute_name": "IIT Bombay",
            "course": "MSc Data Science",
            "duration": "2 years",
            "fee_structure": "800000",
        },
        "loan_info": {"amount": amount, "purpose": "Tuition", "tenure": 60},
        "financial_info": {"annual_income": "600000", "employment_type": "salaried"},
    }


def test_generate_application_number_format():
    number = generate_application_number(datetime(2026, 3, 7, tzinfo=timezone.utc))
    assert number.startswith("EDU260307")
    assert len(number) == 15


def test_progress_for_status():
    assert progress_for_status("pending") == 20
    assert progress_for_status("under_review") == 50
    assert progress_for_status("partially_approved") == 75
    assert progress_for_status("rejected") == 100
    assert progress_for_status("cancelled") == 0


def test_create_application(as_user, fake_db, no_email):
    user = make_user()
    client = as_user(user)

    resp = client.post("/api/v1/applications", json=application_payload())

    assert resp.status_code == 201
    data = get_data(resp)
    assert data["status"] == "pending"
    assert data["progress"] == 20
    assert data["application_number"].startswith("EDU")
    assert data["personal_info"]["aadhar_number"] == "123456789012"
    assert data["personal_info"]["pan_number"] == "ABCDE1234F"
    assert data["personal_info"]["phone"] == "9876543210"
    assert data["deadline"]["level"] == "normal"

    created = fake_db.added_of(LoanApplication)[0]
    assert created.user_id == user.id
    assert created.loan_amount == Decimal("750000")
    assert "aadhar_number" not in created.personal_info
    assert fake_db.added_of(Notification)[0].title == "Application Submitted"
    assert fake_db.added_of(AuditLog)[0].action == "application.create"
    assert no_email[0][0] == "application_submitted"
    assert no_email[0][2] == "asha@example.com"


def test_create_application_enforces_configured_amount_range(as_user, fake_db, no_email):
    fake_db.on_get(
        SystemSettings,
        SETTINGS_ROW_ID,
        SystemSettings(id=SETTINGS_ROW_ID, data={"loan": {"min_loan_amount": "100000"}}),
    )
    client = as_user(make_user())

    resp = client.post("/api/v1/applications", json=application_payload(amount="60000"))

    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Loan amount must be between 100000")
    assert fake_db.added_of(LoanApplication) == []


def test_create_application_rejects_amount_above_default_max(as_user, no_email):
    resp = as_user(make_user()).post("/api/v1/applications", json=application_payload(amount="9000000"))
    assert resp.status_code == 400


def test_dsa_cannot_submit_application(as_user):
    resp = as_user(make_dsa()).post("/api/v1/applications", json=application_payload())
    assert resp.status_code == 403
    assert resp.json()["message"] == "Missing permission: application.create"


def test_create_application_validates_kyc_identifiers(as_user):
    payload = application_payload()
    payload["personal_info"]["aadhar_number"] = "1234"
    resp = as_user(make_user()).post("/api/v1/applications", json=payload)
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


def test_create_with_files_stores_documents(as_user, fake_db, no_email, local_storage):
    client = as_user(make_user())

    resp = client.post(
        "/api/v1/applications/with-files",
        data={"application": json.dumps(application_payload())},
        files={"marksheet": ("marks.pdf", b"%PDF-1.4 marks", "application/pdf")},
    )

    assert resp.status_code == 201
    records = fake_db.added_of(FileUpload)
    assert len(records) == 1
    assert records[0].document_type == "marksheet"
    assert records[0].application_id == fake_db.added_of(LoanApplication)[0].id
    assert local_storage.object_exists(records[0].object_key)


@pytest.mark.asyncio
async def test_failed_commit_removes_stored_documents(fake_db, local_storage, monkeypatch, no_email):
    async def _failing_commit():
        raise IntegrityError("INSERT INTO file_uploads", {}, Exception("duplicate key"))

    monkeypatch.setattr(fake_db, "commit", _failing_commit)
    upload = UploadFile(
        file=io.BytesIO(b"%PDF-1.4 marks"),
        filename="marks.pdf",
        headers=Headers({"content-type": "application/pdf"}),
    )

    with pytest.raises(IntegrityError):
        await create_application_with_files(
            fake_db, make_user(), ApplicationCreate.model_validate(application_payload()), [("marksheet", upload)]
        )

    record = fake_db.added_of(FileUpload)[0]
    assert not local_storage.object_exists(record.object_key)
    assert local_storage.list_objects() == []
    assert fake_db.rolled_back is True


def test_create_with_files_rejects_bad_document(as_user, fake_db, local_storage):
    resp = as_user(make_user()).post(
        "/api/v1/applications/with-files",
        data={"application": json.dumps(application_payload())},
        files={"fee_receipt": ("receipt.pdf", b"not really a pdf", "application/pdf")},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "invalid_file"
    assert body["details"]["field"] == "fee_receipt"
    assert fake_db.added_of(LoanApplication) == []


def test_create_with_files_requires_application_field(as_user):
    resp = as_user(make_user()).post(
        "/api/v1/applications/with-files",
        data={"other": "x"},
        files={"marksheet": ("marks.pdf", b"%PDF-1.4 marks", "application/pdf")},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "missing_application"


def test_applicant_cannot_view_someone_elses_application(as_user, fake_db):
    application = make_application()
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_user()).get(f"/api/v1/applications/{application.id}")

    assert resp.status_code == 403


def test_missing_application_returns_404(as_user, fake_db):
    resp = as_user(make_admin()).get("/api/v1/applications/8f14e45f-ea8e-4c5b-9d6a-3e1f2a7b9c01")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Application not found"


def test_dsa_sees_masked_identifiers(as_user, fake_db):
    application = make_application()
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_dsa()).get(f"/api/v1/applications/{application.id}")

    assert resp.status_code == 200
    info = get_data(resp)["personal_info"]
    assert info["aadhar_number"] == "********9012"
    assert info["pan_number"] == "******234F"


def test_admin_sees_full_identifiers(as_user, fake_db):
    application = make_application()
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_admin()).get(f"/api/v1/applications/{application.id}")

    assert get_data(resp)["personal_info"]["aadhar_number"] == "123456789012"


def test_unverified_dsa_cannot_view_applications(as_user, fake_db):
    application = make_application()
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_dsa(verified=False)).get(f"/api/v1/applications/{application.id}")

    assert resp.status_code == 403


def test_list_applications_paginates(as_user, fake_db):
    user = make_user()
    application = make_application(user=user)
    fake_db.on_execute(sequence_handler([FakeResult(scalar=11), FakeResult(items=[application])]))

    resp = as_user(user).get("/api/v1/applications", params={"page": 2, "limit": 10})

    assert resp.status_code == 200
    data = get_data(resp)
    assert data["total"] == 11
    assert data["page"] == 2
    assert data["total_pages"] == 2
    assert data["applications"][0]["id"] == str(application.id)


def test_unverified_dsa_cannot_list_applications(as_user):
    resp = as_user(make_dsa(verified=False)).get("/api/v1/applications")
    assert resp.status_code == 403
    assert resp.json()["code"] == "dsa_pending_verification"


def test_cancel_pending_application(as_user, fake_db):
    user = make_user()
    application = make_application(user=user)
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(user).post(f"/api/v1/applications/{application.id}/cancel")

    assert resp.status_code == 200
    assert get_data(resp)["status"] == "cancelled"
    assert application.cancelled_at is not None
    assert fake_db.added_of(AuditLog)[0].action == "application.cancel"


def test_cancel_rejects_non_pending_application(as_user, fake_db):
    user = make_user()
    application = make_application(user=user, status="under_review")
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(user).post(f"/api/v1/applications/{application.id}/cancel")

    assert resp.status_code == 409
    assert resp.json()["message"] == "Only pending applications can be cancelled"


def test_admin_status_update_notifies_applicant(as_user, fake_db, no_email):
    application = make_application(status="under_review")
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_admin()).put(
        f"/api/v1/applications/{application.id}/status",
        json={"status": "approved", "comments": "All documents verified"},
    )

    assert resp.status_code == 200
    data = get_data(resp)
    assert data["status"] == "approved"
    assert data["progress"] == 100
    assert data["deadline"] is None
    assert data["comments"] == "All documents verified"
    notification = fake_db.added_of(Notification)[0]
    assert notification.user_id == application.user_id
    assert notification.type == "success"
    assert no_email[0][0] == "application_status_changed"
    assert no_email[0][1]["status_label"] == "Approved"


def _released_reviews(fake_db) -> bool:
    return any(
        isinstance(stmt, Update) and stmt.table is ApplicationReview.__table__ for stmt in fake_db.executed
    )


def test_admin_final_status_releases_open_assignments(as_user, fake_db, no_email):
    application = make_application(status="under_review")
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_admin()).put(f"/api/v1/applications/{application.id}/status", json={"status": "rejected"})

    assert resp.status_code == 200
    assert _released_reviews(fake_db)


def test_admin_partial_approval_keeps_assignments(as_user, fake_db, no_email):
    application = make_application(status="under_review")
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_admin()).put(
        f"/api/v1/applications/{application.id}/status", json={"status": "partially_approved"}
    )

    assert resp.status_code == 200
    assert get_data(resp)["progress"] == 75
    assert not _released_reviews(fake_db)


def test_applicant_cannot_update_status(as_user, fake_db):
    application = make_application()
    resp = as_user(make_user()).put(
        f"/api/v1/applications/{application.id}/status", json={"status": "approved"}
    )
    assert resp.status_code == 403


def test_dsa_decision_blocked_after_deadline(as_user, fake_db):
    application = make_application(review_deadline=datetime.now(timezone.utc) - timedelta(hours=1))
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    resp = as_user(make_dsa()).put(
        f"/api/v1/applications/{application.id}/status", json={"status": "approved"}
    )

    assert resp.status_code == 403
    assert resp.json()["message"] == "Deadline Missed"
