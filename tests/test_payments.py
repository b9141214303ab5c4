from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest

from app.core.settings import settings
from app.models.audit_log import AuditLog
from app.models.loan_application import LoanApplication
from app.models.notification import Notification
from app.models.payment import Payment
from app.models.user import User
from app.services import payments as payment_service
from app.services.payment_gateway import (
    PaymentGatewayError,
    build_merchant_params,
    decrypt_response,
    encrypt_request,
    parse_gateway_response,
)
from tests.conftest import FakeResult, make_admin, make_application, make_user

WORKING_KEY = "ABCDEF0123456789ABCDEF0123456789"


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


@pytest.fixture
def gateway_settings(monkeypatch):
    monkeypatch.setattr(settings, "hdfc_merchant_id", "123456")
    monkeypatch.setattr(settings, "hdfc_access_code", "AVXX00LL")
    monkeypatch.setattr(settings, "hdfc_working_key", WORKING_KEY)
    monkeypatch.setattr(settings, "service_charge_amount", 999)
    monkeypatch.setattr(settings, "frontend_base_url", "https://app.eduloan.test")


def _payment(application: LoanApplication, user: User, **overrides) -> Payment:
    defaults = dict(
        id=uuid4(),
        payment_id="PAY1714816800000ABC123",
        transaction_ref="ORD1714816800000WXYZ",
        application_id=application.id,
        user_id=user.id,
        amount=Decimal("999.00"),
        currency="INR",
        status="initiated",
        gateway="hdfc",
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(overrides)
    return Payment(**defaults)


def test_gateway_encryption_is_reversible_hex():
    plain = build_merchant_params({"order_id": "ORD1", "amount": "999.00", "billing_tel": None})
    encrypted = encrypt_request(plain, WORKING_KEY)
    assert all(char in "0123456789abcdef" for char in encrypted)
    assert decrypt_response(encrypted, WORKING_KEY) == plain
    assert parse_gateway_response(plain) == {"order_id": "ORD1", "amount": "999.00", "billing_tel": ""}


def test_gateway_decrypt_rejects_garbage():
    with pytest.raises(PaymentGatewayError):
        decrypt_response("zz-not-hex", WORKING_KEY)
    with pytest.raises(PaymentGatewayError):
        decrypt_response("deadbeef", WORKING_KEY)


def test_gateway_requires_working_key():
    with pytest.raises(PaymentGatewayError):
        encrypt_request("order_id=1", "")


def test_generated_identifiers():
    assert payment_service.generate_payment_id(1714816800000).startswith("PAY1714816800000")
    assert payment_service.generate_order_id(1714816800000).startswith("ORD1714816800000")
    assert len(payment_service.generate_order_id(1)) == len("ORD1") + 4


def test_success_rate_format():
    assert payment_service.format_success_rate(1, 3) == "33.33"
    assert payment_service.format_success_rate(0, 0) == "0.00"


def test_initiate_payment(as_user, fake_db, gateway_settings):
    user = make_user()
    application = make_application(user=user)
    fake_db.on_get(LoanApplication, application.id, application)

    resp = as_user(user).post(
        "/api/v1/payment/hdfc/initiate",
        json={"application_id": str(application.id), "amount": "999"},
    )

    assert resp.status_code == 200
    data = get_data(resp)
    assert data["payment_id"].startswith("PAY")
    assert data["transaction_ref"].startswith("ORD")
    assert data["gateway_data"]["access_code"] == "AVXX00LL"
    params = parse_gateway_response(decrypt_response(data["gateway_data"]["enc_request"], WORKING_KEY))
    assert params["order_id"] == data["transaction_ref"]
    assert params["amount"] == "999.00"
    assert params["merchant_param1"] == str(application.id)
    payment = fake_db.added_of(Payment)[0]
    assert payment.status == "initiated"
    assert fake_db.added_of(AuditLog)[0].action == "payment.initiate"


def test_initiate_payment_rejects_wrong_amount(as_user, fake_db, gateway_settings):
    user = make_user()
    application = make_application(user=user)
    fake_db.on_get(LoanApplication, application.id, application)

    resp = as_user(user).post(
        "/api/v1/payment/hdfc/initiate",
        json={"application_id": str(application.id), "amount": "10"},
    )

    assert resp.status_code == 400
    assert fake_db.added_of(Payment) == []


def test_initiate_payment_for_paid_application_conflicts(as_user, fake_db, gateway_settings):
    user = make_user()
    application = make_application(user=user, service_charges_paid=True, payment_status="completed")
    fake_db.on_get(LoanApplication, application.id, application)

    resp = as_user(user).post(
        "/api/v1/payment/hdfc/initiate",
        json={"application_id": str(application.id), "amount": "999"},
    )

    assert resp.status_code == 409


def test_initiate_payment_for_foreign_application_forbidden(as_user, fake_db, gateway_settings):
    application = make_application()
    fake_db.on_get(LoanApplication, application.id, application)

    resp = as_user(make_user()).post(
        "/api/v1/payment/hdfc/initiate",
        json={"application_id": str(application.id), "amount": "999"},
    )

    assert resp.status_code == 403


def _callback(client, fields: dict):
    enc = encrypt_request(build_merchant_params(fields), WORKING_KEY)
    return client.post("/api/v1/payment/hdfc/response", data={"encResp": enc}, follow_redirects=False)


def test_gateway_success_marks_application_paid(as_user, fake_db, gateway_settings, no_email):
    user = make_user()
    application = make_application(user=user)
    payment = _payment(application, user)
    fake_db.on_execute_return(FakeResult(items=[payment]))
    fake_db.on_get(LoanApplication, application.id, application)
    fake_db.on_get(User, user.id, user)

    resp = _callback(
        as_user(None),
        {
            "order_id": payment.transaction_ref,
            "order_status": "Success",
            "amount": "999.00",
            "tracking_id": "310009876543",
            "payment_mode": "UPI",
            "bank_ref_no": "BR123",
        },
    )

    assert resp.status_code == 303
    location = urlparse(resp.headers["location"])
    assert location.netloc == "app.eduloan.test"
    assert parse_qs(location.query)["status"] == ["completed"]
    assert payment.status == "completed"
    assert payment.gateway_transaction_id == "310009876543"
    assert payment.completed_at is not None
    assert application.service_charges_paid is True
    assert application.payment_status == "completed"
    assert fake_db.added_of(Notification)[0].title == "Payment Successful"
    assert no_email[0][0] == "payment_receipt"


def test_gateway_amount_mismatch_fails_payment(as_user, fake_db, gateway_settings, no_email):
    user = make_user()
    application = make_application(user=user)
    payment = _payment(application, user)
    fake_db.on_execute_return(FakeResult(items=[payment]))
    fake_db.on_get(LoanApplication, application.id, application)

    resp = _callback(
        as_user(None),
        {"order_id": payment.transaction_ref, "order_status": "Success", "amount": "1.00"},
    )

    assert resp.status_code == 303
    assert payment.status == "failed"
    assert payment.failure_reason == "Amount mismatch"
    assert application.service_charges_paid is False
    assert application.payment_status == "failed"
    assert no_email == []


def test_gateway_aborted_cancels_payment(as_user, fake_db, gateway_settings):
    user = make_user()
    application = make_application(user=user)
    payment = _payment(application, user)
    fake_db.on_execute_return(FakeResult(items=[payment]))
    fake_db.on_get(LoanApplication, application.id, application)

    _callback(as_user(None), {"order_id": payment.transaction_ref, "order_status": "Aborted"})

    assert payment.status == "cancelled"
    assert application.payment_status == "pending"


def test_gateway_garbage_redirects_with_error(as_user, fake_db, gateway_settings):
    resp = as_user(None).post(
        "/api/v1/payment/hdfc/response", data={"encResp": "deadbeef"}, follow_redirects=False
    )
    assert resp.status_code == 303
    assert parse_qs(urlparse(resp.headers["location"]).query)["status"] == ["error"]


def test_gateway_unknown_order_redirects_with_error(as_user, fake_db, gateway_settings):
    resp = _callback(as_user(None), {"order_id": "ORD0", "order_status": "Success"})
    assert resp.status_code == 303
    assert parse_qs(urlparse(resp.headers["location"]).query)["reason"] == ["Payment not found"]


def test_completed_payment_is_not_reprocessed(as_user, fake_db, gateway_settings):
    user = make_user()
    application = make_application(user=user)
    payment = _payment(application, user, status="completed")
    fake_db.on_execute_return(FakeResult(items=[payment]))

    _callback(as_user(None), {"order_id": payment.transaction_ref, "order_status": "Failure"})

    assert payment.status == "completed"
    assert fake_db.committed is False


def test_payment_status_hidden_from_other_users(as_user, fake_db):
    application = make_application()
    payment = _payment(application, make_user())
    fake_db.on_execute_return(FakeResult(items=[payment]))

    resp = as_user(make_user()).get("/api/v1/payment/hdfc/initiate", params={"payment_id": payment.payment_id})

    assert resp.status_code == 403


def test_payment_status_requires_identifier(as_user):
    resp = as_user(make_user()).get("/api/v1/payment/hdfc/initiate")
    assert resp.status_code == 400


def test_admin_verifies_payment_manually(as_user, fake_db, no_email):
    user = make_user()
    application = make_application(user=user)
    payment = _payment(application, user)
    fake_db.on_execute_return(FakeResult(items=[payment]))
    fake_db.on_get(LoanApplication, application.id, application)
    fake_db.on_get(User, user.id, user)
    admin = make_admin()

    resp = as_user(admin).post(
        "/api/v1/payments/verify",
        json={"payment_id": payment.payment_id, "status": "completed", "transaction_id": "MANUAL-1"},
    )

    assert resp.status_code == 200
    assert get_data(resp)["status"] == "completed"
    assert application.service_charges_paid is True
    audit = fake_db.added_of(AuditLog)[0]
    assert audit.actor_id == admin.id


def test_completed_payment_cannot_be_downgraded(as_user, fake_db, no_email):
    user = make_user()
    application = make_application(user=user, service_charges_paid=True, payment_status="completed")
    payment = _payment(application, user, status="completed")
    fake_db.on_execute_return(FakeResult(items=[payment]))

    resp = as_user(make_admin()).post(
        "/api/v1/payments/verify",
        json={"payment_id": payment.payment_id, "status": "failed", "notes": "Bank reversal"},
    )

    assert resp.status_code == 409
    assert resp.json()["message"] == "A completed payment cannot be changed"
    assert payment.status == "completed"
    assert application.service_charges_paid is True
    assert fake_db.committed is False


def test_applicant_cannot_verify_payment(as_user):
    resp = as_user(make_user()).post(
        "/api/v1/payments/verify", json={"payment_id": "PAY1", "status": "completed"}
    )
    assert resp.status_code == 403
