import pytest

from app.api.v1.routers import email as email_router
from app.services import email_service
from app.services.email_service import EmailService, EmailServiceConfig
from tests.conftest import make_admin, make_dsa


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


@pytest.fixture
def smtp_outbox(monkeypatch):
    sent = []

    async def _send(message, **kwargs):
        sent.append((message, kwargs))

    monkeypatch.setattr(email_service.aiosmtplib, "send", _send)
    return sent


def _configured_service() -> EmailService:
    return EmailService(
        EmailServiceConfig(smtp_host="smtp.test", smtp_port=2525, from_email="noreply@eduloan.test", from_name="EduLoan")
    )


def test_render_ticket_update_template():
    subject, html, text = _configured_service().render_template(
        "ticket_update",
        {"ticket_number": "TKT2605040042", "ticket_id": "t-1", "subject": "Upload <failing>", "status": "resolved"},
    )

    assert subject == "Update on ticket TKT2605040042"
    assert "Upload &lt;failing&gt;" in html
    assert "/support/t-1" in html
    assert "Ticket TKT2605040042" in text


def test_subject_is_not_html_escaped():
    subject, html, _ = _configured_service().render_template(
        "application_status_changed",
        {"application_number": "EDU260504123456", "status_label": "Approved & Disbursing", "site_name": "EduLoan & Co"},
    )

    assert subject == "Application EDU260504123456 is now Approved & Disbursing"
    assert "&amp;" in html


def test_render_unknown_template_raises():
    with pytest.raises(ValueError):
        _configured_service().render_template("newsletter", {})


@pytest.mark.asyncio
async def test_unconfigured_smtp_reports_failure(smtp_outbox):
    service = EmailService(EmailServiceConfig(smtp_host=""))

    result = await service.send_email("a@example.com", "Hi", "<p>Hi</p>")

    assert result == {"email": "a@example.com", "success": False, "error": "Email service not configured"}
    assert smtp_outbox == []


@pytest.mark.asyncio
async def test_send_template_summarises_results(smtp_outbox):
    result = await _configured_service().send_template(
        "application_submitted",
        {"application_number": "EDU260504123456", "applicant_name": "Asha"},
        ["a@example.com", "b@example.com"],
    )

    assert result["summary"] == {"total": 2, "successful": 2, "failed": 0}
    message, kwargs = smtp_outbox[0]
    assert message["Subject"] == "Application EDU260504123456 received"
    assert kwargs["hostname"] == "smtp.test"


@pytest.mark.asyncio
async def test_smtp_errors_are_reported_per_recipient(monkeypatch):
    async def _fail(message, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(email_service.aiosmtplib, "send", _fail)

    result = await _configured_service().send_template("welcome", {"first_name": "Asha"}, ["a@example.com"])

    assert result["summary"]["failed"] == 1
    assert result["results"][0]["error"] == "connection refused"


@pytest.mark.asyncio
async def test_send_best_effort_swallows_render_errors(monkeypatch):
    monkeypatch.setattr(email_service, "_email_service", _configured_service())
    await email_service.send_best_effort("does_not_exist", {}, "a@example.com")
    await email_service.send_best_effort("welcome", {}, None)


def test_send_endpoint(as_user, monkeypatch, smtp_outbox):
    monkeypatch.setattr(email_router, "get_email_service", _configured_service)

    resp = as_user(make_admin()).post(
        "/api/v1/email/send",
        json={"template_name": "welcome", "template_data": {"first_name": "Asha"}, "recipients": ["a@example.com"]},
    )

    assert resp.status_code == 200
    assert get_data(resp)["summary"]["successful"] == 1


def test_send_endpoint_rejects_unknown_template(as_user, monkeypatch):
    monkeypatch.setattr(email_router, "get_email_service", _configured_service)

    resp = as_user(make_admin()).post(
        "/api/v1/email/send", json={"template_name": "newsletter", "recipients": ["a@example.com"]}
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Unknown email template: newsletter"


def test_list_templates(as_user):
    resp = as_user(make_admin()).get("/api/v1/email/send")
    names = [template["name"] for template in get_data(resp)["templates"]]
    assert "payment_receipt" in names


def test_email_requires_admin(as_user):
    assert as_user(make_dsa()).get("/api/v1/email/send").status_code == 403
