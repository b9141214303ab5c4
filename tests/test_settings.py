from decimal import Decimal

import pytest
from fastapi import HTTPException

from app.models.audit_log import AuditLog
from app.models.system_settings import SETTINGS_ROW_ID, SettingsBackup, SystemSettings
from app.schemas.settings import SettingsSection, SettingsUpdate
from app.services import settings as settings_service
from tests.conftest import make_admin, make_dsa, make_user


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def _stored(fake_db, data: dict) -> SystemSettings:
    row = SystemSettings(id=SETTINGS_ROW_ID, data=data)
    fake_db.on_get(SystemSettings, SETTINGS_ROW_ID, row)
    return row


@pytest.mark.asyncio
async def test_defaults_when_nothing_stored(fake_db):
    current = await settings_service.get_system_settings(fake_db)
    assert current.general.site_name == "EduLoan"
    assert current.loan.min_loan_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_stored_sections_merge_over_defaults(fake_db):
    _stored(fake_db, {"loan": {"max_loan_amount": "2000000"}, "unknown": {"x": 1}})

    loan = await settings_service.get_loan_settings(fake_db)

    assert loan.max_loan_amount == Decimal("2000000")
    assert loan.min_loan_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_invalid_stored_settings_fall_back_to_defaults(fake_db):
    _stored(fake_db, {"loan": {"min_loan_amount": "900", "max_loan_amount": "100"}})

    loan = await settings_service.get_loan_settings(fake_db)

    assert loan.max_loan_amount == Decimal("5000000")


@pytest.mark.asyncio
async def test_update_rejects_inverted_loan_range(fake_db):
    with pytest.raises(HTTPException) as exc_info:
        await settings_service.update_system_settings(
            fake_db,
            make_admin(),
            SettingsUpdate(loan={"min_loan_amount": "900000", "max_loan_amount": "100000"}),
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "invalid_settings"
    assert fake_db.committed is False


@pytest.mark.asyncio
async def test_update_rejects_unknown_keys(fake_db):
    with pytest.raises(HTTPException) as exc_info:
        await settings_service.update_system_settings(
            fake_db, make_admin(), SettingsUpdate(general={"theme": "dark"})
        )
    assert exc_info.value.detail == "Unknown general settings: theme"


@pytest.mark.asyncio
async def test_masked_password_is_not_overwritten(fake_db):
    _stored(fake_db, {"email": {"smtp_password": "s3cret", "smtp_host": "smtp.old"}})

    updated = await settings_service.update_system_settings(
        fake_db,
        make_admin(),
        SettingsUpdate(email={"smtp_password": settings_service.PASSWORD_MASK, "smtp_host": "smtp.new"}),
    )

    assert updated.email.smtp_password == "s3cret"
    assert updated.email.smtp_host == "smtp.new"
    audit = fake_db.added_of(AuditLog)[0]
    assert audit.new_value["email"]["smtp_password"] == settings_service.PASSWORD_MASK


@pytest.mark.asyncio
async def test_reset_single_section_keeps_others(fake_db):
    _stored(
        fake_db,
        {"general": {"site_name": "Campus Loans"}, "security": {"max_login_attempts": 3}},
    )

    updated = await settings_service.reset_system_settings(fake_db, make_admin(), SettingsSection.SECURITY)

    assert updated.security.max_login_attempts == 5
    assert updated.general.site_name == "Campus Loans"
    assert fake_db.added_of(AuditLog)[0].action == "settings.reset"


def test_get_settings_masks_smtp_password(as_user, fake_db):
    _stored(fake_db, {"email": {"smtp_password": "s3cret"}})

    resp = as_user(make_admin()).get("/api/v1/admin/settings")

    assert resp.status_code == 200
    assert get_data(resp)["settings"]["email"]["smtp_password"] == "********"


def test_update_settings_endpoint(as_user, fake_db):
    resp = as_user(make_admin()).put(
        "/api/v1/admin/settings", json={"general": {"maintenance_mode": True}}
    )

    assert resp.status_code == 200
    assert get_data(resp)["settings"]["general"]["maintenance_mode"] is True
    row = fake_db.added_of(SystemSettings)[0]
    assert row.data["general"]["maintenance_mode"] is True


def test_empty_update_is_rejected(as_user):
    resp = as_user(make_admin()).put("/api/v1/admin/settings", json={})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No settings provided"


def test_backup_action(as_user, fake_db):
    resp = as_user(make_admin()).post("/api/v1/admin/settings", json={"action": "backup", "label": "pre-launch"})

    assert resp.status_code == 200
    backup = fake_db.added_of(SettingsBackup)[0]
    assert get_data(resp)["backup_id"] == str(backup.id)
    assert backup.label == "pre-launch"
    assert backup.data["general"]["site_name"] == "EduLoan"


def test_reset_action_message(as_user):
    resp = as_user(make_admin()).post("/api/v1/admin/settings", json={"action": "reset", "section": "loan"})
    assert get_data(resp)["message"] == "loan settings reset to defaults"


@pytest.mark.parametrize("factory", [make_user, make_dsa])
def test_settings_require_admin(as_user, factory):
    resp = as_user(factory()).get("/api/v1/admin/settings")
    assert resp.status_code == 403
