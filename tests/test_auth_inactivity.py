from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from app.api import deps
from app.core.security import create_access_token
from app.core.settings import settings
from tests.conftest import FakeAsyncSession, FakeResult, make_dsa, make_user


def test_enforce_inactivity_allows_recent_activity(monkeypatch):
    monkeypatch.setattr(settings, "session_timeout_minutes", 30)
    now = datetime.now(timezone.utc)
    deps.enforce_inactivity(now - timedelta(minutes=10), now)


def test_enforce_inactivity_raises_when_expired(monkeypatch):
    monkeypatch.setattr(settings, "session_timeout_minutes", 30)
    now = datetime.now(timezone.utc)
    with pytest.raises(HTTPException) as exc:
        deps.enforce_inactivity(now - timedelta(minutes=45), now)
    assert exc.value.status_code == 401
    assert "Session expired" in exc.value.detail


def test_enforce_inactivity_ignores_first_request():
    deps.enforce_inactivity(None, datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_current_user_touches_last_active():
    user = make_user()
    db = FakeAsyncSession().on_execute_return(FakeResult(scalar=user))
    token = create_access_token(str(user.id), token_version=0)

    resolved = await deps.get_current_user(token=token, db=db)

    assert resolved is user
    assert user.last_active_at is not None
    assert db.committed is True


@pytest.mark.asyncio
async def test_current_user_rejects_revoked_token():
    user = make_user(token_version=3)
    db = FakeAsyncSession().on_execute_return(FakeResult(scalar=user))
    token = create_access_token(str(user.id), token_version=2)

    with pytest.raises(HTTPException) as exc:
        await deps.get_current_user(token=token, db=db)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token revoked"


@pytest.mark.asyncio
async def test_deactivated_dsa_only_passes_the_allow_inactive_dependency():
    dsa = make_dsa(is_active=False)
    db = FakeAsyncSession().on_execute_return(FakeResult(scalar=dsa))
    token = create_access_token(str(dsa.id), token_version=0)

    with pytest.raises(HTTPException) as exc:
        await deps.get_current_user(token=token, db=db)
    assert exc.value.detail == "Inactive user"

    assert await deps.get_current_user_allow_inactive(token=token, db=db) is dsa
