from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.api import deps
from app.core.errors import register_exception_handlers
from app.core.permissions import PermissionCode
from app.core.response_envelope import register_response_envelope
from tests.conftest import make_admin, make_dsa, make_user


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    register_response_envelope(app)

    @app.get("/protected")
    async def protected_route(user=Depends(deps.require_authenticated_user)):
        return {"user": str(user)}

    @app.get("/admin-only")
    async def admin_route(user=Depends(deps.require_admin)):
        return {"role": user.role}

    @app.get("/review")
    async def review_route(user=Depends(deps.require_verified_dsa)):
        return {"role": user.role}

    @app.get("/staff")
    async def staff_route(user=Depends(deps.require_staff)):
        return {"role": user.role}

    @app.get("/settings")
    async def settings_route(user=Depends(deps.require_permission(PermissionCode.SETTINGS_MANAGE))):
        return {"role": user.role}

    return app


def _client_as(app: FastAPI, user) -> TestClient:
    async def fake_user():
        return user

    app.dependency_overrides[deps.get_current_user] = fake_user
    return TestClient(app)


def test_protected_route_requires_auth():
    app = _build_app()
    client = TestClient(app)
    resp = client.get("/protected")
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"


def test_protected_route_allows_authenticated():
    app = _build_app()
    client = _client_as(app, {"id": "user-1"})
    resp = client.get("/protected", headers={"Authorization": "Bearer test"})
    assert resp.status_code == 200
    assert resp.json()["data"]["user"] == "{'id': 'user-1'}"


def test_admin_route_rejects_applicant():
    client = _client_as(_build_app(), make_user())
    resp = client.get("/admin-only")
    assert resp.status_code == 403
    assert resp.json()["message"] == "Admin access required"


def test_unverified_dsa_gets_pending_verification_code():
    client = _client_as(_build_app(), make_dsa(verified=False))
    resp = client.get("/review")
    assert resp.status_code == 403
    assert resp.json()["code"] == "dsa_pending_verification"


def test_staff_route_accepts_admin_and_verified_dsa_only():
    app = _build_app()
    assert _client_as(app, make_admin()).get("/staff").json()["data"]["role"] == "admin"
    assert _client_as(app, make_dsa()).get("/staff").json()["data"]["role"] == "dsa"
    assert _client_as(app, make_user()).get("/staff").status_code == 403


def test_permission_guard_follows_role_matrix():
    app = _build_app()
    assert _client_as(app, make_admin()).get("/settings").status_code == 200
    resp = _client_as(app, make_dsa()).get("/settings")
    assert resp.status_code == 403
    assert resp.json()["message"] == "Missing permission: settings.manage"
