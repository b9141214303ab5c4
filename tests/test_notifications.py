from datetime import datetime, timezone
from uuid import uuid4

from app.models.notification import Notification
from tests.conftest import FakeResult, make_user, sequence_handler


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def make_notification(user, **overrides) -> Notification:
    defaults = dict(
        id=uuid4(),
        user_id=user.id,
        title="Application Submitted",
        message="Your application EDU260504123456 was received.",
        type="info",
        read=False,
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(overrides)
    return Notification(**defaults)


def test_list_notifications_reports_unread_count(as_user, fake_db):
    user = make_user()
    items = [make_notification(user), make_notification(user, read=True, type="success")]
    fake_db.on_execute(sequence_handler([FakeResult(items=items), FakeResult(scalar=1)]))

    resp = as_user(user).get("/api/v1/notifications")

    assert resp.status_code == 200
    data = get_data(resp)
    assert len(data["notifications"]) == 2
    assert data["notifications"][1]["type"] == "success"
    assert data["unread_count"] == 1


def test_count_endpoint(as_user, fake_db):
    fake_db.on_execute_return(FakeResult(scalar=4))
    resp = as_user(make_user()).get("/api/v1/notifications/count")
    assert get_data(resp) == {"count": 4}


def test_mark_single_notification_read(as_user, fake_db):
    user = make_user()
    notification = make_notification(user)
    fake_db.on_get(Notification, notification.id, notification)

    resp = as_user(user).patch(f"/api/v1/notifications/{notification.id}/read")

    assert resp.status_code == 200
    assert get_data(resp)["read"] is True
    assert notification.read_at is not None
    assert fake_db.committed is True


def test_cannot_mark_someone_elses_notification(as_user, fake_db):
    notification = make_notification(make_user())
    fake_db.on_get(Notification, notification.id, notification)

    resp = as_user(make_user()).patch(f"/api/v1/notifications/{notification.id}/read")

    assert resp.status_code == 404
    assert notification.read is False


def test_mark_all_read_returns_updated_rows(as_user, fake_db):
    fake_db.on_execute_return(FakeResult(rowcount=7))
    resp = as_user(make_user()).patch("/api/v1/notifications/read-all")
    assert get_data(resp) == {"count": 7}


def test_notifications_require_login(as_user):
    resp = as_user(None).get("/api/v1/notifications")
    assert resp.status_code == 401
