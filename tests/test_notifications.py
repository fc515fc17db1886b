"""Tests for in-app notifications and per-user notification settings."""
from datetime import datetime, time

from app.listopia.modules.notifications.models import NotificationSetting


def _shared_list(client, login, make_user, email="bob@example.com", permission="write"):
    make_user(email)
    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Chores"})
    lst = r.json["list"]
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": email, "permission": permission})
    return lst


def test_collaborator_added_notification(client, login, make_user):
    _shared_list(client, login, make_user)
    login("bob@example.com")
    r = client.get("/api/notifications")
    assert [n["type"] for n in r.json["notifications"]] == ["collaborator_added"]
    assert r.json["notifications"][0]["title"] == 'Admin shared "Chores" with you'
    assert r.json["stats"] == {"total": 1, "unread": 1, "unseen": 1}


def test_actor_is_never_notified(client, login, make_user):
    lst = _shared_list(client, login, make_user)
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Dishes"})
    client.post(f"/api/lists/{lst['id']}/items/{r.json['item']['id']}/toggle")
    r = client.get("/api/notifications")
    assert r.json["notifications"] == []


def test_item_completed_and_status_change_reach_collaborators(client, login, make_user):
    lst = _shared_list(client, login, make_user)
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Laundry"})
    item_id = r.json["item"]["id"]

    login("bob@example.com")
    client.post(f"/api/lists/{lst['id']}/items/{item_id}/toggle")
    client.post(f"/api/lists/{lst['id']}/toggle-status")

    login("admin@example.com")
    r = client.get("/api/notifications")
    types = {n["type"] for n in r.json["notifications"]}
    assert types == {"item_completed", "list_status_changed"}


def test_assignment_notifies_assignee(client, login, make_user):
    lst = _shared_list(client, login, make_user)
    r = client.get(f"/api/lists/{lst['id']}/collaborators")
    bob_id = r.json["collaborators"][0]["user_id"]
    client.post(f"/api/lists/{lst['id']}/items", json={"title": "Vacuum", "assigned_user_id": bob_id})

    login("bob@example.com")
    r = client.get("/api/notifications?type=item_assigned")
    assert [n["title"] for n in r.json["notifications"]] == ['You were assigned "Vacuum"']


def test_mark_read_and_read_all(client, login, make_user):
    lst = _shared_list(client, login, make_user)
    client.patch(f"/api/lists/{lst['id']}", json={"title": "House chores"})

    login("bob@example.com")
    r = client.get("/api/notifications?filter=unread")
    notifications = r.json["notifications"]
    assert len(notifications) == 2

    r = client.post(f"/api/notifications/{notifications[0]['id']}/read")
    assert r.json["notification"]["read"] is True
    assert r.json["notification"]["seen"] is True

    r = client.get("/api/notifications?filter=read")
    assert len(r.json["notifications"]) == 1

    r = client.post("/api/notifications/read-all")
    assert r.json == {"updated": 1}
    r = client.get("/api/notifications/stats")
    assert r.json["stats"]["unread"] == 0


def test_seen_all(client, login, make_user):
    _shared_list(client, login, make_user)
    login("bob@example.com")
    r = client.post("/api/notifications/seen-all")
    assert r.json == {"updated": 1}
    r = client.get("/api/notifications/stats")
    assert r.json["stats"] == {"total": 1, "unread": 1, "unseen": 0}


def test_cannot_read_someone_elses_notification(client, login, make_user):
    _shared_list(client, login, make_user)
    login("bob@example.com")
    notification_id = client.get("/api/notifications").json["notifications"][0]["id"]

    login("admin@example.com")
    assert client.post(f"/api/notifications/{notification_id}/read").status_code == 404


def test_invalid_filter(client, login):
    login("admin@example.com")
    assert client.get("/api/notifications?filter=sometimes").status_code == 422


def test_settings_update_and_validation(client, login):
    login("admin@example.com")
    r = client.get("/api/notifications/settings")
    assert r.json["settings"]["enabled_channels"] == ["email", "push"]

    r = client.patch(
        "/api/notifications/settings",
        json={
            "sms_notifications": True,
            "notification_frequency": "daily_digest",
            "timezone": "Europe/Berlin",
            "quiet_hours_start": "22:00",
            "quiet_hours_end": "07:30",
        },
    )
    assert r.status_code == 200
    settings = r.json["settings"]
    assert settings["enabled_channels"] == ["email", "sms", "push"]
    assert settings["notification_frequency"] == "daily_digest"
    assert settings["timezone"] == "Europe/Berlin"
    assert (settings["quiet_hours_start"], settings["quiet_hours_end"]) == ("22:00", "07:30")

    r = client.patch(
        "/api/notifications/settings",
        json={"notification_frequency": "hourly", "timezone": "Mars/Base", "quiet_hours_start": "late"},
    )
    assert r.status_code == 422
    assert len(r.json["errors"]) == 3


def test_settings_reject_odd_shaped_values(client, login):
    login("admin@example.com")
    r = client.patch("/api/notifications/settings", json={"notification_frequency": 5, "timezone": "America"})
    assert r.status_code == 422
    assert len(r.json["errors"]) == 2
    r = client.patch("/api/notifications/settings", json={"timezone": ["Europe/Berlin"]})
    assert r.status_code == 422
    assert client.get("/api/notifications/settings").json["settings"]["timezone"] == "UTC"


def test_disabled_frequency_suppresses_notifications(client, login, make_user):
    make_user("bob@example.com")
    login("bob@example.com")
    client.patch("/api/notifications/settings", json={"notification_frequency": "disabled"})

    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Quiet"})
    client.post(f"/api/lists/{r.json['list']['id']}/invitations", json={"email": "bob@example.com"})

    login("bob@example.com")
    assert client.get("/api/notifications").json["notifications"] == []


def test_category_switch_suppresses_only_that_category(client, login, make_user):
    make_user("bob@example.com")
    login("bob@example.com")
    client.patch("/api/notifications/settings", json={"collaboration_notifications": False})

    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Selective"})
    lst = r.json["list"]
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "bob@example.com", "permission": "write"})
    client.patch(f"/api/lists/{lst['id']}", json={"status": "active"})

    login("bob@example.com")
    types = [n["type"] for n in client.get("/api/notifications").json["notifications"]]
    assert types == ["list_status_changed"]


def test_quiet_hours_window_wraps_midnight():
    setting = NotificationSetting(timezone="UTC", quiet_hours_start=time(22, 0), quiet_hours_end=time(7, 0))
    assert setting.in_quiet_hours(datetime(2024, 1, 1, 23, 30)) is True
    assert setting.in_quiet_hours(datetime(2024, 1, 1, 6, 59)) is True
    assert setting.in_quiet_hours(datetime(2024, 1, 1, 12, 0)) is False


def test_quiet_hours_use_local_timezone():
    setting = NotificationSetting(timezone="America/New_York", quiet_hours_start=time(9, 0), quiet_hours_end=time(17, 0))
    # 15:00 UTC is 10:00 in New York (EST)
    assert setting.in_quiet_hours(datetime(2024, 1, 15, 15, 0)) is True
    assert setting.in_quiet_hours(datetime(2024, 1, 15, 23, 0)) is False


def test_quiet_hours_fall_back_to_utc_for_unknown_zone():
    setting = NotificationSetting(timezone="America", quiet_hours_start=time(22, 0), quiet_hours_end=time(7, 0))
    assert setting.in_quiet_hours(datetime(2024, 1, 1, 23, 30)) is True
