def test_admin_requires_login(client):
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_admin_dashboard_counts(client, login):
    login("admin@example.com")
    client.post("/api/lists", json={"title": "Counted"})
    r = client.get("/admin/")
    assert r.status_code == 200
    assert r.json["system"]["db_connected"] is True
    assert r.json["counts"]["lists"] == 1
    assert r.json["counts"]["users"] == 1


def test_users_list_filters(client, login, make_user):
    make_user("zoe@example.com", name="Zoe Quinn")
    login("admin@example.com")

    r = client.get("/admin/users?q=zoe")
    assert [u["email"] for u in r.json["users"]] == ["zoe@example.com"]

    r = client.get("/admin/users?q=admin")
    assert r.json["users"][0]["roles"] == ["admin"]

    r = client.get("/admin/users?status=inactive")
    assert r.json["users"] == []


def test_toggle_active(client, login, make_user):
    user_id = make_user("sleepy@example.com")
    login("admin@example.com")

    r = client.post(f"/admin/users/{user_id}/toggle-active")
    assert r.status_code == 200
    assert r.json["user"]["is_active"] is False

    r = client.get("/admin/users?status=inactive")
    assert [u["email"] for u in r.json["users"]] == ["sleepy@example.com"]

    # Inactive users cannot sign in
    client.post("/auth/logout", json={})
    r = client.post("/auth/login", json={"email": "sleepy@example.com", "password": "password123"})
    assert r.status_code == 401

    login("admin@example.com")
    r = client.post(f"/admin/users/{user_id}/toggle-active")
    assert r.json["user"]["is_active"] is True


def test_cannot_deactivate_self(client, login):
    me = login("admin@example.com")
    r = client.post(f"/admin/users/{me['id']}/toggle-active")
    assert r.status_code == 422
    assert r.json["errors"] == ["You cannot deactivate your own account."]


def test_missing_permission_is_forbidden(client, login, make_user):
    make_user("plain@example.com")
    login("plain@example.com")
    assert client.get("/admin/").status_code == 403
    r = client.get("/admin/users", headers={"Accept": "application/json"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "admin.view"


def test_audit_filters(client, login, make_user):
    make_user("bob@example.com")
    login("admin@example.com")
    client.post("/api/lists", json={"title": "Audited"})

    login("bob@example.com")
    client.post("/api/lists", json={"title": "Bob's list"})

    login("admin@example.com")
    r = client.get("/admin/audit?action=list.create")
    assert len(r.json["events"]) == 2

    r = client.get("/admin/audit?action=list.create&actor_email=bob")
    events = r.json["events"]
    assert [e["actor_email"] for e in events] == ["bob@example.com"]

    r = client.get("/admin/audit?date_from=2000-01-01&date_to=2000-12-31")
    assert r.json["events"] == []

    assert client.get("/admin/audit?date_from=yesterday").status_code == 422
