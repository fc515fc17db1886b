"""Tests for lists, items, board columns and time tracking."""
from app.listopia.db import session_scope
from app.listopia.models import AuditEvent
from app.listopia.modules.lists.models import List


def _create_list(client, **fields):
    payload = {"title": "Groceries", **fields}
    r = client.post("/api/lists", json=payload)
    assert r.status_code == 201, r.json
    return r.json["list"]


def _add_item(client, list_id, **fields):
    payload = {"title": "Milk", **fields}
    r = client.post(f"/api/lists/{list_id}/items", json=payload)
    assert r.status_code == 201, r.json
    return r.json["item"]


def test_create_list_defaults(client, login):
    login("admin@example.com")
    lst = _create_list(client, description="Weekly run")
    assert lst["status"] == "draft"
    assert lst["list_type"] == "personal"
    assert lst["is_public"] is False
    assert lst["items"] == []
    assert [c["name"] for c in lst["board_columns"]] == ["To Do", "In Progress", "Done"]


def test_create_list_validation(client, login):
    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "", "status": "bogus"})
    assert r.status_code == 422
    assert "Title is required." in r.json["errors"]
    assert any(e.startswith("Invalid status") for e in r.json["errors"])


def test_create_list_writes_audit_event(app, client, login):
    login("admin@example.com")
    lst = _create_list(client)
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "list.create").one()
        assert ev.entity_id == str(lst["id"])
        assert ev.actor_user_email == "admin@example.com"


def test_index_shows_owned_and_shared_lists_only(client, login, make_user):
    make_user("bob@example.com")
    login("bob@example.com")
    _create_list(client, title="Bob private")

    login("admin@example.com")
    _create_list(client, title="Admin list")
    r = client.get("/api/lists")
    assert [lst["title"] for lst in r.json["lists"]] == ["Admin list"]


def test_index_filters_by_status_and_query(client, login):
    login("admin@example.com")
    _create_list(client, title="Trip to Lisbon", status="active")
    _create_list(client, title="Books", status="draft")
    r = client.get("/api/lists?status=active")
    assert [lst["title"] for lst in r.json["lists"]] == ["Trip to Lisbon"]
    r = client.get("/api/lists?q=book")
    assert [lst["title"] for lst in r.json["lists"]] == ["Books"]


def test_other_users_cannot_read_private_list(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    make_user("eve@example.com")
    login("eve@example.com")
    assert client.get(f"/api/lists/{lst['id']}").status_code == 403
    assert client.patch(f"/api/lists/{lst['id']}", json={"title": "Hacked"}).status_code == 403
    assert client.delete(f"/api/lists/{lst['id']}").status_code == 403


def test_update_and_delete_list(app, client, login):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.patch(f"/api/lists/{lst['id']}", json={"title": "Renamed", "status": "active"})
    assert r.status_code == 200
    assert r.json["list"]["title"] == "Renamed"
    assert r.json["list"]["status"] == "active"

    _add_item(client, lst["id"])
    r = client.delete(f"/api/lists/{lst['id']}")
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(List, lst["id"]) is None
    assert client.get(f"/api/lists/{lst['id']}").status_code == 404


def test_toggle_status_cycles_completed_and_active(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/toggle-status")
    assert r.json["list"]["status"] == "completed"
    r = client.post(f"/api/lists/{lst['id']}/toggle-status")
    assert r.json["list"]["status"] == "active"


def test_public_list_is_readable_by_slug_without_login(app, client, login):
    login("admin@example.com")
    lst = _create_list(client, title="Party Plan")
    r = client.post(f"/api/lists/{lst['id']}/toggle-public")
    assert r.json["list"]["is_public"] is True
    slug = r.json["list"]["public_slug"]
    assert slug == "party-plan"

    anon = app.test_client()
    r = anon.get(f"/api/public/lists/{slug}")
    assert r.status_code == 200
    assert r.json["list"]["title"] == "Party Plan"

    client.post(f"/api/lists/{lst['id']}/toggle-public")
    assert anon.get(f"/api/public/lists/{slug}").status_code == 404


def test_public_slugs_are_unique(client, login):
    login("admin@example.com")
    first = _create_list(client, title="Same", is_public=True)
    second = _create_list(client, title="Same", is_public=True)
    assert first["public_slug"] == "same"
    assert second["public_slug"] == "same-1"


def test_duplicate_list_copies_items_uncompleted(client, login):
    login("admin@example.com")
    lst = _create_list(client, title="Packing")
    _add_item(client, lst["id"], title="Socks", completed=True)
    _add_item(client, lst["id"], title="Charger")
    r = client.post(f"/api/lists/{lst['id']}/duplicate")
    assert r.status_code == 201
    copy = r.json["list"]
    assert copy["title"] == "Copy of Packing"
    assert copy["status"] == "draft"
    assert [i["title"] for i in copy["items"]] == ["Socks", "Charger"]
    assert all(i["completed"] is False for i in copy["items"])


def test_sub_lists_and_cycle_prevention(client, login):
    login("admin@example.com")
    parent = _create_list(client, title="Project")
    child = _create_list(client, title="Phase 1", parent_list_id=parent["id"])
    assert child["parent_list_id"] == parent["id"]

    r = client.patch(f"/api/lists/{parent['id']}", json={"parent_list_id": child["id"]})
    assert r.status_code == 422
    r = client.patch(f"/api/lists/{parent['id']}", json={"parent_list_id": parent["id"]})
    assert r.status_code == 422

    _add_item(client, child["id"], title="Kickoff", completed=True)
    _add_item(client, parent["id"], title="Budget")
    r = client.get(f"/api/lists/{parent['id']}")
    assert r.json["list"]["sub_list_ids"] == [child["id"]]
    assert r.json["list"]["completion_percentage"] == 50

    grandchild = _create_list(client, title="Phase 1a", parent_list_id=child["id"])
    r = client.get(f"/api/lists/{grandchild['id']}")
    assert r.json["list"]["root_list_id"] == parent["id"]
    r = client.get(f"/api/lists/{parent['id']}")
    assert r.json["list"]["root_list_id"] == parent["id"]


def test_item_crud_and_progress(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    a = _add_item(client, lst["id"], title="Eggs", priority="high")
    b = _add_item(client, lst["id"], title="Bread")
    assert (a["position"], b["position"]) == (0, 1)
    assert a["priority"] == "high"

    r = client.post(f"/api/lists/{lst['id']}/items/{a['id']}/toggle")
    assert r.json["item"]["completed"] is True
    assert r.json["item"]["completed_at"] is not None
    assert r.json["progress"] == {"total": 2, "completed": 1, "percentage": 50}

    r = client.patch(f"/api/lists/{lst['id']}/items/{b['id']}", json={"title": "Sourdough", "url": "https://bake.example"})
    assert r.json["item"]["title"] == "Sourdough"
    assert r.json["item"]["url"] == "https://bake.example"

    r = client.delete(f"/api/lists/{lst['id']}/items/{b['id']}")
    assert r.json["progress"] == {"total": 1, "completed": 1, "percentage": 100}


def test_item_validation(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "", "priority": "whenever"})
    assert r.status_code == 422
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Call", "due_date": "not-a-date"})
    assert r.status_code == 422


def test_item_from_another_list_is_not_found(client, login):
    login("admin@example.com")
    one = _create_list(client, title="One")
    two = _create_list(client, title="Two")
    item = _add_item(client, one["id"])
    assert client.get(f"/api/lists/{two['id']}/items/{item['id']}").status_code == 404


def test_overdue_flag(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    item = _add_item(client, lst["id"], title="Taxes", due_date="2000-01-01")
    assert item["overdue"] is True
    done = _add_item(client, lst["id"], title="Old thing", due_date="2000-01-01", completed=True)
    assert done["overdue"] is False


def test_reorder_puts_unnamed_items_after_named(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    a = _add_item(client, lst["id"], title="A")
    b = _add_item(client, lst["id"], title="B")
    c = _add_item(client, lst["id"], title="C")
    r = client.post(f"/api/lists/{lst['id']}/items/reorder", json={"item_ids": [c["id"], a["id"]]})
    assert r.status_code == 200
    assert [(i["title"], i["position"]) for i in r.json["items"]] == [("C", 0), ("A", 1), ("B", 2)]

    r = client.post(f"/api/lists/{lst['id']}/items/reorder", json={"item_ids": [a["id"], a["id"]]})
    assert r.status_code == 422
    r = client.post(f"/api/lists/{lst['id']}/items/reorder", json={"item_ids": [b["id"], 99999]})
    assert r.status_code == 404


def test_bulk_complete(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    a = _add_item(client, lst["id"], title="A")
    b = _add_item(client, lst["id"], title="B")
    r = client.post(f"/api/lists/{lst['id']}/items/bulk-complete", json={"item_ids": [a["id"], b["id"]]})
    assert r.status_code == 200
    assert r.json["progress"]["percentage"] == 100


def test_move_item_between_board_columns(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    other = _create_list(client, title="Other")
    item = _add_item(client, lst["id"])
    doing = lst["board_columns"][1]["id"]
    r = client.post(f"/api/lists/{lst['id']}/items/{item['id']}/move", json={"board_column_id": doing})
    assert r.json["item"]["board_column_id"] == doing

    foreign = other["board_columns"][0]["id"]
    r = client.post(f"/api/lists/{lst['id']}/items/{item['id']}/move", json={"board_column_id": foreign})
    assert r.status_code == 422


def test_assign_only_to_owner_or_collaborators(client, login, make_user):
    make_user("carol@example.com")
    make_user("stranger@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    item = _add_item(client, lst["id"])

    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "carol@example.com", "permission": "write"})
    carol_id = r.json["collaborator"]["user_id"]

    r = client.post(f"/api/lists/{lst['id']}/items/{item['id']}/assign", json={"assigned_user_id": carol_id})
    assert r.status_code == 200
    assert r.json["item"]["assigned_user_id"] == carol_id

    r = client.get("/admin/users?q=stranger")
    stranger_id = r.json["users"][0]["id"]
    r = client.post(f"/api/lists/{lst['id']}/items/{item['id']}/assign", json={"assigned_user_id": stranger_id})
    assert r.status_code == 422


def test_time_entries(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    item = _add_item(client, lst["id"])
    base = f"/api/lists/{lst['id']}/items/{item['id']}/time-entries"

    r = client.post(base, json={"started_at": "2024-05-01T09:00:00", "ended_at": "2024-05-01T10:30:00"})
    assert r.status_code == 201
    assert r.json["time_entry"]["duration"] == "1.50"

    r = client.post(base, json={"started_at": "2024-05-02T09:00:00", "duration": "0.25", "notes": "Call"})
    assert r.json["total_hours"] == "1.75"

    r = client.post(base, json={"started_at": "2024-05-02T09:00:00", "ended_at": "2024-05-01T09:00:00"})
    assert r.status_code == 422

    r = client.get(base)
    assert r.json["total_hours"] == "1.75"
    assert len(r.json["entries"]) == 2


def test_time_entry_rejects_non_finite_duration(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    item = _add_item(client, lst["id"])
    base = f"/api/lists/{lst['id']}/items/{item['id']}/time-entries"

    for raw in ("NaN", "Infinity", "-Infinity"):
        r = client.post(base, json={"started_at": "2024-05-01T09:00:00", "duration": raw})
        assert r.status_code == 422, raw
        assert r.json["errors"] == ["Duration must be a number of hours."]
    assert client.get(base).json["entries"] == []


def test_analytics(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    _add_item(client, lst["id"], title="A", completed=True, priority="high")
    _add_item(client, lst["id"], title="B", due_date="2000-01-01")
    r = client.get(f"/api/lists/{lst['id']}/analytics")
    assert r.status_code == 200
    analytics = r.json["analytics"]
    assert analytics["total_items"] == 2
    assert analytics["completed_items"] == 1
    assert analytics["overdue_items"] == 1
