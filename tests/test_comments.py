"""Tests for comments on lists and items, including @mentions."""
from app.listopia.modules.comments.service import mentioned_emails


def _setup_shared_list(client, login, make_user, *collaborators):
    for email in collaborators:
        make_user(email)
    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Offsite"})
    lst = r.json["list"]
    for email in collaborators:
        client.post(f"/api/lists/{lst['id']}/invitations", json={"email": email})
    return lst


def test_mentioned_emails_parses_unique_addresses():
    content = "Ping @Ann@Example.com and @bob@example.org, also @ann@example.com again. mail@example.com is not one."
    assert mentioned_emails(content) == ["ann@example.com", "bob@example.org"]


def test_owner_and_collaborators_can_comment(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user, "bob@example.com")
    r = client.post(f"/api/lists/{lst['id']}/comments", json={"content": "Kicking this off"})
    assert r.status_code == 201
    assert r.json["comment"]["target_type"] == "List"

    login("bob@example.com")
    r = client.post(f"/api/lists/{lst['id']}/comments", json={"content": "Count me in"})
    assert r.status_code == 201

    r = client.get(f"/api/lists/{lst['id']}/comments")
    assert [c["content"] for c in r.json["comments"]] == ["Kicking this off", "Count me in"]


def test_blank_comment_rejected(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user)
    r = client.post(f"/api/lists/{lst['id']}/comments", json={"content": "   "})
    assert r.status_code == 422
    assert r.json["errors"] == ["Content can't be blank."]


def test_public_reader_cannot_comment(client, login, make_user):
    make_user("visitor@example.com")
    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Open list", "is_public": True})
    lst = r.json["list"]

    login("visitor@example.com")
    assert client.get(f"/api/lists/{lst['id']}/comments").status_code == 200
    assert client.post(f"/api/lists/{lst['id']}/comments", json={"content": "Hi"}).status_code == 403


def test_comment_on_item(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user)
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Book venue"})
    item_id = r.json["item"]["id"]
    r = client.post(f"/api/items/{item_id}/comments", json={"content": "Two options shortlisted"})
    assert r.status_code == 201
    assert r.json["comment"]["target_type"] == "ListItem"
    assert r.json["comment"]["target_id"] == item_id

    r = client.get(f"/api/items/{item_id}/comments")
    assert len(r.json["comments"]) == 1


def test_only_author_or_list_owner_edits_and_deletes(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user, "bob@example.com", "carol@example.com")
    login("bob@example.com")
    r = client.post(f"/api/lists/{lst['id']}/comments", json={"content": "Bob's note"})
    comment_id = r.json["comment"]["id"]

    login("carol@example.com")
    assert client.patch(f"/api/comments/{comment_id}", json={"content": "Carol was here"}).status_code == 403
    assert client.delete(f"/api/comments/{comment_id}").status_code == 403

    login("bob@example.com")
    r = client.patch(f"/api/comments/{comment_id}", json={"content": "Bob's edited note"})
    assert r.status_code == 200
    assert r.json["comment"]["content"] == "Bob's edited note"

    login("admin@example.com")
    assert client.delete(f"/api/comments/{comment_id}").status_code == 200
    r = client.get(f"/api/lists/{lst['id']}/comments")
    assert r.json["comments"] == []


def test_mentions_notify_readers_and_owner_once(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user, "bob@example.com")
    make_user("stranger@example.com")

    login("bob@example.com")
    client.post(
        f"/api/lists/{lst['id']}/comments",
        json={"content": "@admin@example.com @stranger@example.com please review"},
    )

    login("admin@example.com")
    r = client.get("/api/notifications")
    types = [n["type"] for n in r.json["notifications"]]
    assert types.count("mention") == 1
    assert "comment_created" not in types

    # Mentioned users without access to the list get nothing
    login("stranger@example.com")
    r = client.get("/api/notifications")
    assert r.json["notifications"] == []


def test_comment_notifies_owner(client, login, make_user):
    lst = _setup_shared_list(client, login, make_user, "bob@example.com")
    login("bob@example.com")
    client.post(f"/api/lists/{lst['id']}/comments", json={"content": "Looks good"})

    login("admin@example.com")
    r = client.get("/api/notifications?type=comment_created")
    assert len(r.json["notifications"]) == 1
    assert r.json["notifications"][0]["title"] == 'Bob commented on "Offsite"'
