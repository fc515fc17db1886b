"""Tests for collaborators and invitations."""
from datetime import datetime, timedelta

from app.listopia.db import session_scope
from app.listopia.modules.collaboration.models import Invitation


def _create_list(client, title="Launch plan"):
    r = client.post("/api/lists", json={"title": title})
    assert r.status_code == 201, r.json
    return r.json["list"]


def test_inviting_existing_user_adds_collaborator(client, login, make_user):
    make_user("bob@example.com")
    login("admin@example.com")
    lst = _create_list(client)

    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "Bob@Example.com", "permission": "read"})
    assert r.status_code == 201
    assert r.json["status"] == "collaborator_added"
    assert r.json["collaborator"]["permission"] == "read"

    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "bob@example.com", "permission": "write"})
    assert r.json["status"] == "collaborator_updated"
    assert r.json["collaborator"]["permission"] == "write"

    r = client.get(f"/api/lists/{lst['id']}/collaborators")
    assert [c["email"] for c in r.json["collaborators"]] == ["bob@example.com"]


def test_invitation_validation(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    base = f"/api/lists/{lst['id']}/invitations"
    assert client.post(base, json={"email": ""}).status_code == 422
    assert client.post(base, json={"email": "not-an-email"}).status_code == 422
    assert client.post(base, json={"email": "x@example.com", "permission": "admin"}).status_code == 422

    r = client.post(base, json={"email": "admin@example.com"})
    assert r.status_code == 422
    assert r.json["errors"] == ["Cannot invite the owner"]


def test_new_email_gets_pending_invitation_then_accepts(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(
        f"/api/lists/{lst['id']}/invitations",
        json={"email": "newbie@example.com", "permission": "write", "roles": ["can_invite_collaborators", "bogus"]},
    )
    assert r.status_code == 201
    assert r.json["status"] == "invited"
    invitation = r.json["invitation"]
    assert invitation["status"] == "pending"
    assert invitation["roles"] == ["can_invite_collaborators"]
    token = invitation["token"]

    r = client.get(f"/api/invitations/{token}")
    assert r.status_code == 200
    assert r.json["invitation"]["target_title"] == "Launch plan"
    assert "token" not in r.json["invitation"]

    make_user("newbie@example.com")
    login("newbie@example.com")
    r = client.get("/api/invitations")
    assert [i["email"] for i in r.json["invitations"]] == ["newbie@example.com"]

    r = client.post(f"/api/invitations/{token}/accept")
    assert r.status_code == 200
    assert r.json["collaborator"]["permission"] == "write"
    assert r.json["collaborator"]["roles"] == ["can_invite_collaborators"]

    # Write collaborators can edit the list
    r = client.patch(f"/api/lists/{lst['id']}", json={"description": "Edited by collaborator"})
    assert r.status_code == 200

    r = client.post(f"/api/invitations/{token}/accept")
    assert r.status_code == 422
    assert r.json["errors"] == ["Invitation already accepted"]


def test_accept_rejects_email_mismatch(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "right@example.com"})
    token = r.json["invitation"]["token"]

    make_user("wrong@example.com")
    login("wrong@example.com")
    r = client.post(f"/api/invitations/{token}/accept")
    assert r.status_code == 422
    assert r.json["errors"] == ["Email mismatch. This invitation is for right@example.com"]


def test_expired_invitation_cannot_be_accepted(app, client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "late@example.com"})
    invitation_id = r.json["invitation"]["id"]
    token = r.json["invitation"]["token"]

    with session_scope(app) as s:
        inv = s.get(Invitation, invitation_id)
        inv.invitation_expires_at = datetime.utcnow() - timedelta(minutes=1)

    assert client.get(f"/api/invitations/{token}").status_code == 404
    make_user("late@example.com")
    login("late@example.com")
    r = client.post(f"/api/invitations/{token}/accept")
    assert r.status_code == 422
    assert r.json["errors"] == ["Invalid or expired invitation"]


def test_revoked_invitation_cannot_be_accepted(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "gone@example.com"})
    invitation = r.json["invitation"]

    r = client.post(f"/api/invitations/{invitation['id']}/revoke")
    assert r.status_code == 200
    assert r.json["invitation"]["status"] == "revoked"

    make_user("gone@example.com")
    login("gone@example.com")
    r = client.post(f"/api/invitations/{invitation['token']}/accept")
    assert r.status_code == 422


def test_recipient_can_decline(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "maybe@example.com"})
    invitation_id = r.json["invitation"]["id"]

    make_user("maybe@example.com")
    login("maybe@example.com")
    r = client.post(f"/api/invitations/{invitation_id}/decline")
    assert r.status_code == 200
    assert r.json["invitation"]["status"] == "declined"
    assert client.post(f"/api/invitations/{invitation_id}/decline").status_code == 403


def test_resend_rotates_token_and_extends_expiry(client, login):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "again@example.com"})
    first = r.json["invitation"]

    r = client.post(f"/api/invitations/{first['id']}/resend")
    assert r.status_code == 200
    resent = r.json["invitation"]
    assert resent["token"] != first["token"]
    assert resent["status"] == "pending"
    assert client.get(f"/api/invitations/{first['token']}").status_code == 404


def test_non_owner_cannot_invite_without_role(client, login, make_user):
    make_user("reader@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "reader@example.com", "permission": "write"})

    login("reader@example.com")
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "friend@example.com"})
    assert r.status_code == 403


def test_collaborator_with_invite_role_can_invite(client, login, make_user):
    make_user("helper@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    client.post(
        f"/api/lists/{lst['id']}/invitations",
        json={"email": "helper@example.com", "permission": "write", "roles": {"can_invite_collaborators": True}},
    )

    login("helper@example.com")
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "friend@example.com"})
    assert r.status_code == 201
    assert r.json["status"] == "invited"


def test_read_collaborator_cannot_edit(client, login, make_user):
    make_user("viewer@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "viewer@example.com", "permission": "read"})

    login("viewer@example.com")
    assert client.get(f"/api/lists/{lst['id']}").status_code == 200
    assert client.patch(f"/api/lists/{lst['id']}", json={"title": "Nope"}).status_code == 403
    assert client.post(f"/api/lists/{lst['id']}/items", json={"title": "Nope"}).status_code == 403


def test_owner_updates_and_removes_collaborator(client, login, make_user):
    make_user("temp@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "temp@example.com"})
    collaborator_id = r.json["collaborator"]["id"]

    r = client.patch(f"/api/collaborators/{collaborator_id}", json={"permission": "write"})
    assert r.json["collaborator"]["permission"] == "write"

    r = client.delete(f"/api/collaborators/{collaborator_id}")
    assert r.status_code == 200
    r = client.get(f"/api/lists/{lst['id']}/collaborators")
    assert r.json["collaborators"] == []


def test_collaborator_can_leave(client, login, make_user):
    make_user("leaver@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "leaver@example.com"})
    collaborator_id = r.json["collaborator"]["id"]

    login("leaver@example.com")
    assert client.patch(f"/api/collaborators/{collaborator_id}", json={"permission": "write"}).status_code == 403
    assert client.delete(f"/api/collaborators/{collaborator_id}").status_code == 200
    assert client.get(f"/api/lists/{lst['id']}").status_code == 403


def test_item_level_collaboration(client, login, make_user):
    make_user("itemhelper@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Design review"})
    item_id = r.json["item"]["id"]

    r = client.post(f"/api/items/{item_id}/invitations", json={"email": "itemhelper@example.com", "permission": "write"})
    assert r.status_code == 201
    assert r.json["collaborator"]["target_type"] == "ListItem"

    login("itemhelper@example.com")
    assert client.get(f"/api/lists/{lst['id']}/items/{item_id}").status_code == 200
    r = client.patch(f"/api/lists/{lst['id']}/items/{item_id}", json={"title": "Design review v2"})
    assert r.status_code == 200
    assert client.get(f"/api/lists/{lst['id']}").status_code == 403


def test_share_summary(client, login, make_user):
    make_user("sharee@example.com")
    login("admin@example.com")
    lst = _create_list(client)
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "sharee@example.com"})
    client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "pending@example.com"})

    r = client.get(f"/api/lists/{lst['id']}/share")
    assert r.status_code == 200
    share = r.json["share"]
    assert share["can_manage_collaborators"] is True
    assert [c["email"] for c in share["collaborators"]] == ["sharee@example.com"]
    assert [i["email"] for i in share["pending_invitations"]] == ["pending@example.com"]


def test_invites_cannot_cross_organization_boundary(client, login, make_user):
    make_user("outsider@example.com")
    login("admin@example.com")
    r = client.post("/api/organizations", json={"name": "Acme"})
    org_id = r.json["organization"]["id"]
    lst = _create_list(client, title="Acme roadmap")
    assert lst["organization_id"] == org_id
    r = client.post(f"/api/lists/{lst['id']}/items", json={"title": "Vendor shortlist"})
    item_id = r.json["item"]["id"]

    client.post(
        f"/api/items/{item_id}/invitations",
        json={"email": "outsider@example.com", "permission": "write", "roles": ["can_invite_collaborators"]},
    )

    # The outsider may work on the item but cannot pull more people into the organization's list
    login("outsider@example.com")
    r = client.post(f"/api/items/{item_id}/invitations", json={"email": "friend@example.com"})
    assert r.status_code == 422
    assert r.json["errors"] == ["Cannot invite users across organization boundaries"]


def test_direct_add_settles_earlier_pending_invitation(client, login, make_user):
    login("admin@example.com")
    lst = _create_list(client)
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "late@example.com"})
    token = r.json["invitation"]["token"]

    make_user("late@example.com")
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "late@example.com", "permission": "write"})
    assert r.json["status"] == "collaborator_added"

    share = client.get(f"/api/lists/{lst['id']}/share").json["share"]
    assert share["pending_invitations"] == []
    assert [c["email"] for c in share["collaborators"]] == ["late@example.com"]

    login("late@example.com")
    assert client.get("/api/invitations").json["invitations"] == []
    r = client.post(f"/api/invitations/{token}/accept")
    assert r.status_code == 422
    assert r.json["errors"] == ["Invitation already accepted"]
