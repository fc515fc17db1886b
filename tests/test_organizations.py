"""Tests for organizations, memberships and teams."""
from datetime import datetime, timedelta

from app.listopia.db import session_scope
from app.listopia.modules.organizations.models import OrganizationInvitation


def _create_org(client, name="Acme Inc", **fields):
    r = client.post("/api/organizations", json={"name": name, **fields})
    assert r.status_code == 201, r.json
    return r.json["organization"]


def _add_member(client, org_id, email, role="member"):
    r = client.post(f"/api/organizations/{org_id}/members", json={"email": email, "role": role})
    assert r.status_code == 201, r.json
    return r.json["membership"]


def test_create_organization_makes_creator_owner(client, login):
    login("admin@example.com")
    org = _create_org(client)
    assert org["slug"] == "acme-inc"
    assert org["role"] == "owner"
    assert org["member_count"] == 1
    assert org["members"][0]["email"] == "admin@example.com"

    r = client.get("/auth/me")
    assert r.json["user"]["current_organization_id"] == org["id"]

    r = client.get("/api/organizations")
    assert [o["name"] for o in r.json["organizations"]] == ["Acme Inc"]


def test_organization_name_and_size_validation(client, login):
    login("admin@example.com")
    assert client.post("/api/organizations", json={"name": ""}).status_code == 422
    assert client.post("/api/organizations", json={"name": "Ok", "size": "galactic"}).status_code == 422


def test_slugs_are_unique(client, login):
    login("admin@example.com")
    assert _create_org(client, "Same Name")["slug"] == "same-name"
    assert _create_org(client, "Same Name")["slug"] == "same-name-1"


def test_non_members_cannot_see_organization(client, login, make_user):
    make_user("outsider@example.com")
    login("admin@example.com")
    org = _create_org(client)

    login("outsider@example.com")
    assert client.get(f"/api/organizations/{org['id']}").status_code == 403
    assert client.patch(f"/api/organizations/{org['id']}", json={"name": "Mine"}).status_code == 403


def test_member_management_rules(client, login, make_user):
    make_user("member@example.com")
    make_user("admin2@example.com")
    login("admin@example.com")
    org = _create_org(client)

    member = _add_member(client, org["id"], "member@example.com")
    assert member["role"] == "member"
    r = client.post(f"/api/organizations/{org['id']}/members", json={"email": "member@example.com"})
    assert r.status_code == 422
    r = client.post(f"/api/organizations/{org['id']}/members", json={"email": "nobody@example.com"})
    assert r.status_code == 422

    org_admin = _add_member(client, org["id"], "admin2@example.com", role="admin")

    # Admins manage members but cannot touch the owner role
    login("admin2@example.com")
    r = client.patch(f"/api/organizations/{org['id']}/members/{member['id']}", json={"role": "owner"})
    assert r.status_code == 422
    r = client.patch(f"/api/organizations/{org['id']}/members/{member['id']}", json={"role": "admin"})
    assert r.status_code == 200
    assert r.json["membership"]["role"] == "admin"

    # Plain members cannot manage anyone
    login("admin@example.com")
    client.patch(f"/api/organizations/{org['id']}/members/{member['id']}", json={"role": "member"})
    login("member@example.com")
    r = client.delete(f"/api/organizations/{org['id']}/members/{org_admin['id']}")
    assert r.status_code == 403


def test_last_owner_cannot_be_demoted_or_removed(client, login):
    login("admin@example.com")
    org = _create_org(client)
    owner_membership = org["members"][0]

    r = client.patch(f"/api/organizations/{org['id']}/members/{owner_membership['id']}", json={"role": "member"})
    assert r.status_code == 422
    assert r.json["errors"] == ["An organization needs at least one owner."]
    r = client.delete(f"/api/organizations/{org['id']}/members/{owner_membership['id']}")
    assert r.status_code == 422


def test_removing_member_clears_current_organization(client, login, make_user):
    make_user("leaving@example.com")
    login("admin@example.com")
    org = _create_org(client)
    membership = _add_member(client, org["id"], "leaving@example.com")

    r = client.delete(f"/api/organizations/{org['id']}/members/{membership['id']}")
    assert r.status_code == 200

    login("leaving@example.com")
    r = client.get("/auth/me")
    assert r.json["user"]["current_organization_id"] is None
    assert r.json["user"]["organizations"] == []


def test_suspend_and_reactivate_are_owner_only(client, login, make_user):
    make_user("admin2@example.com")
    login("admin@example.com")
    org = _create_org(client)
    _add_member(client, org["id"], "admin2@example.com", role="admin")

    login("admin2@example.com")
    assert client.post(f"/api/organizations/{org['id']}/suspend").status_code == 403

    login("admin@example.com")
    r = client.post(f"/api/organizations/{org['id']}/suspend")
    assert r.json["organization"]["status"] == "suspended"
    assert client.post(f"/api/organizations/{org['id']}/suspend").status_code == 422
    r = client.post(f"/api/organizations/{org['id']}/reactivate")
    assert r.json["organization"]["status"] == "active"


def test_delete_organization(client, login):
    login("admin@example.com")
    org = _create_org(client)
    r = client.delete(f"/api/organizations/{org['id']}")
    assert r.status_code == 200
    assert client.get(f"/api/organizations/{org['id']}").status_code == 404
    assert client.get("/auth/me").json["user"]["current_organization_id"] is None


def test_organization_lists_are_invisible_outside(client, login, make_user):
    make_user("member@example.com")
    make_user("outsider@example.com")
    login("admin@example.com")
    org = _create_org(client)
    _add_member(client, org["id"], "member@example.com")

    r = client.post("/api/lists", json={"title": "Org roadmap"})
    lst = r.json["list"]
    assert lst["organization_id"] == org["id"]

    # A collaborator outside the organization still cannot see the list
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "outsider@example.com"})
    assert r.status_code == 201
    login("outsider@example.com")
    assert client.get(f"/api/lists/{lst['id']}").status_code == 403

    login("member@example.com")
    r = client.post(f"/api/lists/{lst['id']}/invitations", json={"email": "someone@example.com"})
    assert r.status_code == 403


def test_list_in_foreign_organization_is_rejected(client, login, make_user):
    make_user("other@example.com")
    login("other@example.com")
    other_org = _create_org(client, "Other Co")

    login("admin@example.com")
    r = client.post("/api/lists", json={"title": "Sneaky", "organization_id": other_org["id"]})
    assert r.status_code == 422
    assert r.json["errors"] == ["You are not a member of that organization."]


def test_teams(client, login, make_user):
    make_user("dev@example.com")
    make_user("lurker@example.com")
    login("admin@example.com")
    org = _create_org(client)
    _add_member(client, org["id"], "dev@example.com")

    r = client.post(f"/api/organizations/{org['id']}/teams", json={"name": "Platform"})
    assert r.status_code == 201
    team = r.json["team"]
    assert team["slug"] == "platform"
    assert team["members"][0]["role"] == "admin"

    base = f"/api/organizations/{org['id']}/teams/{team['id']}"
    r = client.post(f"{base}/members", json={"email": "dev@example.com"})
    assert r.status_code == 201
    assert {m["role"] for m in r.json["team"]["members"]} == {"admin", "member"}
    dev_membership_id = r.json["membership_id"]

    # Only organization members can join
    r = client.post(f"{base}/members", json={"email": "lurker@example.com"})
    assert r.status_code == 422

    r = client.patch(f"{base}/members/{dev_membership_id}", json={"role": "lead"})
    assert r.status_code == 200

    r = client.get(f"/api/organizations/{org['id']}/teams")
    assert [t["name"] for t in r.json["teams"]] == ["Platform"]

    # Plain org members cannot create teams; team leads can rename theirs
    login("dev@example.com")
    assert client.post(f"/api/organizations/{org['id']}/teams", json={"name": "Shadow"}).status_code == 403
    r = client.patch(base, json={"name": "Platform Core"})
    assert r.status_code == 200
    assert r.json["team"]["name"] == "Platform Core"

    login("admin@example.com")
    r = client.delete(f"{base}/members/{dev_membership_id}")
    assert r.status_code == 200
    assert client.delete(base).status_code == 200
    r = client.get(f"/api/organizations/{org['id']}/teams")
    assert r.json["teams"] == []


def test_current_organization_switch_requires_membership(client, login, make_user):
    make_user("other@example.com")
    login("other@example.com")
    other_org = _create_org(client, "Other Co")

    login("admin@example.com")
    r = client.patch("/auth/me", json={"current_organization_id": other_org["id"]})
    assert r.status_code == 422


def test_batch_invitations_group_results(client, login, make_user):
    make_user("existing@example.com", name="Existing")
    make_user("member@example.com")
    login("admin@example.com")
    org = _create_org(client)
    _add_member(client, org["id"], "member@example.com")

    emails = "Existing@example.com, member@example.com\nnewbie@example.com,not-an-email,,newbie@example.com"
    r = client.post(f"/api/organizations/{org['id']}/invitations", json={"emails": emails, "role": "admin"})
    assert r.status_code == 200
    results = r.json["results"]
    assert [(c["email"], c["type"]) for c in results["created"]] == [
        ("existing@example.com", "existing_user"),
        ("newbie@example.com", "invitation"),
    ]
    assert [m["email"] for m in results["already_member"]] == ["member@example.com"]
    assert results["invalid"] == [{"email": "not-an-email", "error": "Invalid email format"}]
    assert r.json["organization"]["member_count"] == 3

    # Registered users join immediately with the requested role
    org_view = client.get(f"/api/organizations/{org['id']}").json["organization"]
    roles = {m["email"]: (m["role"], m["status"]) for m in org_view["members"]}
    assert roles["existing@example.com"] == ("admin", "active")

    r = client.get(f"/api/organizations/{org['id']}/invitations")
    assert [(i["email"], i["role"], i["status"]) for i in r.json["invitations"]] == [
        ("newbie@example.com", "admin", "pending")
    ]

    assert client.post(f"/api/organizations/{org['id']}/invitations", json={"emails": " , "}).status_code == 422


def test_invitation_becomes_membership_on_accept(client, login, make_user):
    login("admin@example.com")
    org = _create_org(client)
    r = client.post(f"/api/organizations/{org['id']}/invitations", json={"emails": ["late@example.com"]})
    token = r.json["results"]["created"][0]["token"]

    make_user("late@example.com")
    make_user("wrong@example.com")
    login("wrong@example.com")
    r = client.post(f"/api/organization-invitations/{token}/accept")
    assert r.status_code == 422
    assert r.json["errors"] == ["Email mismatch. This invitation is for late@example.com"]

    login("late@example.com")
    r = client.post(f"/api/organization-invitations/{token}/accept")
    assert r.status_code == 200
    assert r.json["membership"]["role"] == "member"
    assert r.json["membership"]["status"] == "active"
    assert r.json["organization"]["role"] == "member"
    assert client.get("/auth/me").json["user"]["current_organization_id"] == org["id"]

    r = client.post(f"/api/organization-invitations/{token}/accept")
    assert r.json["errors"] == ["Invitation already accepted"]

    login("admin@example.com")
    assert client.get(f"/api/organizations/{org['id']}/invitations").json["invitations"] == []


def test_revoked_or_expired_invitations_cannot_be_accepted(app, client, login, make_user):
    login("admin@example.com")
    org = _create_org(client)
    r = client.post(f"/api/organizations/{org['id']}/invitations", json={"emails": "a@example.com,b@example.com"})
    created = {c["email"]: c for c in r.json["results"]["created"]}

    r = client.delete(f"/api/organizations/{org['id']}/invitations/{created['a@example.com']['invitation_id']}")
    assert r.status_code == 200
    assert r.json["invitation"]["status"] == "revoked"

    with session_scope(app) as s:
        inv = s.get(OrganizationInvitation, created["b@example.com"]["invitation_id"])
        inv.invitation_expires_at = datetime.utcnow() - timedelta(minutes=1)

    for email in ("a@example.com", "b@example.com"):
        make_user(email)
        login(email)
        r = client.post(f"/api/organization-invitations/{created[email]['token']}/accept")
        assert r.status_code == 422
        assert r.json["errors"] == ["Invalid or expired invitation"]
        assert client.get("/api/organizations").json["organizations"] == []


def test_plain_members_cannot_invite(client, login, make_user):
    make_user("member@example.com")
    login("admin@example.com")
    org = _create_org(client)
    _add_member(client, org["id"], "member@example.com")

    login("member@example.com")
    r = client.post(f"/api/organizations/{org['id']}/invitations", json={"emails": "x@example.com"})
    assert r.status_code == 403
    assert client.get(f"/api/organizations/{org['id']}/invitations").status_code == 403
