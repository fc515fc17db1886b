from __future__ import annotations

from flask import Blueprint, jsonify

from app.listopia.db import db_session
from app.listopia.modules.organizations.models import Organization, Team
from app.listopia.modules.organizations.policy import OrganizationPolicy, TeamPolicy
from app.listopia.modules.organizations.service import (
    accept_organization_invitation,
    add_member,
    add_team_member,
    create_organization,
    create_team,
    delete_organization,
    delete_team,
    get_membership,
    get_organization_invitation,
    get_team,
    get_team_membership,
    invite_members,
    pending_organization_invitations,
    reactivate_organization,
    remove_member,
    remove_team_member,
    revoke_organization_invitation,
    serialize_membership,
    serialize_organization,
    serialize_organization_invitation,
    serialize_team,
    suspend_organization,
    update_member_role,
    update_organization,
    update_team,
    update_team_member_role,
    user_organizations,
)
from app.listopia.policy import authorize, new_record
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, get_or_404, request_payload

bp = Blueprint("organizations", __name__)


def _org(s, org_id: int, action: str = "show") -> Organization:
    org = get_or_404(s, Organization, org_id)
    authorize(current_user(), org, action, OrganizationPolicy)
    return org


def _team(s, org_id: int, team_id: int, action: str = "show") -> tuple[Organization, Team]:
    org = get_or_404(s, Organization, org_id)
    team = get_team(org, team_id)
    authorize(current_user(), team, action, TeamPolicy)
    return org, team


# ---------- organizations ----------
@bp.get("/organizations")
@require_login
def organizations_index():
    s = db_session()
    u = current_user()
    return jsonify({"organizations": [serialize_organization(o, u) for o in user_organizations(s, u)]})


@bp.post("/organizations")
@require_login
def organizations_create():
    s = db_session()
    u = current_user()
    authorize(u, new_record(Organization), "create", OrganizationPolicy)
    org = create_organization(s, u, request_payload())
    s.commit()
    return jsonify({"organization": serialize_organization(org, u, include_members=True)}), 201


@bp.get("/organizations/<int:org_id>")
@require_login
def organizations_show(org_id: int):
    s = db_session()
    org = _org(s, org_id)
    return jsonify({"organization": serialize_organization(org, current_user(), include_members=True)})


@bp.patch("/organizations/<int:org_id>")
@require_login
def organizations_update(org_id: int):
    s = db_session()
    org = _org(s, org_id, "update")
    update_organization(s, org, current_user(), request_payload())
    s.commit()
    return jsonify({"organization": serialize_organization(org, current_user())})


@bp.delete("/organizations/<int:org_id>")
@require_login
def organizations_delete(org_id: int):
    s = db_session()
    org = _org(s, org_id, "destroy")
    delete_organization(s, org, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/organizations/<int:org_id>/suspend")
@require_login
def organizations_suspend(org_id: int):
    s = db_session()
    org = _org(s, org_id, "suspend")
    suspend_organization(s, org, current_user())
    s.commit()
    return jsonify({"organization": serialize_organization(org, current_user())})


@bp.post("/organizations/<int:org_id>/reactivate")
@require_login
def organizations_reactivate(org_id: int):
    s = db_session()
    org = _org(s, org_id, "reactivate")
    reactivate_organization(s, org, current_user())
    s.commit()
    return jsonify({"organization": serialize_organization(org, current_user())})


# ---------- members ----------
@bp.post("/organizations/<int:org_id>/members")
@require_login
def members_create(org_id: int):
    s = db_session()
    org = _org(s, org_id, "invite_member")
    membership = add_member(s, org, current_user(), request_payload())
    s.commit()
    return jsonify({"membership": serialize_membership(membership)}), 201


@bp.patch("/organizations/<int:org_id>/members/<int:membership_id>")
@require_login
def members_update(org_id: int, membership_id: int):
    s = db_session()
    org = _org(s, org_id, "update_member_role")
    membership = get_membership(org, membership_id)
    update_member_role(s, org, current_user(), membership, request_payload().get("role"))
    s.commit()
    return jsonify({"membership": serialize_membership(membership)})


@bp.delete("/organizations/<int:org_id>/members/<int:membership_id>")
@require_login
def members_delete(org_id: int, membership_id: int):
    s = db_session()
    org = _org(s, org_id, "remove_member")
    remove_member(s, org, current_user(), get_membership(org, membership_id))
    s.commit()
    return jsonify({"ok": True})


# ---------- invitations ----------
@bp.get("/organizations/<int:org_id>/invitations")
@require_login
def org_invitations_index(org_id: int):
    s = db_session()
    org = _org(s, org_id, "invite_member")
    return jsonify(
        {"invitations": [serialize_organization_invitation(i) for i in pending_organization_invitations(org)]}
    )


@bp.post("/organizations/<int:org_id>/invitations")
@require_login
def org_invitations_create(org_id: int):
    s = db_session()
    org = _org(s, org_id, "invite_member")
    results = invite_members(s, org, current_user(), request_payload())
    s.commit()
    return jsonify({"results": results, "organization": serialize_organization(org, current_user())})


@bp.delete("/organizations/<int:org_id>/invitations/<int:invitation_id>")
@require_login
def org_invitations_revoke(org_id: int, invitation_id: int):
    s = db_session()
    org = _org(s, org_id, "remove_member")
    invitation = get_organization_invitation(org, invitation_id)
    revoke_organization_invitation(s, org, current_user(), invitation)
    s.commit()
    return jsonify({"invitation": serialize_organization_invitation(invitation)})


@bp.post("/organization-invitations/<token>/accept")
@require_login
def org_invitations_accept(token: str):
    s = db_session()
    u = current_user()
    membership = accept_organization_invitation(s, token, u)
    s.commit()
    return jsonify(
        {
            "membership": serialize_membership(membership),
            "organization": serialize_organization(membership.organization, u),
        }
    )


# ---------- teams ----------
@bp.get("/organizations/<int:org_id>/teams")
@require_login
def teams_index(org_id: int):
    s = db_session()
    u = current_user()
    org = get_or_404(s, Organization, org_id)
    authorize(u, new_record(Team, organization_id=org.id, organization=org), "index", TeamPolicy)
    return jsonify({"teams": [serialize_team(t) for t in org.teams]})


@bp.post("/organizations/<int:org_id>/teams")
@require_login
def teams_create(org_id: int):
    s = db_session()
    u = current_user()
    org = get_or_404(s, Organization, org_id)
    authorize(u, new_record(Team, organization_id=org.id, organization=org), "create", TeamPolicy)
    team = create_team(s, org, u, request_payload())
    s.commit()
    return jsonify({"team": serialize_team(team, include_members=True)}), 201


@bp.get("/organizations/<int:org_id>/teams/<int:team_id>")
@require_login
def teams_show(org_id: int, team_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id)
    return jsonify({"team": serialize_team(team, include_members=True)})


@bp.patch("/organizations/<int:org_id>/teams/<int:team_id>")
@require_login
def teams_update(org_id: int, team_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id, "update")
    update_team(s, team, current_user(), request_payload())
    s.commit()
    return jsonify({"team": serialize_team(team)})


@bp.delete("/organizations/<int:org_id>/teams/<int:team_id>")
@require_login
def teams_delete(org_id: int, team_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id, "destroy")
    delete_team(s, team, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/organizations/<int:org_id>/teams/<int:team_id>/members")
@require_login
def team_members_create(org_id: int, team_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id, "add_member")
    tm = add_team_member(s, team, current_user(), request_payload())
    s.commit()
    return jsonify({"team": serialize_team(team, include_members=True), "membership_id": tm.id}), 201


@bp.patch("/organizations/<int:org_id>/teams/<int:team_id>/members/<int:membership_id>")
@require_login
def team_members_update(org_id: int, team_id: int, membership_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id, "update_member_role")
    tm = get_team_membership(team, membership_id)
    update_team_member_role(s, team, current_user(), tm, request_payload().get("role"))
    s.commit()
    return jsonify({"team": serialize_team(team, include_members=True)})


@bp.delete("/organizations/<int:org_id>/teams/<int:team_id>/members/<int:membership_id>")
@require_login
def team_members_delete(org_id: int, team_id: int, membership_id: int):
    s = db_session()
    _, team = _team(s, org_id, team_id, "remove_member")
    remove_team_member(s, team, current_user(), get_team_membership(team, membership_id))
    s.commit()
    return jsonify({"team": serialize_team(team, include_members=True)})
