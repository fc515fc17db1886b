from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.listopia.audit import record_event
from app.listopia.errors import NotFoundError, ValidationError
from app.listopia.models import User
from app.listopia.modules.organizations.models import (
    MEMBERSHIP_ROLES,
    ORG_SIZES,
    TEAM_ROLES,
    Organization,
    OrganizationInvitation,
    OrganizationMembership,
    Team,
    TeamMembership,
)
from app.listopia.utils import iso, new_token, normalize_email, parse_int, slugify, unique_slug, valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

NAME_MAX = 255


def _clean_name(raw: Any, label: str) -> str:
    name = str(raw or "").strip()
    if not name:
        raise ValidationError(f"{label} name is required.")
    if len(name) > NAME_MAX:
        raise ValidationError(f"{label} name must be at most {NAME_MAX} characters.")
    return name


def _clean_size(raw: Any) -> str:
    size = str(raw or "small").strip()
    if size not in ORG_SIZES:
        raise ValidationError(f"Size must be one of: {', '.join(ORG_SIZES)}")
    return size


def user_organizations(s: "Session", user: User) -> list[Organization]:
    q = (
        select(Organization)
        .join(OrganizationMembership, OrganizationMembership.organization_id == Organization.id)
        .where(OrganizationMembership.user_id == user.id, OrganizationMembership.status == "active")
        .order_by(Organization.name.asc())
    )
    return list(s.execute(q).scalars())


# ---------- organizations ----------
def create_organization(s: "Session", user: User, payload: dict) -> Organization:
    name = _clean_name(payload.get("name"), "Organization")
    size = _clean_size(payload.get("size"))
    now = datetime.utcnow()
    org = Organization(
        name=name,
        slug=unique_slug(s, Organization.slug, slugify(name, fallback="organization")),
        size=size,
        status="active",
        created_by_id=user.id,
        metadata_json={},
        created_at=now,
        updated_at=now,
    )
    s.add(org)
    s.flush()
    s.add(
        OrganizationMembership(organization=org, user=user, role="owner", status="active", joined_at=now, created_at=now)
    )
    if user.current_organization_id is None:
        user.current_organization_id = org.id
    s.flush()

    record_event(
        s,
        actor=user,
        action="organization.create",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"name": org.name, "slug": org.slug},
    )
    return org


def update_organization(s: "Session", org: Organization, user: User, payload: dict) -> Organization:
    changes: dict[str, dict] = {}
    if "name" in payload:
        name = _clean_name(payload.get("name"), "Organization")
        if name != org.name:
            changes["name"] = {"old": org.name, "new": name}
            org.name = name
    if "size" in payload:
        size = _clean_size(payload.get("size"))
        if size != org.size:
            changes["size"] = {"old": org.size, "new": size}
            org.size = size
    org.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="organization.update",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"changes": changes},
    )
    return org


def delete_organization(s: "Session", org: Organization, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="organization.delete",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"name": org.name, "slug": org.slug},
    )
    for m in list(org.memberships):
        if m.user.current_organization_id == org.id:
            m.user.current_organization_id = None
    s.delete(org)


def _set_status(s: "Session", org: Organization, user: User, status: str) -> Organization:
    if org.status == status:
        raise ValidationError(f"Organization is already {status}.")
    old = org.status
    org.status = status
    org.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"organization.{'suspend' if status == 'suspended' else 'reactivate'}",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"old": old, "new": status},
    )
    return org


def suspend_organization(s: "Session", org: Organization, user: User) -> Organization:
    return _set_status(s, org, user, "suspended")


def reactivate_organization(s: "Session", org: Organization, user: User) -> Organization:
    return _set_status(s, org, user, "active")


# ---------- members ----------
def _active_owner_count(org: Organization) -> int:
    return sum(1 for m in org.memberships if m.role == "owner" and m.status == "active")


def _clean_member_role(raw: Any, allowed=MEMBERSHIP_ROLES) -> str:
    role = str(raw or "member").strip()
    if role not in allowed:
        raise ValidationError(f"Role must be one of: {', '.join(allowed)}")
    return role


def get_membership(org: Organization, membership_id: Any) -> OrganizationMembership:
    membership_id = parse_int(membership_id, "membership_id")
    for m in org.memberships:
        if m.id == membership_id:
            return m
    raise NotFoundError("OrganizationMembership", membership_id)


def add_member(s: "Session", org: Organization, actor: User, payload: dict) -> OrganizationMembership:
    email = normalize_email(payload.get("email"))
    if not email:
        raise ValidationError("Email is required.")
    role = _clean_member_role(payload.get("role"))
    if role == "owner" and not org.user_is_owner(actor):
        raise ValidationError("Only owners can add another owner.")

    user = s.execute(select(User).where(func.lower(User.email) == email)).scalar_one_or_none()
    if user is None:
        raise ValidationError(f"No user with email {email}.")

    now = datetime.utcnow()
    membership = org.membership_for(user)
    if membership is not None:
        if membership.status == "active":
            raise ValidationError(f"{user.display_name} is already a member.")
        membership.status = "active"
        membership.role = role
        membership.joined_at = now
    else:
        membership = OrganizationMembership(
            organization=org, user=user, role=role, status="active", joined_at=now, created_at=now
        )
        s.add(membership)
    if user.current_organization_id is None:
        user.current_organization_id = org.id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="organization.member_add",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"user_id": user.id, "role": role},
    )
    return membership


def update_member_role(
    s: "Session", org: Organization, actor: User, membership: OrganizationMembership, role_raw: Any
) -> OrganizationMembership:
    role = _clean_member_role(role_raw)
    if role == membership.role:
        return membership
    if (role == "owner" or membership.role == "owner") and not org.user_is_owner(actor):
        raise ValidationError("Only owners can grant or revoke the owner role.")
    if membership.role == "owner" and _active_owner_count(org) <= 1:
        raise ValidationError("An organization needs at least one owner.")
    old = membership.role
    membership.role = role
    record_event(
        s,
        actor=actor,
        action="organization.member_role",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"user_id": membership.user_id, "old": old, "new": role},
    )
    return membership


def remove_member(s: "Session", org: Organization, actor: User, membership: OrganizationMembership) -> None:
    if membership.role == "owner":
        if not org.user_is_owner(actor):
            raise ValidationError("Only owners can remove an owner.")
        if _active_owner_count(org) <= 1:
            raise ValidationError("An organization needs at least one owner.")

    user = membership.user
    for team in org.teams:
        tm = team.membership_for(user)
        if tm is not None:
            team.memberships.remove(tm)
    if user.current_organization_id == org.id:
        user.current_organization_id = None
    org.memberships.remove(membership)
    if membership in user.organization_memberships:
        user.organization_memberships.remove(membership)
    s.delete(membership)

    record_event(
        s,
        actor=actor,
        action="organization.member_remove",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"user_id": user.id},
    )


# ---------- invitations ----------
def _parse_emails(raw: Any) -> list[str]:
    """Comma/newline separated string or a list; blanks and repeats dropped, order kept."""
    if isinstance(raw, str):
        parts = re.split(r"[,\n]", raw)
    elif isinstance(raw, (list, tuple)):
        parts = [p for p in raw if isinstance(p, str)]
    else:
        parts = []
    emails: list[str] = []
    for part in parts:
        email = normalize_email(part)
        if email and email not in emails:
            emails.append(email)
    return emails


def invite_members(
    s: "Session", org: Organization, actor: User, payload: dict, *, ttl_days: int = 7
) -> dict[str, list[dict]]:
    """
    Invite a batch of emails into the organization.

    Registered users join right away with an active membership; anyone else gets a
    pending OrganizationInvitation whose token turns into a membership on accept.
    """
    emails = _parse_emails(payload.get("emails", payload.get("email")))
    if not emails:
        raise ValidationError("At least one email is required.")
    role = _clean_member_role(payload.get("role"))
    if role == "owner" and not org.user_is_owner(actor):
        raise ValidationError("Only owners can add another owner.")

    now = datetime.utcnow()
    results: dict[str, list[dict]] = {"created": [], "already_member": [], "invalid": []}
    for email in emails:
        if not valid_email(email):
            results["invalid"].append({"email": email, "error": "Invalid email format"})
            continue

        user = s.execute(select(User).where(func.lower(User.email) == email)).scalar_one_or_none()
        if user is not None:
            if org.membership_for(user) is not None:
                results["already_member"].append({"email": email, "user_id": user.id, "name": user.display_name})
                continue
            s.add(
                OrganizationMembership(
                    organization=org, user=user, role=role, status="active", joined_at=now, created_at=now
                )
            )
            if user.current_organization_id is None:
                user.current_organization_id = org.id
            results["created"].append(
                {"email": email, "user_id": user.id, "name": user.display_name, "type": "existing_user"}
            )
            continue

        invitation = next((i for i in org.invitations if i.email == email), None)
        if invitation is None:
            invitation = OrganizationInvitation(organization=org, email=email, created_at=now)
            s.add(invitation)
        invitation.role = role
        invitation.status = "pending"
        invitation.invited_by = actor
        invitation.user_id = None
        invitation.invitation_token = new_token()
        invitation.invitation_sent_at = now
        invitation.invitation_expires_at = now + timedelta(days=ttl_days)
        invitation.invitation_accepted_at = None
        invitation.updated_at = now
        s.flush()
        results["created"].append(
            {"email": email, "invitation_id": invitation.id, "type": "invitation", "token": invitation.invitation_token}
        )

    s.flush()
    record_event(
        s,
        actor=actor,
        action="organization.invite",
        entity_type="Organization",
        entity_id=org.id,
        metadata={"role": role, **{k: [r["email"] for r in v] for k, v in results.items()}},
    )
    logger.info(
        "Organization %s invite batch: %d created, %d already members, %d invalid",
        org.id,
        len(results["created"]),
        len(results["already_member"]),
        len(results["invalid"]),
    )
    return results


def pending_organization_invitations(org: Organization) -> list[OrganizationInvitation]:
    return [i for i in org.invitations if i.status == "pending"]


def get_organization_invitation(org: Organization, invitation_id: Any) -> OrganizationInvitation:
    invitation_id = parse_int(invitation_id, "invitation_id")
    for i in org.invitations:
        if i.id == invitation_id:
            return i
    raise NotFoundError("OrganizationInvitation", invitation_id)


def revoke_organization_invitation(
    s: "Session", org: Organization, actor: User, invitation: OrganizationInvitation
) -> OrganizationInvitation:
    if invitation.status != "pending":
        raise ValidationError(f"Invitation is already {invitation.status}.")
    invitation.status = "revoked"
    invitation.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="organization.invitation_revoke",
        entity_type="OrganizationInvitation",
        entity_id=invitation.id,
        metadata={"organization_id": org.id, "email": invitation.email},
    )
    return invitation


def accept_organization_invitation(
    s: "Session", token: str | None, user: User, now: datetime | None = None
) -> OrganizationMembership:
    now = now or datetime.utcnow()
    invitation = None
    if token:
        invitation = s.execute(
            select(OrganizationInvitation).where(OrganizationInvitation.invitation_token == token)
        ).scalar_one_or_none()
    if invitation is None or invitation.status == "revoked":
        raise ValidationError("Invalid or expired invitation")
    if invitation.status == "accepted":
        raise ValidationError("Invitation already accepted")
    if invitation.is_expired(now):
        raise ValidationError("Invalid or expired invitation")
    if invitation.email != normalize_email(user.email):
        raise ValidationError(f"Email mismatch. This invitation is for {invitation.email}")

    org = invitation.organization
    membership = org.membership_for(user)
    if membership is None:
        membership = OrganizationMembership(
            organization=org, user=user, role=invitation.role, status="active", joined_at=now, created_at=now
        )
        s.add(membership)
    elif membership.status != "active":
        membership.status = "active"
        membership.joined_at = now
    user.current_organization_id = org.id

    invitation.user = user
    invitation.status = "accepted"
    invitation.invitation_accepted_at = now
    invitation.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="organization.invitation_accept",
        entity_type="OrganizationInvitation",
        entity_id=invitation.id,
        metadata={"organization_id": org.id, "role": membership.role, "membership_id": membership.id},
    )
    logger.info("Organization invitation %s accepted by user_id=%s", invitation.id, user.id)
    return membership


# ---------- teams ----------
def create_team(s: "Session", org: Organization, user: User, payload: dict) -> Team:
    membership = org.membership_for(user)
    if membership is None or membership.status != "active":
        raise ValidationError("Team creator must be a member of the organization.")
    name = _clean_name(payload.get("name"), "Team")
    now = datetime.utcnow()
    team = Team(
        organization=org,
        name=name,
        slug=unique_slug(s, Team.slug, slugify(name, fallback="team"), Team.organization_id == org.id),
        created_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    TeamMembership(team=team, user=user, organization_membership=membership, role="admin", joined_at=now)
    s.add(team)
    s.flush()
    record_event(
        s,
        actor=user,
        action="team.create",
        entity_type="Team",
        entity_id=team.id,
        metadata={"organization_id": org.id, "name": team.name, "slug": team.slug},
    )
    return team


def get_team(org: Organization, team_id: Any) -> Team:
    team_id = parse_int(team_id, "team_id")
    for t in org.teams:
        if t.id == team_id:
            return t
    raise NotFoundError("Team", team_id)


def update_team(s: "Session", team: Team, user: User, payload: dict) -> Team:
    if "name" in payload:
        name = _clean_name(payload.get("name"), "Team")
        if name != team.name:
            old = team.name
            team.name = name
            team.updated_at = datetime.utcnow()
            record_event(
                s,
                actor=user,
                action="team.update",
                entity_type="Team",
                entity_id=team.id,
                metadata={"changes": {"name": {"old": old, "new": name}}},
            )
    return team


def delete_team(s: "Session", team: Team, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="team.delete",
        entity_type="Team",
        entity_id=team.id,
        metadata={"organization_id": team.organization_id, "name": team.name},
    )
    team.organization.teams.remove(team)
    s.delete(team)


def add_team_member(s: "Session", team: Team, actor: User, payload: dict) -> TeamMembership:
    user_id = parse_int(payload.get("user_id"), "user_id")
    user = s.get(User, user_id) if user_id is not None else None
    if user is None:
        email = normalize_email(payload.get("email"))
        user = s.execute(select(User).where(func.lower(User.email) == email)).scalar_one_or_none() if email else None
    if user is None:
        raise ValidationError("User not found.")

    org_membership = team.organization.membership_for(user)
    if org_membership is None or org_membership.status != "active":
        raise ValidationError("User must be an active member of the team's organization.")
    if team.is_member(user):
        raise ValidationError(f"{user.display_name} is already on this team.")

    role = _clean_member_role(payload.get("role"), TEAM_ROLES)
    tm = TeamMembership(
        team=team, user=user, organization_membership=org_membership, role=role, joined_at=datetime.utcnow()
    )
    s.add(tm)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="team.member_add",
        entity_type="Team",
        entity_id=team.id,
        metadata={"user_id": user.id, "role": role},
    )
    return tm


def get_team_membership(team: Team, membership_id: Any) -> TeamMembership:
    membership_id = parse_int(membership_id, "membership_id")
    for m in team.memberships:
        if m.id == membership_id:
            return m
    raise NotFoundError("TeamMembership", membership_id)


def update_team_member_role(s: "Session", team: Team, actor: User, tm: TeamMembership, role_raw: Any) -> TeamMembership:
    role = _clean_member_role(role_raw, TEAM_ROLES)
    old = tm.role
    tm.role = role
    record_event(
        s,
        actor=actor,
        action="team.member_role",
        entity_type="Team",
        entity_id=team.id,
        metadata={"user_id": tm.user_id, "old": old, "new": role},
    )
    return tm


def remove_team_member(s: "Session", team: Team, actor: User, tm: TeamMembership) -> None:
    record_event(
        s,
        actor=actor,
        action="team.member_remove",
        entity_type="Team",
        entity_id=team.id,
        metadata={"user_id": tm.user_id},
    )
    team.memberships.remove(tm)
    s.delete(tm)


# ---------- serialization ----------
def serialize_membership(m: OrganizationMembership) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "email": m.user.email,
        "name": m.user.display_name,
        "role": m.role,
        "status": m.status,
        "joined_at": iso(m.joined_at),
    }


def serialize_team(t: Team, *, include_members: bool = False) -> dict:
    out = {
        "id": t.id,
        "organization_id": t.organization_id,
        "name": t.name,
        "slug": t.slug,
        "member_count": len(t.memberships),
        "created_at": iso(t.created_at),
    }
    if include_members:
        out["members"] = [
            {"id": m.id, "user_id": m.user_id, "name": m.user.display_name, "role": m.role} for m in t.memberships
        ]
    return out


def serialize_organization(org: Organization, user: User | None = None, *, include_members: bool = False) -> dict:
    out = {
        "id": org.id,
        "name": org.name,
        "slug": org.slug,
        "size": org.size,
        "status": org.status,
        "created_by_id": org.created_by_id,
        "member_count": sum(1 for m in org.memberships if m.status == "active"),
        "team_count": len(org.teams),
        "created_at": iso(org.created_at),
    }
    if user is not None:
        out["role"] = org.user_role(user)
    if include_members:
        out["members"] = [serialize_membership(m) for m in org.memberships]
        out["teams"] = [serialize_team(t) for t in org.teams]
    return out


def serialize_organization_invitation(i: OrganizationInvitation, *, include_token: bool = False) -> dict:
    out = {
        "id": i.id,
        "organization_id": i.organization_id,
        "email": i.email,
        "role": i.role,
        "status": i.status,
        "invited_by": i.invited_by.display_name if i.invited_by else None,
        "sent_at": iso(i.invitation_sent_at),
        "expires_at": iso(i.invitation_expires_at),
        "accepted_at": iso(i.invitation_accepted_at),
    }
    if include_token:
        out["token"] = i.invitation_token
    return out
