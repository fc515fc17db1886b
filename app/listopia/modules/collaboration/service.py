"""
Sharing lists and items: direct collaborators and email invitations.

An invite for an email that already belongs to a user adds (or updates) a
Collaborator right away; any other email gets a pending Invitation carrying an
opaque token that the recipient redeems after signing up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.listopia.audit import record_event
from app.listopia.errors import NotFoundError, ValidationError
from app.listopia.models import User
from app.listopia.modules.collaboration.models import GRANTABLE_ROLES, PERMISSIONS, Collaborator, Invitation
from app.listopia.modules.lists.models import List, ListItem
from app.listopia.modules.notifications.service import notify
from app.listopia.utils import iso, new_token, normalize_email, parse_int, valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class InviteResult:
    kind: str  # "collaborator_added" | "collaborator_updated" | "invited"
    message: str
    collaborator: Collaborator | None = None
    invitation: Invitation | None = None


def resolve_target(s: "Session", target_type: str, target_id: Any) -> List | ListItem:
    target_id = parse_int(target_id, "target_id")
    if target_type == "List":
        target = s.get(List, target_id)
    elif target_type == "ListItem":
        target = s.get(ListItem, target_id)
    else:
        raise ValidationError("Target type must be List or ListItem.")
    if target is None:
        raise NotFoundError(target_type, target_id)
    return target


def owning_list(target: List | ListItem) -> List:
    return target if isinstance(target, List) else target.parent_list


def _target_fields(target: List | ListItem, prefix: str) -> dict:
    if isinstance(target, List):
        return {f"{prefix}_type": "List", f"{prefix}_id": target.id, "target_list": target}
    return {f"{prefix}_type": "ListItem", f"{prefix}_id": target.id, "target_item": target}


def _clean_roles(raw: Any) -> list[str]:
    """Accept ["can_x", ...] or {"can_x": true}; only known can_ roles survive."""
    if isinstance(raw, dict):
        names = [k for k, v in raw.items() if v]
    elif isinstance(raw, (list, tuple)):
        names = list(raw)
    else:
        names = []
    return sorted({str(n) for n in names if str(n).startswith("can_") and str(n) in GRANTABLE_ROLES})


def _clean_permission(raw: Any) -> str:
    permission = str(raw or "read").strip()
    if permission not in PERMISSIONS:
        raise ValidationError(f"Permission must be one of: {', '.join(PERMISSIONS)}")
    return permission


def _organization_boundary_ok(target: List | ListItem, inviter: User) -> bool:
    org_id = owning_list(target).organization_id
    return org_id is None or inviter.in_organization(org_id)


def _find_user_by_email(s: "Session", email: str) -> User | None:
    return s.execute(select(User).where(func.lower(User.email) == email)).scalar_one_or_none()


def _notify_collaborator_added(s: "Session", collaborator: Collaborator, actor: User) -> None:
    target = collaborator.target
    lst = owning_list(target)
    notify(
        s,
        recipient=collaborator.user,
        actor=actor,
        notification_type="collaborator_added",
        title=f'{actor.display_name} shared "{target.title}" with you',
        target=target,
        params={"list_id": lst.id, "permission": collaborator.permission},
    )


def invite(s: "Session", target: List | ListItem, inviter: User, payload: dict, *, ttl_days: int = 7) -> InviteResult:
    email = normalize_email(payload.get("email"))
    if not email:
        raise ValidationError("Email is required.")
    if not valid_email(email):
        raise ValidationError("Email is invalid.")
    permission = _clean_permission(payload.get("permission"))
    roles = _clean_roles(payload.get("roles") or payload.get("grant_roles"))

    if not _organization_boundary_ok(target, inviter):
        raise ValidationError("Cannot invite users across organization boundaries")

    owner = owning_list(target).owner
    if normalize_email(owner.email) == email:
        raise ValidationError("Cannot invite the owner")

    existing_user = _find_user_by_email(s, email)
    if existing_user is not None:
        return _add_existing_user(s, target, inviter, existing_user, permission, roles)
    return _invite_new_user(s, target, inviter, email, permission, roles, payload.get("message"), ttl_days)


def _settle_pending_invitations(s: "Session", target: List | ListItem, inviter: User, user: User, now: datetime) -> None:
    """Mark open invitations for `user` on `target` accepted once they collaborate directly."""
    email = normalize_email(user.email)
    for invitation in target.invitations:
        if not invitation.is_pending or normalize_email(invitation.email) != email:
            continue
        invitation.user = user
        invitation.status = "accepted"
        invitation.invitation_accepted_at = now
        invitation.updated_at = now
        record_event(
            s,
            actor=inviter,
            action="invitation.settle",
            entity_type="Invitation",
            entity_id=invitation.id,
            metadata={"user_id": user.id},
        )


def _add_existing_user(
    s: "Session", target: List | ListItem, inviter: User, user: User, permission: str, roles: list[str]
) -> InviteResult:
    collaborator = target.collaborator_for(user)
    now = datetime.utcnow()
    _settle_pending_invitations(s, target, inviter, user, now)
    if collaborator is not None:
        old_permission = collaborator.permission
        collaborator.permission = permission
        collaborator.granted_roles = roles
        collaborator.updated_at = now
        record_event(
            s,
            actor=inviter,
            action="collaborator.update",
            entity_type="Collaborator",
            entity_id=collaborator.id,
            metadata={"old_permission": old_permission, "new_permission": permission, "roles": roles},
        )
        return InviteResult("collaborator_updated", f"{user.display_name}'s permission updated", collaborator=collaborator)

    collaborator = Collaborator(
        user=user,
        permission=permission,
        granted_roles=roles,
        created_at=now,
        updated_at=now,
        **_target_fields(target, "collaboratable"),
    )
    s.add(collaborator)
    s.flush()
    record_event(
        s,
        actor=inviter,
        action="collaborator.create",
        entity_type="Collaborator",
        entity_id=collaborator.id,
        metadata={
            "target_type": collaborator.collaboratable_type,
            "target_id": collaborator.collaboratable_id,
            "user_id": user.id,
            "permission": permission,
        },
    )
    _notify_collaborator_added(s, collaborator, inviter)
    return InviteResult("collaborator_added", f"{user.display_name} added as collaborator", collaborator=collaborator)


def _invite_new_user(
    s: "Session",
    target: List | ListItem,
    inviter: User,
    email: str,
    permission: str,
    roles: list[str],
    message: Any,
    ttl_days: int,
) -> InviteResult:
    now = datetime.utcnow()
    invitation = next((i for i in target.invitations if normalize_email(i.email) == email), None)
    reactivated = invitation is not None
    if invitation is None:
        invitation = Invitation(email=email, created_at=now, **_target_fields(target, "invitable"))
        s.add(invitation)

    invitation.status = "pending"
    invitation.permission = permission
    invitation.granted_roles = roles
    invitation.invited_by = inviter
    invitation.organization_id = owning_list(target).organization_id
    invitation.message = (str(message).strip() or None) if message else None
    invitation.invitation_token = new_token()
    invitation.invitation_sent_at = now
    invitation.invitation_expires_at = now + timedelta(days=ttl_days)
    invitation.invitation_accepted_at = None
    invitation.user_id = None
    invitation.updated_at = now
    s.flush()

    record_event(
        s,
        actor=inviter,
        action="invitation.resend" if reactivated else "invitation.create",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={"email": email, "permission": permission, "roles": roles},
    )
    logger.info("Invitation %s sent to %s", invitation.id, email)
    verb = "re-sent" if reactivated else "sent"
    return InviteResult("invited", f"Invitation {verb} to {email}", invitation=invitation)


def find_invitation_by_token(s: "Session", token: str | None, now: datetime | None = None) -> Invitation | None:
    """The invitation a token unlocks, or None when unknown or past its expiry."""
    if not token:
        return None
    invitation = s.execute(select(Invitation).where(Invitation.invitation_token == token)).scalar_one_or_none()
    if invitation is None:
        return None
    if invitation.is_pending and invitation.is_expired(now):
        return None
    return invitation


def accept_invitation(s: "Session", token: str | None, user: User, now: datetime | None = None) -> Collaborator:
    now = now or datetime.utcnow()
    invitation = find_invitation_by_token(s, token, now)
    if invitation is None or invitation.status in ("declined", "revoked", "expired"):
        raise ValidationError("Invalid or expired invitation")
    if invitation.is_accepted:
        raise ValidationError("Invitation already accepted")
    if normalize_email(invitation.email) != normalize_email(user.email):
        raise ValidationError(f"Email mismatch. This invitation is for {invitation.email}")

    target = invitation.target
    if target is None:
        raise ValidationError("Invalid or expired invitation")

    roles = [r for r in (invitation.granted_roles or []) if str(r).startswith("can_")]
    collaborator = target.collaborator_for(user)
    if collaborator is None:
        collaborator = Collaborator(user=user, created_at=now, **_target_fields(target, "collaboratable"))
        s.add(collaborator)
    collaborator.permission = invitation.permission
    collaborator.granted_roles = sorted(set(collaborator.granted_roles or []) | set(roles))
    collaborator.updated_at = now

    invitation.user = user
    invitation.status = "accepted"
    invitation.invitation_accepted_at = now
    invitation.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="invitation.accept",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={
            "target_type": invitation.invitable_type,
            "target_id": invitation.invitable_id,
            "permission": invitation.permission,
            "collaborator_id": collaborator.id,
        },
    )
    logger.info("Invitation %s accepted by user_id=%s", invitation.id, user.id)

    if invitation.invited_by is not None:
        notify(
            s,
            recipient=invitation.invited_by,
            actor=user,
            notification_type="invitation_accepted",
            title=f'{user.display_name} accepted your invitation to "{target.title}"',
            target=target,
            params={"list_id": owning_list(target).id, "invitation_id": invitation.id},
        )
    return collaborator


def _close_invitation(s: "Session", invitation: Invitation, actor: User, status: str) -> Invitation:
    if not invitation.is_pending:
        raise ValidationError("Only pending invitations can be changed.")
    invitation.status = status
    invitation.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action=f"invitation.{'decline' if status == 'declined' else 'revoke'}",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={"email": invitation.email},
    )
    return invitation


def decline_invitation(s: "Session", invitation: Invitation, user: User) -> Invitation:
    return _close_invitation(s, invitation, user, "declined")


def revoke_invitation(s: "Session", invitation: Invitation, user: User) -> Invitation:
    return _close_invitation(s, invitation, user, "revoked")


def resend_invitation(s: "Session", invitation: Invitation, user: User, *, ttl_days: int = 7) -> Invitation:
    if invitation.is_accepted:
        raise ValidationError("Invitation already accepted")
    now = datetime.utcnow()
    invitation.status = "pending"
    invitation.invitation_token = new_token()
    invitation.invitation_sent_at = now
    invitation.invitation_expires_at = now + timedelta(days=ttl_days)
    invitation.updated_at = now
    record_event(
        s,
        actor=user,
        action="invitation.resend",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={"email": invitation.email},
    )
    logger.info("Invitation %s resent to %s", invitation.id, invitation.email)
    return invitation


def delete_invitation(s: "Session", invitation: Invitation, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="invitation.delete",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={"email": invitation.email, "status": invitation.status},
    )
    s.delete(invitation)


def update_invitation(s: "Session", invitation: Invitation, user: User, payload: dict) -> Invitation:
    if "permission" in payload:
        invitation.permission = _clean_permission(payload.get("permission"))
    if "roles" in payload:
        invitation.granted_roles = _clean_roles(payload.get("roles"))
    invitation.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="invitation.update",
        entity_type="Invitation",
        entity_id=invitation.id,
        metadata={"permission": invitation.permission, "roles": invitation.granted_roles},
    )
    return invitation


def pending_invitations_for(s: "Session", user: User) -> list[Invitation]:
    q = (
        select(Invitation)
        .where(func.lower(Invitation.email) == normalize_email(user.email), Invitation.status == "pending")
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    )
    now = datetime.utcnow()
    return [i for i in s.execute(q).scalars() if not i.is_expired(now)]


def update_collaborator(s: "Session", collaborator: Collaborator, actor: User, payload: dict) -> Collaborator:
    old_permission = collaborator.permission
    if "permission" in payload:
        collaborator.permission = _clean_permission(payload.get("permission"))
    if "roles" in payload:
        collaborator.granted_roles = _clean_roles(payload.get("roles"))
    collaborator.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="collaborator.update",
        entity_type="Collaborator",
        entity_id=collaborator.id,
        metadata={
            "old_permission": old_permission,
            "new_permission": collaborator.permission,
            "roles": collaborator.granted_roles,
        },
    )
    return collaborator


def remove_collaborator(s: "Session", collaborator: Collaborator, actor: User) -> None:
    record_event(
        s,
        actor=actor,
        action="collaborator.delete",
        entity_type="Collaborator",
        entity_id=collaborator.id,
        metadata={
            "target_type": collaborator.collaboratable_type,
            "target_id": collaborator.collaboratable_id,
            "user_id": collaborator.user_id,
        },
    )
    target = collaborator.target
    if target is not None and collaborator in target.collaborators:
        target.collaborators.remove(collaborator)
    s.delete(collaborator)


def serialize_collaborator(c: Collaborator) -> dict:
    return {
        "id": c.id,
        "target_type": c.collaboratable_type,
        "target_id": c.collaboratable_id,
        "user_id": c.user_id,
        "email": c.user.email if c.user else None,
        "name": c.user.display_name if c.user else None,
        "permission": c.permission,
        "roles": list(c.granted_roles or []),
        "created_at": iso(c.created_at),
    }


def serialize_invitation(i: Invitation, *, include_token: bool = False) -> dict:
    out = {
        "id": i.id,
        "target_type": i.invitable_type,
        "target_id": i.invitable_id,
        "email": i.display_email,
        "permission": i.permission,
        "roles": list(i.granted_roles or []),
        "status": i.status,
        "invited_by": i.invited_by.display_name if i.invited_by else None,
        "message": i.message,
        "sent_at": iso(i.invitation_sent_at),
        "expires_at": iso(i.invitation_expires_at),
        "accepted_at": iso(i.invitation_accepted_at),
    }
    if include_token:
        out["token"] = i.invitation_token
    return out
