from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from app.listopia.db import db_session
from app.listopia.errors import NotFoundError
from app.listopia.modules.collaboration.models import Collaborator, Invitation
from app.listopia.modules.collaboration.policy import CollaboratorPolicy, InvitationPolicy
from app.listopia.modules.collaboration.service import (
    accept_invitation,
    decline_invitation,
    delete_invitation,
    find_invitation_by_token,
    invite,
    pending_invitations_for,
    remove_collaborator,
    resend_invitation,
    resolve_target,
    revoke_invitation,
    serialize_collaborator,
    serialize_invitation,
    update_collaborator,
    update_invitation,
)
from app.listopia.modules.lists.models import List
from app.listopia.modules.lists.policy import ListItemPolicy, ListPolicy
from app.listopia.policy import authorize, new_record
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, get_or_404, request_payload

bp = Blueprint("collaboration", __name__)

_KINDS = {"lists": "List", "items": "ListItem"}


def _target(s, kind: str, target_id: int):
    target = resolve_target(s, _KINDS[kind], target_id)
    policy = ListPolicy if isinstance(target, List) else ListItemPolicy
    authorize(current_user(), target, "show", policy)
    return target


def _ttl_days() -> int:
    return int(current_app.config.get("INVITATION_TTL_DAYS") or 7)


@bp.get("/<any(lists, items):kind>/<int:target_id>/collaborators")
@require_login
def collaborators_index(kind: str, target_id: int):
    s = db_session()
    u = current_user()
    target = _target(s, kind, target_id)
    visible = [c for c in target.collaborators if CollaboratorPolicy(u, c).index()]
    return jsonify({"collaborators": [serialize_collaborator(c) for c in visible]})


@bp.post("/<any(lists, items):kind>/<int:target_id>/invitations")
@require_login
def invitations_create(kind: str, target_id: int):
    s = db_session()
    u = current_user()
    target = _target(s, kind, target_id)
    relation = "target_list" if isinstance(target, List) else "target_item"
    record_attrs = {relation: target, "list_item_id": None if isinstance(target, List) else target.id}
    authorize(u, new_record(Invitation, **record_attrs), "create", InvitationPolicy)

    result = invite(s, target, u, request_payload(), ttl_days=_ttl_days())
    s.commit()
    body = {"status": result.kind, "message": result.message}
    if result.collaborator is not None:
        body["collaborator"] = serialize_collaborator(result.collaborator)
    if result.invitation is not None:
        body["invitation"] = serialize_invitation(result.invitation, include_token=True)
    return jsonify(body), 201


@bp.get("/<any(lists, items):kind>/<int:target_id>/invitations")
@require_login
def invitations_for_target(kind: str, target_id: int):
    s = db_session()
    u = current_user()
    target = _target(s, kind, target_id)
    visible = [i for i in target.invitations if InvitationPolicy(u, i).destroy()]
    return jsonify({"invitations": [serialize_invitation(i) for i in visible]})


@bp.get("/invitations")
@require_login
def invitations_index():
    s = db_session()
    return jsonify({"invitations": [serialize_invitation(i) for i in pending_invitations_for(s, current_user())]})


@bp.get("/invitations/<token>")
def invitations_show(token: str):
    s = db_session()
    invitation = find_invitation_by_token(s, token)
    if invitation is None:
        raise NotFoundError("Invitation")
    authorize(getattr(g, "current_user", None), invitation, "show", InvitationPolicy)
    out = serialize_invitation(invitation)
    target = invitation.target
    out["target_title"] = target.title if target is not None else None
    return jsonify({"invitation": out})


@bp.post("/invitations/<token>/accept")
@require_login
def invitations_accept(token: str):
    s = db_session()
    collaborator = accept_invitation(s, token, current_user())
    s.commit()
    return jsonify({"collaborator": serialize_collaborator(collaborator)})


def _invitation(s, invitation_id: int, action: str) -> Invitation:
    invitation = get_or_404(s, Invitation, invitation_id)
    authorize(current_user(), invitation, action, InvitationPolicy)
    return invitation


@bp.post("/invitations/<int:invitation_id>/decline")
@require_login
def invitations_decline(invitation_id: int):
    s = db_session()
    invitation = decline_invitation(s, _invitation(s, invitation_id, "decline"), current_user())
    s.commit()
    return jsonify({"invitation": serialize_invitation(invitation)})


@bp.post("/invitations/<int:invitation_id>/revoke")
@require_login
def invitations_revoke(invitation_id: int):
    s = db_session()
    invitation = revoke_invitation(s, _invitation(s, invitation_id, "revoke"), current_user())
    s.commit()
    return jsonify({"invitation": serialize_invitation(invitation)})


@bp.post("/invitations/<int:invitation_id>/resend")
@require_login
def invitations_resend(invitation_id: int):
    s = db_session()
    invitation = resend_invitation(s, _invitation(s, invitation_id, "resend"), current_user(), ttl_days=_ttl_days())
    s.commit()
    return jsonify({"invitation": serialize_invitation(invitation, include_token=True)})


@bp.patch("/invitations/<int:invitation_id>")
@require_login
def invitations_update(invitation_id: int):
    s = db_session()
    invitation = update_invitation(s, _invitation(s, invitation_id, "update"), current_user(), request_payload())
    s.commit()
    return jsonify({"invitation": serialize_invitation(invitation)})


@bp.delete("/invitations/<int:invitation_id>")
@require_login
def invitations_delete(invitation_id: int):
    s = db_session()
    delete_invitation(s, _invitation(s, invitation_id, "destroy"), current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.patch("/collaborators/<int:collaborator_id>")
@require_login
def collaborators_update(collaborator_id: int):
    s = db_session()
    u = current_user()
    collaborator = get_or_404(s, Collaborator, collaborator_id)
    authorize(u, collaborator, "update", CollaboratorPolicy)
    update_collaborator(s, collaborator, u, request_payload())
    s.commit()
    return jsonify({"collaborator": serialize_collaborator(collaborator)})


@bp.delete("/collaborators/<int:collaborator_id>")
@require_login
def collaborators_delete(collaborator_id: int):
    s = db_session()
    u = current_user()
    collaborator = get_or_404(s, Collaborator, collaborator_id)
    authorize(u, collaborator, "destroy", CollaboratorPolicy)
    remove_collaborator(s, collaborator, u)
    s.commit()
    return jsonify({"ok": True})
