from datetime import date, datetime, time, timedelta

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_, select, text

from app.listopia.audit import record_event
from app.listopia.db import db_session
from app.listopia.errors import ValidationError
from app.listopia.models import AuditEvent, User
from app.listopia.modules.chat.models import Chat, Message
from app.listopia.modules.lists.models import List, ListItem
from app.listopia.modules.organizations.models import Organization
from app.listopia.rbac import require_permission
from app.listopia.utils import current_user, get_or_404, iso, like_pattern

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"{s!r} must be YYYY-MM-DD")


def _count(s, model, *criteria) -> int:
    return s.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    db_connected = True
    try:
        s.execute(text("SELECT 1"))
    except Exception as e:
        db_connected = False
        db_error = str(e)
    else:
        db_error = None

    week_ago = datetime.utcnow() - timedelta(days=7)
    return jsonify(
        {
            "system": {"db_connected": db_connected, "db_error": db_error},
            "counts": {
                "users": _count(s, User),
                "active_users": _count(s, User, User.is_active.is_(True)),
                "organizations": _count(s, Organization),
                "lists": _count(s, List),
                "public_lists": _count(s, List, List.is_public.is_(True)),
                "list_items": _count(s, ListItem),
                "completed_items": _count(s, ListItem, ListItem.completed.is_(True)),
                "chats": _count(s, Chat),
                "messages": _count(s, Message),
                "blocked_messages": _count(s, Message, Message.blocked.is_(True)),
                "new_users_7d": _count(s, User, User.created_at >= week_ago),
            },
        }
    )


def _serialize_admin_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "is_active": bool(u.is_active),
        "roles": sorted(r.key for r in u.roles),
        "created_at": iso(u.created_at),
    }


@bp.get("/users")
@require_permission("admin.view")
def users_list():
    s = db_session()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    stmt = select(User)
    if q:
        like = like_pattern(q.lower())
        stmt = stmt.where(
            or_(func.lower(User.email).like(like, escape="\\"), func.lower(User.name).like(like, escape="\\"))
        )
    if status == "active":
        stmt = stmt.where(User.is_active.is_(True))
    elif status == "inactive":
        stmt = stmt.where(User.is_active.is_(False))
    users = s.execute(stmt.order_by(User.created_at.desc(), User.id.desc()).limit(500)).scalars().all()
    return jsonify({"users": [_serialize_admin_user(u) for u in users]})


@bp.post("/users/<int:user_id>/toggle-active")
@require_permission("admin.users")
def users_toggle_active(user_id: int):
    s = db_session()
    actor = current_user()
    user = get_or_404(s, User, user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot deactivate your own account.")
    user.is_active = not user.is_active
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.activate" if user.is_active else "user.deactivate",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.commit()
    return jsonify({"user": _serialize_admin_user(user)})


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Audit trail feed (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    stmt = select(AuditEvent)
    if action:
        stmt = stmt.where(AuditEvent.action.like(like_pattern(action), escape="\\"))
    if actor_email:
        stmt = stmt.where(AuditEvent.actor_user_email.like(like_pattern(actor_email.lower()), escape="\\"))
    if date_from:
        stmt = stmt.where(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        stmt = stmt.where(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = s.execute(stmt.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200)).scalars().all()
    return jsonify(
        {
            "events": [
                {
                    "id": e.id,
                    "created_at": iso(e.created_at),
                    "request_id": e.request_id,
                    "actor_email": e.actor_user_email,
                    "action": e.action,
                    "entity_type": e.entity_type,
                    "entity_id": e.entity_id,
                    "reason": e.reason,
                    "metadata": e.metadata_json,
                }
                for e in events
            ]
        }
    )
