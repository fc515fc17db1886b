from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.listopia.db import db_session
from app.listopia.errors import ValidationError
from app.listopia.modules.notifications.service import (
    ensure_settings,
    mark_all_read,
    mark_all_seen,
    mark_read,
    notification_stats,
    serialize_notification,
    serialize_settings,
    update_settings,
    user_notifications,
)
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, parse_int, request_payload

bp = Blueprint("notifications", __name__)

_READ_FILTERS = ("all", "unread", "read")


@bp.get("/notifications")
@require_login
def notifications_index():
    s = db_session()
    read_filter = (request.args.get("filter") or "all").strip()
    if read_filter not in _READ_FILTERS:
        raise ValidationError(f"Filter must be one of: {', '.join(_READ_FILTERS)}")
    limit = parse_int(request.args.get("limit"), "limit") or 100
    items = user_notifications(
        s,
        current_user(),
        read_filter=None if read_filter == "all" else read_filter,
        notification_type=(request.args.get("type") or "").strip() or None,
        limit=max(1, min(limit, 500)),
    )
    return jsonify(
        {
            "notifications": [serialize_notification(n) for n in items],
            "stats": notification_stats(s, current_user()),
        }
    )


@bp.get("/notifications/stats")
@require_login
def notifications_stats():
    s = db_session()
    return jsonify({"stats": notification_stats(s, current_user())})


@bp.post("/notifications/<int:notification_id>/read")
@require_login
def notifications_mark_read(notification_id: int):
    s = db_session()
    n = mark_read(s, current_user(), notification_id)
    s.commit()
    return jsonify({"notification": serialize_notification(n)})


@bp.post("/notifications/read-all")
@require_login
def notifications_read_all():
    s = db_session()
    count = mark_all_read(s, current_user())
    s.commit()
    return jsonify({"updated": count})


@bp.post("/notifications/seen-all")
@require_login
def notifications_seen_all():
    s = db_session()
    count = mark_all_seen(s, current_user())
    s.commit()
    return jsonify({"updated": count})


@bp.get("/notifications/settings")
@require_login
def settings_get():
    s = db_session()
    setting = ensure_settings(s, current_user())
    s.commit()
    return jsonify({"settings": serialize_settings(setting)})


@bp.patch("/notifications/settings")
@require_login
def settings_update():
    s = db_session()
    setting = update_settings(s, current_user(), request_payload())
    s.commit()
    return jsonify({"settings": serialize_settings(setting)})
