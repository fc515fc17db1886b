from __future__ import annotations

import logging
from datetime import datetime, time
from typing import TYPE_CHECKING, Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, select, update

from app.listopia.errors import NotFoundError, ValidationError
from app.listopia.modules.notifications.models import (
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_FREQUENCIES,
    Notification,
    NotificationSetting,
)
from app.listopia.utils import parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.listopia.models import User
    from app.listopia.modules.lists.models import List

logger = logging.getLogger(__name__)

_SETTING_FLAGS = (
    "email_notifications",
    "sms_notifications",
    "push_notifications",
    "collaboration_notifications",
    "list_activity_notifications",
    "item_activity_notifications",
    "status_change_notifications",
)


def ensure_settings(s: "Session", user: "User") -> NotificationSetting:
    """Return the user's settings row, creating the defaults on first use."""
    setting = s.execute(select(NotificationSetting).where(NotificationSetting.user_id == user.id)).scalar_one_or_none()
    if setting is None:
        now = datetime.utcnow()
        setting = NotificationSetting(user_id=user.id, created_at=now, updated_at=now)
        s.add(setting)
        s.flush()
    return setting


def notify(
    s: "Session",
    *,
    recipient: "User",
    actor: "User | None",
    notification_type: str,
    title: str,
    body: str | None = None,
    target: Any = None,
    params: dict | None = None,
    now: datetime | None = None,
) -> Notification | None:
    """
    Store an in-app notification unless the recipient opted out.

    Returns None when nothing was stored (self-notification, frequency "disabled",
    or the notification's category switched off).
    """
    if actor is not None and recipient.id == actor.id:
        return None

    setting = ensure_settings(s, recipient)
    if setting.notifications_disabled():
        return None
    category = NOTIFICATION_CATEGORIES.get(notification_type, notification_type)
    if not setting.notifications_enabled_for(category):
        return None

    n = Notification(
        recipient_id=recipient.id,
        actor_id=actor.id if actor else None,
        notification_type=notification_type,
        title=title[:255],
        body=body,
        target_type=type(target).__name__ if target is not None else None,
        target_id=getattr(target, "id", None),
        params_json=params or {},
        created_at=now or datetime.utcnow(),
    )
    s.add(n)

    if setting.immediate_notifications(now):
        channels = setting.enabled_channels()
    else:
        channels = []
    logger.info(
        "notification %s -> user_id=%s channels=%s",
        notification_type,
        recipient.id,
        ",".join(channels) or "deferred",
    )
    return n


def list_recipients(lst: "List", actor: "User | None") -> list["User"]:
    """Owner plus collaborators of a list, minus the actor."""
    seen: set[int] = set()
    out: list[User] = []
    for u in [lst.owner, *(c.user for c in lst.collaborators)]:
        if u is None or u.id in seen:
            continue
        if actor is not None and u.id == actor.id:
            continue
        seen.add(u.id)
        out.append(u)
    return out


def notify_many(s: "Session", recipients: Iterable["User"], **kwargs: Any) -> list[Notification]:
    out = []
    for r in recipients:
        n = notify(s, recipient=r, **kwargs)
        if n is not None:
            out.append(n)
    return out


def user_notifications(
    s: "Session",
    user: "User",
    *,
    read_filter: str | None = None,
    notification_type: str | None = None,
    limit: int = 100,
) -> list[Notification]:
    q = select(Notification).where(Notification.recipient_id == user.id)
    if read_filter == "unread":
        q = q.where(Notification.read_at.is_(None))
    elif read_filter == "read":
        q = q.where(Notification.read_at.isnot(None))
    if notification_type:
        q = q.where(Notification.notification_type == notification_type)
    q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return list(s.execute(q).scalars())


def get_notification(s: "Session", user: "User", notification_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    # Other users' notifications are reported as missing.
    if n is None or n.recipient_id != user.id:
        raise NotFoundError("Notification", notification_id)
    return n


def mark_read(s: "Session", user: "User", notification_id: int) -> Notification:
    n = get_notification(s, user, notification_id)
    if n.read_at is None:
        n.read_at = datetime.utcnow()
    if n.seen_at is None:
        n.seen_at = n.read_at
    return n


def mark_all_read(s: "Session", user: "User") -> int:
    now = datetime.utcnow()
    res = s.execute(
        update(Notification)
        .where(Notification.recipient_id == user.id, Notification.read_at.is_(None))
        .values(read_at=now)
    )
    return res.rowcount or 0


def mark_all_seen(s: "Session", user: "User") -> int:
    now = datetime.utcnow()
    res = s.execute(
        update(Notification)
        .where(Notification.recipient_id == user.id, Notification.seen_at.is_(None))
        .values(seen_at=now)
    )
    return res.rowcount or 0


def notification_stats(s: "Session", user: "User") -> dict[str, int]:
    def _count(*criteria) -> int:
        return s.execute(
            select(func.count(Notification.id)).where(Notification.recipient_id == user.id, *criteria)
        ).scalar_one()

    return {
        "total": _count(),
        "unread": _count(Notification.read_at.is_(None)),
        "unseen": _count(Notification.seen_at.is_(None)),
    }


def _parse_clock(value: Any, field: str) -> time | None:
    if value is None or isinstance(value, time):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return time.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{field} must be HH:MM.")


def update_settings(s: "Session", user: "User", payload: dict) -> NotificationSetting:
    setting = ensure_settings(s, user)
    errors: list[str] = []

    for flag in _SETTING_FLAGS:
        if flag in payload:
            setattr(setting, flag, parse_bool(payload.get(flag)))

    if "notification_frequency" in payload:
        freq = str(payload.get("notification_frequency") or "").strip()
        if freq not in NOTIFICATION_FREQUENCIES:
            errors.append(f"Notification frequency must be one of: {', '.join(NOTIFICATION_FREQUENCIES)}")
        else:
            setting.notification_frequency = freq

    if "timezone" in payload:
        tz = str(payload.get("timezone") or "").strip()
        try:
            if not tz:
                raise ValueError(tz)
            ZoneInfo(tz)
            setting.timezone = tz
        except (ZoneInfoNotFoundError, ValueError, OSError):
            errors.append("Timezone is not recognized.")

    try:
        if "quiet_hours_start" in payload:
            setting.quiet_hours_start = _parse_clock(payload.get("quiet_hours_start"), "Quiet hours start")
        if "quiet_hours_end" in payload:
            setting.quiet_hours_end = _parse_clock(payload.get("quiet_hours_end"), "Quiet hours end")
    except ValidationError as e:
        errors.extend(e.errors)

    if errors:
        raise ValidationError(errors)
    setting.updated_at = datetime.utcnow()
    return setting


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.notification_type,
        "title": n.title,
        "body": n.body,
        "actor": n.actor.display_name if n.actor else None,
        "target_type": n.target_type,
        "target_id": n.target_id,
        "params": n.params_json or {},
        "read": n.read_at is not None,
        "seen": n.seen_at is not None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def serialize_settings(setting: NotificationSetting) -> dict:
    out: dict[str, Any] = {flag: bool(getattr(setting, flag)) for flag in _SETTING_FLAGS}
    out.update(
        {
            "notification_frequency": setting.notification_frequency,
            "timezone": setting.timezone,
            "quiet_hours_start": setting.quiet_hours_start.strftime("%H:%M") if setting.quiet_hours_start else None,
            "quiet_hours_end": setting.quiet_hours_end.strftime("%H:%M") if setting.quiet_hours_end else None,
            "enabled_channels": setting.enabled_channels(),
            "in_quiet_hours": setting.in_quiet_hours(),
        }
    )
    return out
