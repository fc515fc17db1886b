from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.listopia.audit import record_event
from app.listopia.errors import NotFoundError, ValidationError
from app.listopia.models import User
from app.listopia.modules.collaboration.models import Collaborator
from app.listopia.modules.lists.models import (
    DEFAULT_BOARD_COLUMNS,
    ITEM_PRIORITIES,
    ITEM_TYPES,
    LIST_STATUSES,
    LIST_TYPES,
    PUBLIC_PERMISSIONS,
    BoardColumn,
    List,
    ListItem,
    TimeEntry,
)
from app.listopia.modules.lists.policy import ListPolicy
from app.listopia.modules.notifications.service import list_recipients, notify, notify_many
from app.listopia.modules.organizations.models import Team
from app.listopia.utils import iso, like_pattern, parse_bool, parse_datetime, parse_int, slugify, unique_slug

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TITLE_MAX = 255
DESCRIPTION_MAX = 1000


def _clean(value: Any) -> str:
    return str(value or "").strip()


# ---------- validation ----------
def validate_list_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate list create/update payload. Returns list of errors."""
    errors = []
    if not partial or "title" in payload:
        title = _clean(payload.get("title"))
        if not title:
            errors.append("Title is required.")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title must be at most {TITLE_MAX} characters.")
    if len(_clean(payload.get("description"))) > DESCRIPTION_MAX:
        errors.append(f"Description must be at most {DESCRIPTION_MAX} characters.")
    status = _clean(payload.get("status"))
    if status and status not in LIST_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(LIST_STATUSES)}")
    list_type = _clean(payload.get("list_type"))
    if list_type and list_type not in LIST_TYPES:
        errors.append(f"Invalid list type. Must be one of: {', '.join(LIST_TYPES)}")
    public_permission = _clean(payload.get("public_permission"))
    if public_permission and public_permission not in PUBLIC_PERMISSIONS:
        errors.append(f"Invalid public permission. Must be one of: {', '.join(PUBLIC_PERMISSIONS)}")
    return errors


def validate_item_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        title = _clean(payload.get("title"))
        if not title:
            errors.append("Title is required.")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title must be at most {TITLE_MAX} characters.")
    if len(_clean(payload.get("description"))) > DESCRIPTION_MAX:
        errors.append(f"Description must be at most {DESCRIPTION_MAX} characters.")
    item_type = _clean(payload.get("item_type"))
    if item_type and item_type not in ITEM_TYPES:
        errors.append(f"Invalid item type. Must be one of: {', '.join(ITEM_TYPES)}")
    priority = _clean(payload.get("priority"))
    if priority and priority not in ITEM_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(ITEM_PRIORITIES)}")
    return errors


# ---------- lists ----------
def accessible_lists(
    s: "Session",
    user: "User",
    *,
    status: str | None = None,
    search: str | None = None,
) -> list[List]:
    """Lists the user owns or collaborates on, most recently updated first."""
    collaborated = select(Collaborator.list_id).where(Collaborator.user_id == user.id, Collaborator.list_id.isnot(None))
    q = select(List).where(or_(List.user_id == user.id, List.id.in_(collaborated)))
    if status:
        q = q.where(List.status == status)
    if search:
        like = like_pattern(search)
        q = q.where(or_(List.title.ilike(like, escape="\\"), List.description.ilike(like, escape="\\")))
    q = q.order_by(List.updated_at.desc(), List.id.desc())
    return [lst for lst in s.execute(q).scalars() if ListPolicy(user, lst).show()]


def _resolve_organization_id(user: "User", payload: dict) -> int | None:
    if "organization_id" in payload:
        org_id = parse_int(payload.get("organization_id"), "organization_id")
    else:
        org_id = user.current_organization_id
        if org_id is not None and not user.in_organization(org_id):
            org_id = None
    if org_id is not None and not user.in_organization(org_id):
        raise ValidationError("You are not a member of that organization.")
    return org_id


def _resolve_team(s: "Session", organization_id: int | None, raw: Any) -> int | None:
    team_id = parse_int(raw, "team_id")
    if team_id is None:
        return None
    team = s.get(Team, team_id)
    if team is None or team.organization_id != organization_id:
        raise ValidationError("Team must belong to the list's organization.")
    return team.id


def _assign_parent(s: "Session", lst: List, user: "User", raw: Any) -> None:
    parent_id = parse_int(raw, "parent_list_id")
    if parent_id is None:
        lst.parent_list = None
        return
    if lst.id is not None and parent_id == lst.id:
        raise ValidationError("A list cannot be its own parent.")
    parent = s.get(List, parent_id)
    if parent is None or not ListPolicy(user, parent).update():
        raise ValidationError("Parent list not found.")
    node: List | None = parent
    while node is not None:
        if lst.id is not None and node.id == lst.id:
            raise ValidationError("A list cannot be nested under one of its own sub-lists.")
        node = node.parent_list
    lst.parent_list = parent


def _ensure_public_slug(s: "Session", lst: List) -> None:
    if lst.is_public and not lst.public_slug:
        lst.public_slug = unique_slug(s, List.public_slug, slugify(lst.title, fallback="list"))


def create_list(s: "Session", user: "User", payload: dict) -> List:
    """Create a list owned by `user`, with the default board columns."""
    errors = validate_list_payload(payload)
    if errors:
        raise ValidationError(errors)

    org_id = _resolve_organization_id(user, payload)
    now = datetime.utcnow()
    lst = List(
        user_id=user.id,
        organization_id=org_id,
        team_id=_resolve_team(s, org_id, payload.get("team_id")),
        title=_clean(payload.get("title")),
        description=_clean(payload.get("description")) or None,
        status=_clean(payload.get("status")) or "draft",
        list_type=_clean(payload.get("list_type")) or "personal",
        is_public=parse_bool(payload.get("is_public")),
        public_permission=_clean(payload.get("public_permission")) or "public_read",
        color_theme=_clean(payload.get("color_theme")) or "blue",
        metadata_json=payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {},
        created_at=now,
        updated_at=now,
    )
    lst.owner = user
    _assign_parent(s, lst, user, payload.get("parent_list_id"))
    for position, name in enumerate(DEFAULT_BOARD_COLUMNS):
        lst.board_columns.append(BoardColumn(name=name, position=position, created_at=now))
    s.add(lst)
    _ensure_public_slug(s, lst)
    s.flush()

    record_event(
        s,
        actor=user,
        action="list.create",
        entity_type="List",
        entity_id=lst.id,
        metadata={"title": lst.title, "status": lst.status, "organization_id": lst.organization_id},
    )
    return lst


def update_list(s: "Session", lst: List, user: "User", payload: dict) -> List:
    errors = validate_list_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)

    changes: dict[str, dict] = {}
    old_title, old_status = lst.title, lst.status

    for field in ("title", "status", "list_type", "color_theme"):
        if field in payload:
            new = _clean(payload.get(field))
            if new and new != getattr(lst, field):
                changes[field] = {"old": getattr(lst, field), "new": new}
                setattr(lst, field, new)

    if "description" in payload:
        new_desc = _clean(payload.get("description")) or None
        if new_desc != lst.description:
            changes["description"] = {"old": lst.description, "new": new_desc}
            lst.description = new_desc

    # Visibility is the owner's call (see toggle_public_access).
    if lst.is_owner(user):
        if "public_permission" in payload and _clean(payload.get("public_permission")):
            lst.public_permission = _clean(payload.get("public_permission"))
        if "is_public" in payload:
            lst.is_public = parse_bool(payload.get("is_public"))
            _ensure_public_slug(s, lst)

    if "team_id" in payload:
        lst.team_id = _resolve_team(s, lst.organization_id, payload.get("team_id"))

    if "parent_list_id" in payload:
        _assign_parent(s, lst, user, payload.get("parent_list_id"))

    if isinstance(payload.get("metadata"), dict):
        lst.metadata_json = {**(lst.metadata_json or {}), **payload["metadata"]}

    lst.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list.update",
        entity_type="List",
        entity_id=lst.id,
        metadata={"title": lst.title, "changes": changes},
    )
    _notify_list_changes(s, lst, user, old_title=old_title, old_status=old_status)
    return lst


def _notify_list_changes(s: "Session", lst: List, actor: "User", *, old_title: str, old_status: str) -> None:
    recipients = list_recipients(lst, actor)
    if old_status != lst.status:
        notify_many(
            s,
            recipients,
            actor=actor,
            notification_type="list_status_changed",
            title=f"{lst.title} is now {lst.status}",
            target=lst,
            params={"list_id": lst.id, "previous_status": old_status, "new_status": lst.status},
        )
    if old_title != lst.title:
        notify_many(
            s,
            recipients,
            actor=actor,
            notification_type="list_title_changed",
            title=f'"{old_title}" was renamed to "{lst.title}"',
            target=lst,
            params={"list_id": lst.id, "previous_title": old_title},
        )


def delete_list(s: "Session", lst: List, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="list.delete",
        entity_type="List",
        entity_id=lst.id,
        metadata={"title": lst.title, "items": len(lst.items)},
    )
    s.delete(lst)


def toggle_status(s: "Session", lst: List, user: "User") -> List:
    """completed -> active, anything else -> completed."""
    old_status = lst.status
    lst.status = "active" if lst.status == "completed" else "completed"
    lst.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list.toggle_status",
        entity_type="List",
        entity_id=lst.id,
        metadata={"old": old_status, "new": lst.status},
    )
    _notify_list_changes(s, lst, user, old_title=lst.title, old_status=old_status)
    return lst


def toggle_public_access(s: "Session", lst: List, user: "User") -> List:
    lst.is_public = not lst.is_public
    _ensure_public_slug(s, lst)
    lst.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list.toggle_public",
        entity_type="List",
        entity_id=lst.id,
        metadata={"is_public": lst.is_public, "public_slug": lst.public_slug},
    )
    return lst


def duplicate_list(s: "Session", source: List, user: "User") -> List:
    """Copy a list (and its items) into a new draft owned by `user`."""
    now = datetime.utcnow()
    copy = List(
        user_id=user.id,
        organization_id=source.organization_id if user.in_organization(source.organization_id) else None,
        title=f"Copy of {source.title}"[:TITLE_MAX],
        description=source.description,
        status="draft",
        list_type=source.list_type,
        is_public=False,
        public_permission="public_read",
        color_theme=source.color_theme,
        metadata_json=dict(source.metadata_json or {}),
        created_at=now,
        updated_at=now,
    )
    copy.owner = user
    if copy.organization_id == source.organization_id:
        copy.team_id = source.team_id
    for position, name in enumerate(DEFAULT_BOARD_COLUMNS):
        copy.board_columns.append(BoardColumn(name=name, position=position, created_at=now))
    for item in source.items:
        copy.items.append(
            ListItem(
                title=item.title,
                description=item.description,
                item_type=item.item_type,
                priority=item.priority,
                completed=False,
                completed_at=None,
                due_date=item.due_date,
                reminder_at=item.reminder_at,
                position=item.position,
                url=item.url,
                metadata_json=dict(item.metadata_json or {}),
                created_at=now,
                updated_at=now,
            )
        )
    s.add(copy)
    s.flush()
    record_event(
        s,
        actor=user,
        action="list.duplicate",
        entity_type="List",
        entity_id=copy.id,
        metadata={"source_list_id": source.id, "items": len(copy.items)},
    )
    return copy


def get_public_list(s: "Session", slug: str) -> List:
    lst = s.execute(select(List).where(List.public_slug == slug)).scalar_one_or_none()
    if lst is None or not lst.is_public:
        raise NotFoundError("List", slug)
    return lst


def share_summary(lst: List, user: "User") -> dict:
    policy = ListPolicy(user, lst)
    return {
        "list_id": lst.id,
        "is_public": bool(lst.is_public),
        "public_permission": lst.public_permission,
        "public_slug": lst.public_slug,
        "can_manage_collaborators": policy.manage_collaborators(),
        "can_toggle_public_access": policy.toggle_public_access(),
        "collaborators": [
            {
                "id": c.id,
                "user_id": c.user_id,
                "email": c.user.email,
                "name": c.user.display_name,
                "permission": c.permission,
                "roles": list(c.granted_roles or []),
            }
            for c in lst.collaborators
        ],
        "pending_invitations": [
            {
                "id": inv.id,
                "email": inv.display_email,
                "permission": inv.permission,
                "sent_at": iso(inv.invitation_sent_at),
                "expires_at": iso(inv.invitation_expires_at),
            }
            for inv in lst.invitations
            if inv.status == "pending"
        ],
    }


def list_analytics(lst: List, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    items = list(lst.items)
    total = len(items)
    completed = sum(1 for i in items if i.completed)

    per_assignee: dict[int, dict] = {}
    for i in items:
        if i.assigned_user is None:
            continue
        row = per_assignee.setdefault(
            i.assigned_user.id,
            {"user_id": i.assigned_user.id, "name": i.assigned_user.display_name, "total": 0, "completed": 0},
        )
        row["total"] += 1
        if i.completed:
            row["completed"] += 1

    overdue = sum(1 for i in items if i.is_overdue(now))
    completion_rate = round(completed * 100 / total, 2) if total else 0

    insights = []
    if total and completion_rate > 80:
        insights.append({"type": "positive", "message": "Great job! High completion rate."})
    elif total and completion_rate < 30:
        insights.append({"type": "warning", "message": "Consider breaking down tasks or setting more achievable goals."})
    if overdue:
        insights.append({"type": "alert", "message": f"{overdue} items are overdue."})

    by_priority = Counter(i.priority for i in items)
    by_type = Counter(i.item_type for i in items)
    return {
        "list_id": lst.id,
        "total_items": total,
        "completed_items": completed,
        "pending_items": total - completed,
        "completion_rate": completion_rate,
        "overdue_items": overdue,
        "items_by_priority": {p: by_priority.get(p, 0) for p in ITEM_PRIORITIES},
        "items_by_type": {t: by_type.get(t, 0) for t in ITEM_TYPES},
        "assignees": sorted(per_assignee.values(), key=lambda r: (-r["total"], r["name"])),
        "collaborators": {
            "total": len(lst.collaborators),
            "read": sum(1 for c in lst.collaborators if c.permission == "read"),
            "write": sum(1 for c in lst.collaborators if c.permission == "write"),
        },
        "hierarchy": {
            "total_items": lst.total_items_count(),
            "completion_percentage": lst.completion_percentage(),
            "sub_lists": len(lst.sub_lists),
        },
        "insights": insights,
    }


# ---------- items ----------
def _next_position(lst: List) -> int:
    return max((i.position for i in lst.items), default=-1) + 1


def _item_in_list(lst: List, item_id: Any) -> ListItem:
    item_id = parse_int(item_id, "item_id")
    for item in lst.items:
        if item.id == item_id:
            return item
    raise NotFoundError("ListItem", item_id)


def _resolve_assignee(s: "Session", lst: List, raw: Any) -> "User | None":
    user_id = parse_int(raw, "assigned_user_id")
    if user_id is None:
        return None
    user = s.get(User, user_id)
    if user is None or not (lst.is_owner(user) or lst.collaborator_for(user) is not None):
        raise ValidationError("Items can only be assigned to the list owner or its collaborators.")
    return user


def _resolve_column(lst: List, raw: Any) -> BoardColumn | None:
    column_id = parse_int(raw, "board_column_id")
    if column_id is None:
        return None
    for col in lst.board_columns:
        if col.id == column_id:
            return col
    raise ValidationError("Board column does not belong to this list.")


def create_item(s: "Session", lst: List, user: "User", payload: dict) -> ListItem:
    errors = validate_item_payload(payload)
    if errors:
        raise ValidationError(errors)
    now = datetime.utcnow()
    item = ListItem(
        title=_clean(payload.get("title")),
        description=_clean(payload.get("description")) or None,
        item_type=_clean(payload.get("item_type")) or "task",
        priority=_clean(payload.get("priority")) or "medium",
        due_date=parse_datetime(payload.get("due_date"), "Due date"),
        reminder_at=parse_datetime(payload.get("reminder_at"), "Reminder"),
        url=_clean(payload.get("url")) or None,
        position=_next_position(lst),
        metadata_json=payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {},
        created_at=now,
        updated_at=now,
    )
    assignee = _resolve_assignee(s, lst, payload.get("assigned_user_id"))
    item.assigned_user = assignee
    item.board_column = _resolve_column(lst, payload.get("board_column_id"))
    if parse_bool(payload.get("completed")):
        item.set_completed(True, now)
    lst.items.append(item)
    lst.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="list_item.create",
        entity_type="ListItem",
        entity_id=item.id,
        metadata={"list_id": lst.id, "title": item.title},
    )
    if assignee is not None:
        _notify_assigned(s, item, user)
    return item


def update_item(s: "Session", item: ListItem, user: "User", payload: dict) -> ListItem:
    errors = validate_item_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    changes: dict[str, dict] = {}
    for field in ("title", "item_type", "priority"):
        if field in payload:
            new = _clean(payload.get(field))
            if new and new != getattr(item, field):
                changes[field] = {"old": getattr(item, field), "new": new}
                setattr(item, field, new)
    for field in ("description", "url"):
        if field in payload:
            new = _clean(payload.get(field)) or None
            if new != getattr(item, field):
                changes[field] = {"old": getattr(item, field), "new": new}
                setattr(item, field, new)
    if "due_date" in payload:
        item.due_date = parse_datetime(payload.get("due_date"), "Due date")
    if "reminder_at" in payload:
        item.reminder_at = parse_datetime(payload.get("reminder_at"), "Reminder")
    if "board_column_id" in payload:
        item.board_column = _resolve_column(item.parent_list, payload.get("board_column_id"))
    if "completed" in payload:
        if item.set_completed(parse_bool(payload.get("completed"))):
            changes["completed"] = {"old": not item.completed, "new": item.completed}
            if item.completed:
                _notify_completed(s, item, user)
    if "assigned_user_id" in payload:
        assign_item(s, item, user, payload.get("assigned_user_id"), audit=False)

    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list_item.update",
        entity_type="ListItem",
        entity_id=item.id,
        metadata={"list_id": item.list_id, "changes": changes},
    )
    return item


def delete_item(s: "Session", item: ListItem, user: "User") -> None:
    lst = item.parent_list
    record_event(
        s,
        actor=user,
        action="list_item.delete",
        entity_type="ListItem",
        entity_id=item.id,
        metadata={"list_id": lst.id, "title": item.title},
    )
    lst.items.remove(item)
    s.delete(item)
    lst.updated_at = datetime.utcnow()


def toggle_item(s: "Session", item: ListItem, user: "User") -> ListItem:
    item.set_completed(not item.completed)
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list_item.toggle",
        entity_type="ListItem",
        entity_id=item.id,
        metadata={"list_id": item.list_id, "completed": item.completed},
    )
    if item.completed:
        _notify_completed(s, item, user)
    return item


def assign_item(s: "Session", item: ListItem, user: "User", assigned_user_id: Any, *, audit: bool = True) -> ListItem:
    """Assign (or, with an empty id, unassign) an item."""
    previous = item.assigned_user_id
    assignee = _resolve_assignee(s, item.parent_list, assigned_user_id)
    item.assigned_user = assignee
    item.assigned_user_id = assignee.id if assignee else None
    item.updated_at = datetime.utcnow()
    if audit:
        record_event(
            s,
            actor=user,
            action="list_item.assign",
            entity_type="ListItem",
            entity_id=item.id,
            metadata={"old": previous, "new": item.assigned_user_id},
        )
    if assignee is not None and assignee.id != previous:
        _notify_assigned(s, item, user)
    return item


def reorder_items(s: "Session", lst: List, user: "User", item_ids: Any) -> list[ListItem]:
    """Positions follow `item_ids` (0..n-1); items not named keep their relative order after them."""
    if not isinstance(item_ids, (list, tuple)) or not item_ids:
        raise ValidationError("item_ids must be a non-empty list.")
    ordered: list[ListItem] = []
    seen: set[int] = set()
    for raw in item_ids:
        item = _item_in_list(lst, raw)
        if item.id in seen:
            raise ValidationError("item_ids contains duplicates.")
        seen.add(item.id)
        ordered.append(item)
    rest = sorted((i for i in lst.items if i.id not in seen), key=lambda i: (i.position, i.id))
    for position, item in enumerate(ordered + rest):
        item.position = position
    lst.items.sort(key=lambda i: i.position)
    lst.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list_item.reorder",
        entity_type="List",
        entity_id=lst.id,
        metadata={"item_ids": [i.id for i in ordered]},
    )
    return list(lst.items)


def bulk_complete(s: "Session", lst: List, user: "User", item_ids: Any) -> list[ListItem]:
    if not isinstance(item_ids, (list, tuple)) or not item_ids:
        raise ValidationError("item_ids must be a non-empty list.")
    items = [_item_in_list(lst, raw) for raw in item_ids]
    now = datetime.utcnow()
    changed = [i for i in items if i.set_completed(True, now)]
    for i in changed:
        i.updated_at = now
        _notify_completed(s, i, user)
    record_event(
        s,
        actor=user,
        action="list_item.bulk_complete",
        entity_type="List",
        entity_id=lst.id,
        metadata={"item_ids": [i.id for i in changed]},
    )
    return items


def move_item_to_column(s: "Session", item: ListItem, user: "User", column_id: Any) -> ListItem:
    column = _resolve_column(item.parent_list, column_id)
    if column is None:
        raise ValidationError("board_column_id is required.")
    previous = item.board_column_id
    item.board_column = column
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="list_item.move",
        entity_type="ListItem",
        entity_id=item.id,
        metadata={"old_column_id": previous, "new_column_id": column.id},
    )
    return item


def _notify_assigned(s: "Session", item: ListItem, actor: "User") -> None:
    if item.assigned_user is None:
        return
    notify(
        s,
        recipient=item.assigned_user,
        actor=actor,
        notification_type="item_assigned",
        title=f'You were assigned "{item.title}"',
        target=item,
        params={"list_id": item.parent_list.id, "item_id": item.id},
    )


def _notify_completed(s: "Session", item: ListItem, actor: "User") -> None:
    notify_many(
        s,
        list_recipients(item.parent_list, actor),
        actor=actor,
        notification_type="item_completed",
        title=f'"{item.title}" was completed',
        target=item,
        params={"list_id": item.parent_list.id, "item_id": item.id},
    )


# ---------- time entries ----------
def log_time(s: "Session", item: ListItem, user: "User", payload: dict) -> TimeEntry:
    started_at = parse_datetime(payload.get("started_at"), "Start time")
    ended_at = parse_datetime(payload.get("ended_at"), "End time")
    errors = []
    if started_at is None:
        errors.append("Start time is required.")
    if started_at and ended_at and ended_at < started_at:
        errors.append("End time must be after the start time.")

    raw_duration = payload.get("duration")
    duration: Decimal | None = None
    if raw_duration not in (None, ""):
        try:
            duration = Decimal(str(raw_duration))
        except ArithmeticError:
            errors.append("Duration must be a number of hours.")
        else:
            if not duration.is_finite():
                errors.append("Duration must be a number of hours.")
            elif duration < 0:
                errors.append("Duration cannot be negative.")
    if errors:
        raise ValidationError(errors)

    if duration is None:
        if ended_at is not None:
            duration = Decimal((ended_at - started_at).total_seconds()) / Decimal(3600)
        else:
            duration = Decimal("0")
    duration = duration.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    entry = TimeEntry(
        user_id=user.id,
        started_at=started_at,
        ended_at=ended_at,
        duration=duration,
        notes=_clean(payload.get("notes")) or None,
        created_at=datetime.utcnow(),
    )
    item.time_entries.append(entry)
    s.flush()
    record_event(
        s,
        actor=user,
        action="time_entry.create",
        entity_type="TimeEntry",
        entity_id=entry.id,
        metadata={"list_item_id": item.id, "duration": str(duration)},
    )
    return entry


def time_entries_summary(item: ListItem) -> dict:
    entries = sorted(item.time_entries, key=lambda e: (e.started_at, e.id))
    total = sum((Decimal(e.duration or 0) for e in entries), Decimal("0"))
    return {
        "list_item_id": item.id,
        "total_hours": str(total.quantize(Decimal("0.01"))),
        "entries": [serialize_time_entry(e) for e in entries],
    }


# ---------- serialization ----------
def progress(lst: List) -> dict:
    total = len(lst.items)
    completed = sum(1 for i in lst.items if i.completed)
    return {
        "total": total,
        "completed": completed,
        "percentage": round(completed * 100 / total) if total else 0,
    }


def serialize_item(item: ListItem) -> dict:
    return {
        "id": item.id,
        "list_id": item.list_id,
        "title": item.title,
        "description": item.description,
        "item_type": item.item_type,
        "priority": item.priority,
        "completed": bool(item.completed),
        "completed_at": iso(item.completed_at),
        "due_date": iso(item.due_date),
        "reminder_at": iso(item.reminder_at),
        "overdue": item.is_overdue(),
        "position": item.position,
        "url": item.url,
        "assigned_user_id": item.assigned_user_id,
        "board_column_id": item.board_column_id,
        "metadata": item.metadata_json or {},
    }


def serialize_list(lst: List, *, include_items: bool = False) -> dict:
    out = {
        "id": lst.id,
        "title": lst.title,
        "description": lst.description,
        "status": lst.status,
        "list_type": lst.list_type,
        "is_public": bool(lst.is_public),
        "public_permission": lst.public_permission,
        "public_slug": lst.public_slug,
        "color_theme": lst.color_theme,
        "owner_id": lst.user_id,
        "organization_id": lst.organization_id,
        "team_id": lst.team_id,
        "parent_list_id": lst.parent_list_id,
        "root_list_id": lst.root_list().id,
        "sub_list_ids": [sub.id for sub in lst.sub_lists],
        "progress": progress(lst),
        "completion_percentage": lst.completion_percentage(),
        "created_at": iso(lst.created_at),
        "updated_at": iso(lst.updated_at),
    }
    if include_items:
        out["items"] = [serialize_item(i) for i in lst.items]
        out["board_columns"] = [{"id": c.id, "name": c.name, "position": c.position} for c in lst.board_columns]
    return out


def serialize_time_entry(e: TimeEntry) -> dict:
    return {
        "id": e.id,
        "user_id": e.user_id,
        "started_at": iso(e.started_at),
        "ended_at": iso(e.ended_at),
        "duration": str(e.duration),
        "notes": e.notes,
    }
