from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.listopia.audit import record_event
from app.listopia.errors import ValidationError
from app.listopia.models import User
from app.listopia.modules.comments.models import MAX_CONTENT_LENGTH, Comment
from app.listopia.modules.lists.models import List, ListItem
from app.listopia.modules.notifications.service import notify
from app.listopia.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

# "@ann@example.com" mentions the user with that email.
MENTION_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})")


def validate_content(raw: Any) -> str:
    content = str(raw or "").strip()
    if not content:
        raise ValidationError("Content can't be blank.")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be at most {MAX_CONTENT_LENGTH} characters.")
    return content


def mentioned_emails(content: str) -> list[str]:
    seen: list[str] = []
    for m in MENTION_RE.finditer(content or ""):
        email = m.group(1).lower()
        if email not in seen:
            seen.append(email)
    return seen


def target_comments(target: List | ListItem) -> list[Comment]:
    return sorted(target.comments, key=lambda c: (c.created_at, c.id))


def create_comment(s: "Session", target: List | ListItem, user: User, payload: dict) -> Comment:
    content = validate_content(payload.get("content"))
    now = datetime.utcnow()
    if isinstance(target, List):
        comment = Comment(commentable_type="List", commentable_id=target.id, target_list=target)
    else:
        comment = Comment(commentable_type="ListItem", commentable_id=target.id, target_item=target)
    comment.user = user
    comment.content = content
    comment.created_at = now
    comment.updated_at = now
    s.add(comment)
    s.flush()

    record_event(
        s,
        actor=user,
        action="comment.create",
        entity_type="Comment",
        entity_id=comment.id,
        metadata={"target_type": comment.commentable_type, "target_id": comment.commentable_id},
    )
    _notify(s, comment, user)
    return comment


def _notify(s: "Session", comment: Comment, actor: User) -> None:
    target = comment.target
    lst = comment.owning_list
    params = {"list_id": lst.id, "comment_id": comment.id}

    mentioned: list[User] = []
    emails = mentioned_emails(comment.content)
    if emails:
        q = select(User).where(func.lower(User.email).in_(emails), User.is_active.is_(True))
        mentioned = [u for u in s.execute(q).scalars() if lst.readable_by(u)]
    for u in mentioned:
        notify(
            s,
            recipient=u,
            actor=actor,
            notification_type="mention",
            title=f'{actor.display_name} mentioned you on "{target.title}"',
            body=comment.content[:500],
            target=target,
            params=params,
        )

    owner = lst.owner
    if owner is not None and owner.id not in {u.id for u in mentioned}:
        notify(
            s,
            recipient=owner,
            actor=actor,
            notification_type="comment_created",
            title=f'{actor.display_name} commented on "{target.title}"',
            body=comment.content[:500],
            target=target,
            params=params,
        )


def update_comment(s: "Session", comment: Comment, user: User, payload: dict) -> Comment:
    content = validate_content(payload.get("content"))
    comment.content = content
    comment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="comment.update",
        entity_type="Comment",
        entity_id=comment.id,
        metadata={"target_type": comment.commentable_type, "target_id": comment.commentable_id},
    )
    return comment


def delete_comment(s: "Session", comment: Comment, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="comment.delete",
        entity_type="Comment",
        entity_id=comment.id,
        metadata={"target_type": comment.commentable_type, "target_id": comment.commentable_id},
    )
    target = comment.target
    if target is not None and comment in target.comments:
        target.comments.remove(comment)
    s.delete(comment)


def serialize_comment(c: Comment) -> dict:
    return {
        "id": c.id,
        "target_type": c.commentable_type,
        "target_id": c.commentable_id,
        "user_id": c.user_id,
        "author": c.user.display_name if c.user else None,
        "content": c.content,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
