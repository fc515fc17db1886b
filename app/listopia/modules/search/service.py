"""
Keyword search across lists, list items and comments.

Results are ranked by relevance (title hit 2, body hit 1), then newest first,
then by record type, and only include records on lists the user may read.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from app.listopia.modules.comments.models import Comment
from app.listopia.modules.lists.models import List, ListItem
from app.listopia.utils import like_pattern

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.listopia.models import User

TITLE_WEIGHT = 2
BODY_WEIGHT = 1
SNIPPET_LENGTH = 160


@dataclass
class SearchHit:
    record_type: str
    record_id: int
    list_id: int
    title: str
    snippet: str
    relevance: int
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "type": self.record_type,
            "id": self.record_id,
            "list_id": self.list_id,
            "title": self.title,
            "snippet": self.snippet,
            "relevance": self.relevance,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def list_visible_to(lst: List, user: "User | None") -> bool:
    if lst.is_public:
        return True
    if not lst.readable_by(user):
        return False
    if lst.organization_id is None:
        return True
    return user is not None and user.in_organization(lst.organization_id)


def _relevance(query: str, title: str | None, body: str | None) -> int:
    q = query.lower()
    score = 0
    if title and q in title.lower():
        score += TITLE_WEIGHT
    if body and q in body.lower():
        score += BODY_WEIGHT
    return score


def _snippet(text: str | None) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= SNIPPET_LENGTH else text[: SNIPPET_LENGTH - 3] + "..."


def search(s: "Session", user: "User | None", query: str | None, *, limit: int = 20) -> list[SearchHit]:
    query = (query or "").strip()
    if not query:
        return []
    like = like_pattern(query)
    hits: list[SearchHit] = []

    list_q = select(List).where(or_(List.title.ilike(like, escape="\\"), List.description.ilike(like, escape="\\")))
    for lst in s.execute(list_q).scalars():
        if list_visible_to(lst, user):
            hits.append(
                SearchHit("List", lst.id, lst.id, lst.title, _snippet(lst.description),
                          _relevance(query, lst.title, lst.description), lst.created_at)
            )

    item_q = select(ListItem).where(
        or_(ListItem.title.ilike(like, escape="\\"), ListItem.description.ilike(like, escape="\\"))
    )
    for item in s.execute(item_q).scalars():
        if list_visible_to(item.parent_list, user):
            hits.append(
                SearchHit("ListItem", item.id, item.list_id, item.title, _snippet(item.description),
                          _relevance(query, item.title, item.description), item.created_at)
            )

    for c in s.execute(select(Comment).where(Comment.content.ilike(like, escape="\\"))).scalars():
        lst = c.owning_list
        if lst is not None and list_visible_to(lst, user):
            hits.append(
                SearchHit("Comment", c.id, lst.id, f"Comment on {c.target.title}", _snippet(c.content),
                          _relevance(query, None, c.content), c.created_at)
            )

    hits = [h for h in hits if h.relevance > 0]
    hits.sort(key=lambda h: (-h.relevance, -h.created_at.timestamp(), h.record_type, h.record_id))
    return hits[:limit]
