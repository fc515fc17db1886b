from __future__ import annotations

import re
import secrets
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from flask import g, request
from sqlalchemy import select

from app.listopia.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.listopia.models import User

T = TypeVar("T")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def valid_email(value: str | None) -> bool:
    return bool(value and EMAIL_RE.match(value))


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def new_token() -> str:
    return secrets.token_urlsafe(32)


def like_pattern(term: str) -> str:
    """Contains-pattern for `ilike(..., escape="\\")`; LIKE wildcards in `term` match literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def slugify(value: str | None, fallback: str = "item") -> str:
    """Lowercase alphanumerics joined by single hyphens ("My List!" -> "my-list")."""
    slug = _SLUG_STRIP_RE.sub("-", (value or "").lower()).strip("-")
    return slug or fallback


def unique_slug(s: "Session", column, base: str, *criteria) -> str:
    """
    Return `base` or the first of `base-1`, `base-2`, ... not already taken in `column`.

    Extra SQLAlchemy criteria narrow the uniqueness scope (e.g. slugs unique per organization).
    """
    candidate = base
    n = 0
    while s.execute(select(column).where(column == candidate, *criteria).limit(1)).first() is not None:
        n += 1
        candidate = f"{base}-{n}"
    return candidate


def parse_datetime(value: Any, field: str = "date") -> datetime | None:
    """Parse ISO date/datetime input. Empty -> None; garbage -> ValidationError."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1]
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{field} is not a valid date.")
    # Stored naive (UTC)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def parse_int(value: Any, field: str = "id") -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.")


def request_payload() -> dict:
    """JSON body for API clients, form fields otherwise."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def wants_json() -> bool:
    if request.path.startswith("/api/") or request.is_json:
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def current_user() -> "User":
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def get_or_404(s: "Session", model: type[T], entity_id: Any) -> T:
    obj = s.get(model, entity_id)
    if obj is None:
        raise NotFoundError(model.__name__, entity_id)
    return obj


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None
