"""
Authorization policies.

One policy class per model; each public method is a yes/no answer for one action
("show", "update", ...). Routes call authorize() before touching a record.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm.attributes import set_committed_value

from app.listopia.errors import NotAuthorizedError

if TYPE_CHECKING:
    from app.listopia.models import User

logger = logging.getLogger(__name__)


class ApplicationPolicy:
    def __init__(self, user: "User | None", record: Any):
        self.user = user
        self.record = record

    def allows(self, action: str) -> bool:
        check = getattr(self, action, None)
        if action.startswith("_") or not callable(check) or action == "allows":
            raise ValueError(f"{type(self).__name__} has no action {action!r}")
        return bool(check())

    # Defaults deny; subclasses open up what they support.
    def index(self) -> bool:
        return False

    def show(self) -> bool:
        return False

    def create(self) -> bool:
        return False

    def update(self) -> bool:
        return False

    def edit(self) -> bool:
        return self.update()

    def destroy(self) -> bool:
        return False

    def _same_user(self, other: "User | None") -> bool:
        return self.user is not None and other is not None and self.user.id == other.id


def authorize(user: "User | None", record: Any, action: str, policy_cls: type[ApplicationPolicy]) -> None:
    """Raise NotAuthorizedError unless `policy_cls(user, record).<action>()` holds."""
    if not policy_cls(user, record).allows(action):
        logger.info(
            "Policy denied: %s.%s user_id=%s",
            policy_cls.__name__,
            action,
            getattr(user, "id", None),
        )
        raise NotAuthorizedError(policy_cls.__name__, action)


def new_record(model: type, **attrs: Any) -> Any:
    """
    Unsaved instance to run `create` checks against.

    Attributes (relationships included) are set without firing backrefs, so the
    instance never lands in a parent's collection or the session.
    """
    obj = model()
    for key, value in attrs.items():
        set_committed_value(obj, key, value)
    return obj
