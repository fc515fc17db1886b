from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base

if TYPE_CHECKING:
    from app.listopia.models import User
    from app.listopia.modules.lists.models import List, ListItem
    from app.listopia.modules.organizations.models import Organization


PERMISSIONS = ("read", "write")
INVITATION_STATUSES = ("pending", "accepted", "declined", "revoked", "expired")
TARGET_TYPES = ("List", "ListItem")

# Optional roles a collaborator can carry on top of read/write.
GRANTABLE_ROLES = ("can_invite_collaborators",)


class _TargetMixin:
    """
    Shared accessors for records attached to either a List or a ListItem.

    The pair (<x>_type, <x>_id) mirrors whichever of list_id / list_item_id is set.
    """

    @property
    def target(self) -> "List | ListItem | None":
        if self.list_item_id is not None:  # type: ignore[attr-defined]
            return self.target_item  # type: ignore[attr-defined]
        return self.target_list  # type: ignore[attr-defined]

    @property
    def owning_list(self) -> "List | None":
        """The list whose owner governs this record (the item's list for item targets)."""
        if self.list_item_id is not None:  # type: ignore[attr-defined]
            item = self.target_item  # type: ignore[attr-defined]
            return item.parent_list if item is not None else None
        return self.target_list  # type: ignore[attr-defined]


class Collaborator(_TargetMixin, Base):
    __tablename__ = "collaborators"
    __table_args__ = (
        UniqueConstraint("collaboratable_type", "collaboratable_id", "user_id", name="uq_collaborators_target_user"),
        Index("idx_collaborators_user", "user_id"),
        Index("idx_collaborators_target", "collaboratable_type", "collaboratable_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    collaboratable_type: Mapped[str] = mapped_column(String(32), nullable=False)  # "List" | "ListItem"
    collaboratable_id: Mapped[int] = mapped_column(Integer, nullable=False)
    list_id: Mapped[int | None] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=True)
    list_item_id: Mapped[int | None] = mapped_column(ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    permission: Mapped[str] = mapped_column(String(16), nullable=False, default="read")
    granted_roles: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    target_list: Mapped["List | None"] = relationship(
        "List", back_populates="collaborators", foreign_keys=[list_id], lazy="selectin"
    )
    target_item: Mapped["ListItem | None"] = relationship(
        "ListItem", back_populates="collaborators", foreign_keys=[list_item_id], lazy="selectin"
    )

    def has_role(self, role: str) -> bool:
        return role in (self.granted_roles or [])

    def can_invite(self) -> bool:
        return self.permission == "write" and self.has_role("can_invite_collaborators")


class Invitation(_TargetMixin, Base):
    __tablename__ = "invitations"
    __table_args__ = (
        UniqueConstraint("invitable_type", "invitable_id", "email", name="uq_invitations_target_email"),
        Index("idx_invitations_email", "email"),
        Index("idx_invitations_status", "status"),
        Index("idx_invitations_target", "invitable_type", "invitable_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    invitable_type: Mapped[str] = mapped_column(String(32), nullable=False)
    invitable_id: Mapped[int] = mapped_column(Integer, nullable=False)
    list_id: Mapped[int | None] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=True)
    list_item_id: Mapped[int | None] = mapped_column(ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    invited_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    organization_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)

    permission: Mapped[str] = mapped_column(String(16), nullable=False, default="read")
    granted_roles: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    invitation_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    invitation_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    invitation_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    invitation_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User | None"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    invited_by: Mapped["User | None"] = relationship("User", foreign_keys=[invited_by_id], lazy="selectin")
    organization: Mapped["Organization | None"] = relationship("Organization", lazy="selectin")
    target_list: Mapped["List | None"] = relationship(
        "List", back_populates="invitations", foreign_keys=[list_id], lazy="selectin"
    )
    target_item: Mapped["ListItem | None"] = relationship(
        "ListItem", back_populates="invitations", foreign_keys=[list_item_id], lazy="selectin"
    )

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def is_accepted(self) -> bool:
        return self.status == "accepted"

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.status == "expired":
            return True
        if self.invitation_expires_at is None:
            return False
        return self.invitation_expires_at < (now or datetime.utcnow())

    @property
    def display_email(self) -> str | None:
        return self.user.email if self.user else self.email
