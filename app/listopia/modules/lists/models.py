from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base

if TYPE_CHECKING:
    from app.listopia.models import User
    from app.listopia.modules.collaboration.models import Collaborator, Invitation
    from app.listopia.modules.comments.models import Comment
    from app.listopia.modules.organizations.models import Organization, Team


LIST_STATUSES = ("draft", "active", "completed", "archived")
LIST_TYPES = ("personal", "professional")
PUBLIC_PERMISSIONS = ("public_read", "public_write")

ITEM_TYPES = ("task", "note", "link", "file", "reminder")
ITEM_PRIORITIES = ("low", "medium", "high", "urgent")

DEFAULT_BOARD_COLUMNS = ("To Do", "In Progress", "Done")


class List(Base):
    __tablename__ = "lists"
    __table_args__ = (
        Index("idx_lists_user_status", "user_id", "status"),
        Index("idx_lists_is_public", "is_public"),
        Index("idx_lists_organization", "organization_id"),
        Index("idx_lists_parent", "parent_list_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    parent_list_id: Mapped[int | None] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    list_type: Mapped[str] = mapped_column(String(32), nullable=False, default="personal")

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    public_permission: Mapped[str] = mapped_column(String(32), nullable=False, default="public_read")
    public_slug: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    color_theme: Mapped[str] = mapped_column(String(32), nullable=False, default="blue")
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    organization: Mapped["Organization | None"] = relationship("Organization", lazy="selectin")
    team: Mapped["Team | None"] = relationship("Team", lazy="selectin")

    parent_list: Mapped["List | None"] = relationship(
        "List",
        remote_side="List.id",
        back_populates="sub_lists",
        lazy="selectin",
    )
    sub_lists: Mapped[list["List"]] = relationship(
        "List",
        back_populates="parent_list",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    items: Mapped[list["ListItem"]] = relationship(
        "ListItem",
        back_populates="parent_list",
        cascade="all, delete-orphan",
        order_by="ListItem.position",
        lazy="selectin",
    )
    board_columns: Mapped[list["BoardColumn"]] = relationship(
        "BoardColumn",
        back_populates="parent_list",
        cascade="all, delete-orphan",
        order_by="BoardColumn.position",
        lazy="selectin",
    )
    collaborators: Mapped[list["Collaborator"]] = relationship(
        "Collaborator",
        back_populates="target_list",
        cascade="all, delete-orphan",
        foreign_keys="Collaborator.list_id",
        lazy="selectin",
    )
    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="target_list",
        cascade="all, delete-orphan",
        foreign_keys="Invitation.list_id",
        lazy="selectin",
    )
    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="target_list",
        cascade="all, delete-orphan",
        foreign_keys="Comment.list_id",
        lazy="selectin",
    )

    # ---- access checks ----
    def collaborator_for(self, user: "User | None") -> "Collaborator | None":
        if user is None:
            return None
        for c in self.collaborators:
            if c.user_id == user.id:
                return c
        return None

    def is_owner(self, user: "User | None") -> bool:
        return user is not None and self.user_id == user.id

    def readable_by(self, user: "User | None") -> bool:
        if self.is_public:
            return True
        if user is None:
            return False
        return self.is_owner(user) or self.collaborator_for(user) is not None

    def writable_by(self, user: "User | None") -> bool:
        if user is None:
            return False
        if self.is_owner(user):
            return True
        if self.is_public and self.public_permission == "public_write":
            return True
        c = self.collaborator_for(user)
        return c is not None and c.permission == "write"

    def collaboratable_by(self, user: "User | None") -> bool:
        if user is None:
            return False
        if self.is_owner(user):
            return True
        if self.is_public and self.public_permission == "public_write":
            return True
        return self.collaborator_for(user) is not None

    # ---- hierarchy ----
    def root_list(self) -> "List":
        node = self
        seen: set[int] = set()
        while node.parent_list is not None and node.id not in seen:
            seen.add(node.id)
            node = node.parent_list
        return node

    def total_items_count(self) -> int:
        return len(self.items) + sum(sub.total_items_count() for sub in self.sub_lists)

    def completed_items_count(self) -> int:
        return sum(1 for i in self.items if i.completed) + sum(sub.completed_items_count() for sub in self.sub_lists)

    def completion_percentage(self) -> int:
        total = self.total_items_count()
        if total == 0:
            return 0
        return round(self.completed_items_count() * 100 / total)


class ListItem(Base):
    __tablename__ = "list_items"
    __table_args__ = (
        Index("idx_list_items_list_position", "list_id", "position"),
        Index("idx_list_items_list_completed", "list_id", "completed"),
        Index("idx_list_items_assigned_user", "assigned_user_id"),
        Index("idx_list_items_due_date", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    list_id: Mapped[int] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=False)
    assigned_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    board_column_id: Mapped[int | None] = mapped_column(ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_type: Mapped[str] = mapped_column(String(32), nullable=False, default="task")
    priority: Mapped[str] = mapped_column(String(32), nullable=False, default="medium")

    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reminder_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    parent_list: Mapped[List] = relationship("List", back_populates="items", lazy="selectin")
    assigned_user: Mapped["User | None"] = relationship("User", foreign_keys=[assigned_user_id], lazy="selectin")
    board_column: Mapped["BoardColumn | None"] = relationship("BoardColumn", lazy="selectin")
    collaborators: Mapped[list["Collaborator"]] = relationship(
        "Collaborator",
        back_populates="target_item",
        cascade="all, delete-orphan",
        foreign_keys="Collaborator.list_item_id",
        lazy="selectin",
    )
    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="target_item",
        cascade="all, delete-orphan",
        foreign_keys="Invitation.list_item_id",
        lazy="selectin",
    )
    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="target_item",
        cascade="all, delete-orphan",
        foreign_keys="Comment.list_item_id",
        lazy="selectin",
    )
    time_entries: Mapped[list["TimeEntry"]] = relationship(
        "TimeEntry",
        back_populates="list_item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Items have no owner of their own; ownership is the list's.
    @property
    def owner(self) -> "User":
        return self.parent_list.owner

    @property
    def user_id(self) -> int:
        return self.parent_list.user_id

    def collaborator_for(self, user: "User | None") -> "Collaborator | None":
        if user is None:
            return None
        for c in self.collaborators:
            if c.user_id == user.id:
                return c
        return None

    def is_overdue(self, now: datetime | None = None) -> bool:
        if self.due_date is None or self.completed:
            return False
        return self.due_date < (now or datetime.utcnow())

    def set_completed(self, value: bool, now: datetime | None = None) -> bool:
        """Flip completion; returns True when the value actually changed."""
        if bool(value) == bool(self.completed):
            return False
        self.completed = bool(value)
        self.completed_at = (now or datetime.utcnow()) if self.completed else None
        return True


class BoardColumn(Base):
    __tablename__ = "board_columns"
    __table_args__ = (Index("idx_board_columns_list_position", "list_id", "position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    list_id: Mapped[int] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    parent_list: Mapped[List] = relationship("List", back_populates="board_columns", lazy="selectin")


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (Index("idx_time_entries_item", "list_item_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    list_item_id: Mapped[int] = mapped_column(ForeignKey("list_items.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    duration: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))  # hours
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    list_item: Mapped[ListItem] = relationship("ListItem", back_populates="time_entries", lazy="selectin")
    user: Mapped["User"] = relationship("User", lazy="selectin")
