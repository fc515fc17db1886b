from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base

if TYPE_CHECKING:
    from app.listopia.models import User


ORG_SIZES = ("small", "medium", "large", "enterprise")
ORG_STATUSES = ("active", "suspended", "deleted")
MEMBERSHIP_ROLES = ("member", "admin", "owner")
MEMBERSHIP_STATUSES = ("pending", "active", "suspended", "revoked")
TEAM_ROLES = ("member", "lead", "admin")
INVITATION_STATUSES = ("pending", "accepted", "revoked")


class Organization(Base):
    __tablename__ = "organizations"
    __table_args__ = (
        Index("idx_organizations_status", "status"),
        Index("idx_organizations_created_by", "created_by_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    size: Mapped[str] = mapped_column(String(32), nullable=False, default="small")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by_id], lazy="selectin")
    memberships: Mapped[list["OrganizationMembership"]] = relationship(
        "OrganizationMembership",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    teams: Mapped[list["Team"]] = relationship(
        "Team",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    invitations: Mapped[list["OrganizationInvitation"]] = relationship(
        "OrganizationInvitation",
        back_populates="organization",
        cascade="all, delete-orphan",
        order_by="OrganizationInvitation.id",
        lazy="selectin",
    )

    def membership_for(self, user: "User | None") -> "OrganizationMembership | None":
        if user is None:
            return None
        for m in self.memberships:
            if m.user_id == user.id:
                return m
        return None

    def user_role(self, user: "User | None") -> str | None:
        m = self.membership_for(user)
        if m is None or m.status != "active":
            return None
        return m.role

    def is_member(self, user: "User | None") -> bool:
        return self.user_role(user) is not None

    def user_is_admin(self, user: "User | None") -> bool:
        return self.user_role(user) in ("admin", "owner")

    def user_is_owner(self, user: "User | None") -> bool:
        return self.user_role(user) == "owner"


class OrganizationMembership(Base):
    __tablename__ = "organization_memberships"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_membership_org_user"),
        Index("idx_org_memberships_user", "user_id"),
        Index("idx_org_memberships_role", "role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="member")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    organization: Mapped[Organization] = relationship("Organization", back_populates="memberships", lazy="selectin")
    user: Mapped["User"] = relationship("User", back_populates="organization_memberships", lazy="selectin")

    def can_manage_organization(self) -> bool:
        return self.role in ("admin", "owner")

    def can_manage_teams(self) -> bool:
        return self.role in ("admin", "owner")

    def can_manage_members(self) -> bool:
        return self.role in ("admin", "owner")


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="uq_teams_org_slug"),
        Index("idx_teams_organization", "organization_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    organization: Mapped[Organization] = relationship("Organization", back_populates="teams", lazy="selectin")
    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by_id], lazy="selectin")
    memberships: Mapped[list["TeamMembership"]] = relationship(
        "TeamMembership",
        back_populates="team",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def membership_for(self, user: "User | None") -> "TeamMembership | None":
        if user is None:
            return None
        for m in self.memberships:
            if m.user_id == user.id:
                return m
        return None

    def user_role(self, user: "User | None") -> str | None:
        m = self.membership_for(user)
        return m.role if m else None

    def is_member(self, user: "User | None") -> bool:
        return self.membership_for(user) is not None

    def user_is_admin(self, user: "User | None") -> bool:
        return self.user_role(user) in ("admin", "lead")


class TeamMembership(Base):
    __tablename__ = "team_memberships"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_membership_team_user"),
        Index("idx_team_memberships_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_membership_id: Mapped[int] = mapped_column(
        ForeignKey("organization_memberships.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="member")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    team: Mapped[Team] = relationship("Team", back_populates="memberships", lazy="selectin")
    user: Mapped["User"] = relationship("User", lazy="selectin")
    organization_membership: Mapped[OrganizationMembership] = relationship("OrganizationMembership", lazy="selectin")

    def can_manage_team(self) -> bool:
        return self.role in ("admin", "lead")


class OrganizationInvitation(Base):
    """Pending seat in an organization for an email that has no account yet."""

    __tablename__ = "organization_invitations"
    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_org_invitations_org_email"),
        Index("idx_org_invitations_email", "email"),
        Index("idx_org_invitations_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="member")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    invitation_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    invited_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    invitation_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    invitation_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    invitation_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    organization: Mapped[Organization] = relationship("Organization", back_populates="invitations", lazy="selectin")
    invited_by: Mapped["User | None"] = relationship("User", foreign_keys=[invited_by_id], lazy="selectin")
    user: Mapped["User | None"] = relationship("User", foreign_keys=[user_id], lazy="selectin")

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.invitation_expires_at is None:
            return False
        return self.invitation_expires_at < (now or datetime.utcnow())
