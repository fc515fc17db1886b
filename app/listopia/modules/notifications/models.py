from __future__ import annotations

from datetime import datetime, time, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base

if TYPE_CHECKING:
    from app.listopia.models import User


NOTIFICATION_FREQUENCIES = ("immediate", "daily_digest", "weekly_digest", "disabled")

# Notification type -> settings category
NOTIFICATION_CATEGORIES = {
    "collaborator_added": "collaboration",
    "invitation_accepted": "collaboration",
    "mention": "collaboration",
    "comment_created": "item_activity",
    "item_assigned": "item_activity",
    "item_completed": "item_activity",
    "list_title_changed": "list_activity",
    "list_status_changed": "status_change",
}


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_recipient_read", "recipient_id", "read_at"),
        Index("idx_notifications_type", "notification_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Loose reference; the target may be deleted while the notification lives on.
    target_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    params_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    recipient: Mapped["User"] = relationship("User", foreign_keys=[recipient_id], lazy="selectin")
    actor: Mapped["User | None"] = relationship("User", foreign_keys=[actor_id], lazy="selectin")


class NotificationSetting(Base):
    __tablename__ = "notification_settings"
    __table_args__ = (Index("idx_notification_settings_frequency", "notification_frequency"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    collaboration_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    list_activity_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    item_activity_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status_change_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    notification_frequency: Mapped[str] = mapped_column(String(32), nullable=False, default="immediate")
    quiet_hours_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")

    def notifications_enabled_for(self, category: str) -> bool:
        if category == "collaboration":
            return bool(self.collaboration_notifications)
        if category in ("list_activity", "list_update"):
            return bool(self.list_activity_notifications)
        if category == "item_activity":
            return bool(self.item_activity_notifications)
        if category == "status_change":
            return bool(self.status_change_notifications)
        return True

    def local_time(self, now: datetime | None = None) -> time:
        """Wall-clock time in the user's timezone (naive UTC input assumed)."""
        now = now or datetime.utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        try:
            tz = ZoneInfo(self.timezone or "UTC")
        except (ZoneInfoNotFoundError, ValueError, OSError):
            tz = ZoneInfo("UTC")
        return now.astimezone(tz).time().replace(second=0, microsecond=0)

    def in_quiet_hours(self, now: datetime | None = None) -> bool:
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start is None or end is None:
            return False
        current = self.local_time(now)
        if start < end:
            return start <= current <= end
        # window wraps midnight, e.g. 22:00 -> 08:00
        return current >= start or current <= end

    def enabled_channels(self) -> list[str]:
        channels = []
        if self.email_notifications:
            channels.append("email")
        if self.sms_notifications:
            channels.append("sms")
        if self.push_notifications:
            channels.append("push")
        return channels

    def immediate_notifications(self, now: datetime | None = None) -> bool:
        return self.notification_frequency == "immediate" and not self.in_quiet_hours(now)

    def notifications_disabled(self) -> bool:
        return self.notification_frequency == "disabled"
