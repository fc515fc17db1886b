from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base
from app.listopia.modules.collaboration.models import _TargetMixin

if TYPE_CHECKING:
    from app.listopia.models import User
    from app.listopia.modules.lists.models import List, ListItem


MAX_CONTENT_LENGTH = 5000


class Comment(_TargetMixin, Base):
    __tablename__ = "comments"
    __table_args__ = (
        Index("idx_comments_target", "commentable_type", "commentable_id"),
        Index("idx_comments_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    commentable_type: Mapped[str] = mapped_column(String(32), nullable=False)
    commentable_id: Mapped[int] = mapped_column(Integer, nullable=False)
    list_id: Mapped[int | None] = mapped_column(ForeignKey("lists.id", ondelete="CASCADE"), nullable=True)
    list_item_id: Mapped[int | None] = mapped_column(ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    target_list: Mapped["List | None"] = relationship(
        "List", back_populates="comments", foreign_keys=[list_id], lazy="selectin"
    )
    target_item: Mapped["ListItem | None"] = relationship(
        "ListItem", back_populates="comments", foreign_keys=[list_item_id], lazy="selectin"
    )
