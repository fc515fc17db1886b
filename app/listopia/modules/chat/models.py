from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.listopia.models import Base

if TYPE_CHECKING:
    from app.listopia.models import User
    from app.listopia.modules.organizations.models import Organization


CHAT_STATUSES = ("active", "archived", "completed")
FOCUS_TYPES = ("List", "Team", "Organization")
MESSAGE_ROLES = ("user", "assistant", "system", "tool")
MESSAGE_TYPES = ("text", "tool_call", "tool_result")
FEEDBACK_RATINGS = ("helpful", "neutral", "unhelpful", "harmful")
FEEDBACK_TYPES = ("accuracy", "relevance", "clarity", "completeness")


def default_chat_title(now: datetime | None = None) -> str:
    return f"Chat {(now or datetime.utcnow()).strftime('%m/%d %H:%M')}"


def estimate_tokens(content: str | None) -> int:
    """Rough estimate: about four characters per token."""
    if not content:
        return 0
    return math.ceil(len(content) / 4)


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (
        Index("idx_chats_user_status", "user_id", "status"),
        Index("idx_chats_last_message_at", "last_message_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False, default=lambda: default_chat_title())
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    model_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    focused_resource_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    focused_resource_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    organization: Mapped["Organization | None"] = relationship("Organization", lazy="selectin")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.id",
        lazy="selectin",
    )

    def total_tokens(self) -> int:
        return sum((m.input_tokens or 0) + (m.output_tokens or 0) for m in self.messages)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_chat_created", "chat_id", "created_at"),
        Index("idx_messages_chat_role", "chat_id", "role"),
        Index("idx_messages_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    chat_id: Mapped[int] = mapped_column(ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    # Assistant and system messages have no author.
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    role: Mapped[str] = mapped_column(String(16), nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)

    token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_time: Mapped[Decimal | None] = mapped_column(Numeric(8, 3), nullable=True)  # seconds
    llm_model: Mapped[str | None] = mapped_column(String(128), nullable=True)

    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    template_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    chat: Mapped[Chat] = relationship("Chat", back_populates="messages", lazy="selectin")
    user: Mapped["User | None"] = relationship("User", lazy="selectin")

    @property
    def processing_time_ms(self) -> int | None:
        if self.processing_time is None:
            return None
        return int(self.processing_time * 1000)

    def to_llm_format(self) -> dict:
        return {"role": self.role, "content": self.content or ""}


class MessageFeedback(Base):
    __tablename__ = "message_feedbacks"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_feedbacks_message_user"),
        Index("idx_message_feedbacks_chat", "chat_id"),
        Index("idx_message_feedbacks_rating", "rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    chat_id: Mapped[int] = mapped_column(ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    rating: Mapped[str] = mapped_column(String(16), nullable=False)
    feedback_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    message: Mapped[Message] = relationship("Message", lazy="selectin")
    user: Mapped["User"] = relationship("User", lazy="selectin")
