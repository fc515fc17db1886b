"""
Chat conversations with the assistant.

post_message() is the main entry point: screen the input, store it, then either
run a slash command or ask the LLM for a reply. LLM failures never surface to the
user as errors; a fallback assistant message is stored instead.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.listopia.audit import record_event
from app.listopia.errors import BlockedMessageError, NotFoundError, ValidationError
from app.listopia.modules.chat.injection import detect
from app.listopia.modules.chat.llm import SYSTEM_PROMPT, LLMUnavailableError
from app.listopia.modules.chat.models import (
    CHAT_STATUSES,
    FEEDBACK_RATINGS,
    FEEDBACK_TYPES,
    FOCUS_TYPES,
    Chat,
    Message,
    MessageFeedback,
    default_chat_title,
    estimate_tokens,
)
from app.listopia.modules.chat.policy import ChatPolicy
from app.listopia.modules.lists.models import List
from app.listopia.modules.lists.policy import ListPolicy
from app.listopia.modules.organizations.models import Organization, Team
from app.listopia.modules.search.service import search
from app.listopia.utils import iso, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.listopia.models import User

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I encountered an issue processing your message. Please try again."
HELP_TEXT = "\n".join(
    [
        "Available commands:",
        "/help - Show this help message",
        "/search <query> - Search your lists, items and comments",
        "/clear - Clear the chat history",
        "/new - Start a new conversation",
    ]
)
MAX_CONTENT_LENGTH = 10000
TITLE_MAX = 255


# ---------- chats ----------
def user_chats(s: "Session", user: "User", *, status: str | None = None) -> list[Chat]:
    q = select(Chat).where(Chat.user_id == user.id)
    if status:
        q = q.where(Chat.status == status)
    q = q.order_by(func.coalesce(Chat.last_message_at, Chat.created_at).desc(), Chat.id.desc())
    return [c for c in s.execute(q).scalars() if ChatPolicy(user, c).show()]


def _resolve_focus(s: "Session", user: "User", payload: dict) -> tuple[str | None, int | None]:
    focus_type = str(payload.get("focused_resource_type") or "").strip() or None
    if focus_type is None:
        return None, None
    if focus_type not in FOCUS_TYPES:
        raise ValidationError(f"Focused resource type must be one of: {', '.join(FOCUS_TYPES)}")
    focus_id = parse_int(payload.get("focused_resource_id"), "focused_resource_id")
    if focus_id is None:
        raise ValidationError("Focused resource id is required.")

    if focus_type == "List":
        lst = s.get(List, focus_id)
        ok = lst is not None and ListPolicy(user, lst).show()
    elif focus_type == "Team":
        team = s.get(Team, focus_id)
        ok = team is not None and user.in_organization(team.organization_id)
    else:
        ok = s.get(Organization, focus_id) is not None and user.in_organization(focus_id)
    if not ok:
        raise ValidationError(f"{focus_type} {focus_id} is not available.")
    return focus_type, focus_id


def create_chat(s: "Session", user: "User", payload: dict, *, model_id: str | None = None) -> Chat:
    title = str(payload.get("title") or "").strip()
    if len(title) > TITLE_MAX:
        raise ValidationError(f"Title must be at most {TITLE_MAX} characters.")

    if "organization_id" in payload:
        org_id = parse_int(payload.get("organization_id"), "organization_id")
    else:
        org_id = user.current_organization_id
    if org_id is not None and not user.in_organization(org_id):
        raise ValidationError("You are not a member of that organization.")

    focus_type, focus_id = _resolve_focus(s, user, payload)
    now = datetime.utcnow()
    chat = Chat(
        user_id=user.id,
        organization_id=org_id,
        title=title or default_chat_title(now),
        status="active",
        model_id=model_id,
        focused_resource_type=focus_type,
        focused_resource_id=focus_id,
        metadata_json={},
        created_at=now,
        updated_at=now,
    )
    s.add(chat)
    s.flush()
    record_event(
        s,
        actor=user,
        action="chat.create",
        entity_type="Chat",
        entity_id=chat.id,
        metadata={"organization_id": org_id, "focused_resource_type": focus_type},
    )
    return chat


def _set_status(s: "Session", chat: Chat, user: "User", status: str) -> Chat:
    if status not in CHAT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(CHAT_STATUSES)}")
    if chat.status == status:
        raise ValidationError(f"Chat is already {status}.")
    old = chat.status
    chat.status = status
    chat.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="chat.status",
        entity_type="Chat",
        entity_id=chat.id,
        metadata={"old": old, "new": status},
    )
    return chat


def archive_chat(s: "Session", chat: Chat, user: "User") -> Chat:
    return _set_status(s, chat, user, "archived")


def restore_chat(s: "Session", chat: Chat, user: "User") -> Chat:
    return _set_status(s, chat, user, "active")


def delete_chat(s: "Session", chat: Chat, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="chat.delete",
        entity_type="Chat",
        entity_id=chat.id,
        metadata={"title": chat.title, "messages": len(chat.messages)},
    )
    s.delete(chat)


def recent_messages(chat: Chat, limit: int = 50) -> list[Message]:
    return list(chat.messages)[-limit:] if limit > 0 else []


def message_history(chat: Chat, *, before_id: int | None = None, limit: int = 50) -> list[Message]:
    """Up to `limit` messages older than `before_id` (all when None), oldest first."""
    messages = [m for m in chat.messages if before_id is None or m.id < before_id]
    return messages[-limit:] if limit > 0 else []


# ---------- messages ----------
def _add_message(
    chat: Chat,
    role: str,
    content: str | None,
    *,
    user: "User | None" = None,
    template_type: str | None = None,
    metadata: dict | None = None,
    blocked: bool = False,
    now: datetime | None = None,
) -> Message:
    m = Message(
        role=role,
        message_type="text",
        content=content,
        token_count=estimate_tokens(content),
        template_type=template_type,
        metadata_json=metadata or {},
        blocked=blocked,
        created_at=now or datetime.utcnow(),
    )
    m.user = user
    chat.messages.append(m)
    return m


def post_message(
    s: "Session",
    chat: Chat,
    user: "User",
    raw_content: Any,
    *,
    llm: Any = None,
    history_limit: int = 50,
    search_limit: int = 20,
) -> dict:
    """
    Store the user's message and produce the follow-up (command output or assistant reply).

    Returns {"message": <user Message>, "replies": [Message, ...], "chat": Chat, "injection": {...}}.
    Raises BlockedMessageError for high-risk input after recording it (callers commit first).
    """
    content = str(raw_content or "").strip()
    if not content:
        raise ValidationError("Message can't be blank.")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_CONTENT_LENGTH} characters.")

    screen = detect(content)
    now = datetime.utcnow()

    if screen.risk_level == "high":
        _add_message(chat, "user", content, user=user, blocked=True, metadata={"injection": screen.as_dict()}, now=now)
        record_event(
            s,
            actor=user,
            action="chat.message_blocked",
            entity_type="Chat",
            entity_id=chat.id,
            reason="prompt injection risk high",
            metadata=screen.as_dict(),
        )
        logger.warning("Blocked chat message chat_id=%s score=%s", chat.id, screen.risk_score)
        raise BlockedMessageError(
            "Your message was blocked because it looks like an attempt to override the assistant's instructions.",
            patterns=screen.patterns,
            risk_score=screen.risk_score,
        )

    if screen.detected:
        record_event(
            s,
            actor=user,
            action="chat.message_flagged",
            entity_type="Chat",
            entity_id=chat.id,
            reason=f"prompt injection risk {screen.risk_level}",
            metadata=screen.as_dict(),
        )

    user_message = _add_message(
        chat,
        "user",
        content,
        user=user,
        metadata={"injection": screen.as_dict()} if screen.detected else {},
        now=now,
    )
    chat.last_message_at = now
    chat.updated_at = now

    if content.startswith("/"):
        replies = _run_command(s, chat, user, content, search_limit=search_limit)
        if user_message not in chat.messages:
            user_message = None
    else:
        replies = [_assistant_reply(chat, llm, history_limit)]
    s.flush()
    return {"message": user_message, "replies": replies, "chat": chat, "injection": screen.as_dict()}


def _run_command(s: "Session", chat: Chat, user: "User", content: str, *, search_limit: int) -> list[Message]:
    command, _, arg = content.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command == "/help":
        return [_add_message(chat, "system", HELP_TEXT, template_type="help")]

    if command == "/search":
        if not arg:
            return [_add_message(chat, "system", "Please provide a search query. Example: /search budget")]
        hits = search(s, user, arg, limit=search_limit)
        data = {"query": arg, "results": [h.as_dict() for h in hits], "total_count": len(hits)}
        text = f'Found {len(hits)} result{"" if len(hits) == 1 else "s"} for "{arg}".'
        if hits:
            text += "\n" + "\n".join(f"- [{h.record_type}] {h.title}" for h in hits)
        return [_add_message(chat, "system", text, template_type="search_results", metadata={"template_data": data})]

    if command == "/clear":
        for m in list(chat.messages):
            chat.messages.remove(m)
        record_event(s, actor=user, action="chat.clear", entity_type="Chat", entity_id=chat.id)
        return [_add_message(chat, "system", "Chat history cleared.")]

    if command == "/new":
        new_chat = create_chat(s, user, {"organization_id": chat.organization_id}, model_id=chat.model_id)
        return [
            _add_message(
                chat, "system", "Creating new conversation...", metadata={"action": "new_chat", "new_chat_id": new_chat.id}
            )
        ]

    return [_add_message(chat, "system", f"Unknown command: {command}. Type /help for available commands.")]


def _system_prompt(chat: Chat) -> str:
    prompt = SYSTEM_PROMPT
    if chat.focused_resource_type:
        prompt += f" The user is currently focused on {chat.focused_resource_type} #{chat.focused_resource_id}."
    return prompt


def _assistant_reply(chat: Chat, llm: Any, history_limit: int) -> Message:
    history = [m for m in chat.messages if m.role in ("user", "assistant") and not m.blocked and m.content]
    conversation = [{"role": "system", "content": _system_prompt(chat)}]
    conversation += [m.to_llm_format() for m in history[-history_limit:]]

    if llm is None or not getattr(llm, "available", True):
        logger.info("LLM not configured; storing fallback reply chat_id=%s", chat.id)
        return _add_message(chat, "assistant", FALLBACK_REPLY, metadata={"fallback": True, "error": "llm_unavailable"})

    try:
        completion = llm.complete(conversation, model=chat.model_id)
    except LLMUnavailableError as e:
        logger.warning("LLM failed chat_id=%s: %s", chat.id, e)
        return _add_message(chat, "assistant", FALLBACK_REPLY, metadata={"fallback": True, "error": str(e)[:500]})
    except Exception as e:
        logger.exception("Unexpected LLM client error chat_id=%s", chat.id)
        return _add_message(chat, "assistant", FALLBACK_REPLY, metadata={"fallback": True, "error": type(e).__name__})

    reply = _add_message(chat, "assistant", completion.content or FALLBACK_REPLY)
    reply.llm_model = completion.model
    reply.input_tokens = completion.input_tokens
    reply.output_tokens = completion.output_tokens
    reply.processing_time = Decimal(str(round(completion.processing_time or 0.0, 3)))
    chat.last_message_at = reply.created_at
    return reply


# ---------- feedback ----------
def rate_message(s: "Session", chat: Chat, user: "User", message_id: Any, payload: dict) -> MessageFeedback:
    message_id = parse_int(message_id, "message_id")
    message = s.get(Message, message_id) if message_id is not None else None
    if message is None:
        raise NotFoundError("Message", message_id)
    if message.chat_id != chat.id:
        raise ValidationError("Message does not belong to this chat.")
    if message.user_id == user.id:
        raise ValidationError("You cannot rate your own messages.")

    rating = str(payload.get("rating") or "").strip()
    if rating not in FEEDBACK_RATINGS:
        raise ValidationError(f"Rating must be one of: {', '.join(FEEDBACK_RATINGS)}")
    feedback_type = str(payload.get("feedback_type") or "").strip() or None
    if feedback_type is not None and feedback_type not in FEEDBACK_TYPES:
        raise ValidationError(f"Feedback type must be one of: {', '.join(FEEDBACK_TYPES)}")
    comment = str(payload.get("comment") or "").strip() or None

    feedback = s.execute(
        select(MessageFeedback).where(MessageFeedback.message_id == message.id, MessageFeedback.user_id == user.id)
    ).scalar_one_or_none()
    if feedback is None:
        feedback = MessageFeedback(message_id=message.id, chat_id=chat.id, user_id=user.id, created_at=datetime.utcnow())
        s.add(feedback)
    feedback.rating = rating
    feedback.feedback_type = feedback_type
    feedback.comment = comment
    s.flush()
    record_event(
        s,
        actor=user,
        action="chat.feedback",
        entity_type="Message",
        entity_id=message.id,
        metadata={"rating": rating, "feedback_type": feedback_type},
    )
    return feedback


# ---------- serialization ----------
def serialize_message(m: Message) -> dict:
    return {
        "id": m.id,
        "chat_id": m.chat_id,
        "role": m.role,
        "message_type": m.message_type,
        "content": m.content,
        "blocked": bool(m.blocked),
        "template_type": m.template_type,
        "template_data": (m.metadata_json or {}).get("template_data"),
        "token_count": m.token_count,
        "processing_time_ms": m.processing_time_ms,
        "created_at": iso(m.created_at),
    }


def serialize_chat(c: Chat, *, messages: list[Message] | None = None) -> dict:
    out = {
        "id": c.id,
        "title": c.title,
        "status": c.status,
        "organization_id": c.organization_id,
        "model_id": c.model_id,
        "focused_resource_type": c.focused_resource_type,
        "focused_resource_id": c.focused_resource_id,
        "message_count": len(c.messages),
        "last_message_at": iso(c.last_message_at),
        "created_at": iso(c.created_at),
    }
    if messages is not None:
        out["messages"] = [serialize_message(m) for m in messages]
    return out


def serialize_feedback(f: MessageFeedback) -> dict:
    return {
        "id": f.id,
        "message_id": f.message_id,
        "rating": f.rating,
        "feedback_type": f.feedback_type,
        "comment": f.comment,
        "created_at": iso(f.created_at),
    }
