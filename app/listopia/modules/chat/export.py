from __future__ import annotations

from typing import TYPE_CHECKING

from app.listopia.utils import iso

if TYPE_CHECKING:
    from app.listopia.models import User
    from app.listopia.modules.chat.models import Chat, Message

RULE = "=" * 80
TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def _sender(message: "Message", user: "User") -> str:
    if message.role == "user":
        return f"USER ({user.display_name})"
    if message.role == "assistant":
        return "AI ASSISTANT"
    if message.role == "system":
        return "SYSTEM"
    if message.role == "tool":
        return "TOOL RESPONSE"
    return f"UNKNOWN ({message.role})"


def _format_message(message: "Message", n: int, user: "User") -> str:
    lines = [f"{n}. [{message.created_at.strftime(TS_FORMAT)}] {_sender(message, user)}", "-" * 40]
    content = (message.content or "").strip()
    if content:
        lines.extend(["Content:", content])
    else:
        lines.append("Content: (empty)")
    if message.blocked:
        lines.append("(blocked by the input filter)")
    return "\n".join(lines)


def export_text(chat: "Chat", user: "User") -> str:
    """Plain-text transcript of a chat, oldest message first."""
    messages = sorted(chat.messages, key=lambda m: (m.created_at, m.id))
    out = [
        RULE,
        "LISTOPIA CHAT EXPORT",
        RULE,
        "",
        f"Chat ID: {chat.id}",
        f"Title: {chat.title}",
        f"User: {user.name or user.email} ({user.email})",
        f"Created: {chat.created_at.strftime(TS_FORMAT)} UTC",
        f"Last Message: {chat.last_message_at.strftime(TS_FORMAT) + ' UTC' if chat.last_message_at else 'N/A'}",
        f"Total Messages: {len(messages)}",
        "",
        RULE,
        "CONVERSATION HISTORY",
        RULE,
        "",
    ]
    if not messages:
        out.append("(No messages in this chat)")
        out.append("")
    for n, m in enumerate(messages, start=1):
        out.append(_format_message(m, n, user))
        out.append("")
    out.extend([RULE, "END OF CHAT EXPORT", RULE])
    return "\n".join(out)


def export_json(chat: "Chat", user: "User") -> dict:
    messages = sorted(chat.messages, key=lambda m: (m.created_at, m.id))
    return {
        "chat": {
            "id": chat.id,
            "title": chat.title,
            "status": chat.status,
            "created_at": iso(chat.created_at),
            "last_message_at": iso(chat.last_message_at),
            "total_messages": len(messages),
            "total_tokens": chat.total_tokens(),
        },
        "user": {"id": user.id, "name": user.display_name, "email": user.email},
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "message_type": m.message_type,
                "content": m.content,
                "blocked": bool(m.blocked),
                "template_type": m.template_type,
                "created_at": iso(m.created_at),
            }
            for m in messages
        ],
    }
