from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request

from app.listopia.db import db_session
from app.listopia.errors import BlockedMessageError, ValidationError
from app.listopia.modules.chat.export import export_json, export_text
from app.listopia.modules.chat.models import Chat
from app.listopia.modules.chat.policy import ChatPolicy
from app.listopia.modules.chat.service import (
    archive_chat,
    create_chat,
    delete_chat,
    message_history,
    post_message,
    rate_message,
    recent_messages,
    restore_chat,
    serialize_chat,
    serialize_feedback,
    serialize_message,
    user_chats,
)
from app.listopia.policy import authorize, new_record
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, get_or_404, parse_int, request_payload, slugify

bp = Blueprint("chat", __name__)


def _chat(s, chat_id: int, action: str = "show") -> Chat:
    chat = get_or_404(s, Chat, chat_id)
    authorize(current_user(), chat, action, ChatPolicy)
    return chat


def _limit(name: str, default: int) -> int:
    return int(current_app.config.get(name) or default)


@bp.get("/chats")
@require_login
def chats_index():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    return jsonify({"chats": [serialize_chat(c) for c in user_chats(s, current_user(), status=status)]})


@bp.post("/chats")
@require_login
def chats_create():
    s = db_session()
    u = current_user()
    authorize(u, new_record(Chat, user_id=u.id, organization_id=u.current_organization_id), "create", ChatPolicy)
    chat = create_chat(s, u, request_payload(), model_id=current_app.config.get("LLM_MODEL"))
    s.commit()
    return jsonify({"chat": serialize_chat(chat, messages=[])}), 201


@bp.get("/chats/<int:chat_id>")
@require_login
def chats_show(chat_id: int):
    s = db_session()
    chat = _chat(s, chat_id)
    messages = recent_messages(chat, _limit("CHAT_HISTORY_LIMIT", 50))
    return jsonify({"chat": serialize_chat(chat, messages=messages)})


@bp.delete("/chats/<int:chat_id>")
@require_login
def chats_delete(chat_id: int):
    s = db_session()
    chat = _chat(s, chat_id, "destroy")
    delete_chat(s, chat, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/chats/<int:chat_id>/archive")
@require_login
def chats_archive(chat_id: int):
    s = db_session()
    chat = archive_chat(s, _chat(s, chat_id, "archive"), current_user())
    s.commit()
    return jsonify({"chat": serialize_chat(chat)})


@bp.post("/chats/<int:chat_id>/restore")
@require_login
def chats_restore(chat_id: int):
    s = db_session()
    chat = restore_chat(s, _chat(s, chat_id, "restore"), current_user())
    s.commit()
    return jsonify({"chat": serialize_chat(chat)})


@bp.post("/chats/<int:chat_id>/messages")
@require_login
def messages_create(chat_id: int):
    s = db_session()
    chat = _chat(s, chat_id, "create_message")
    try:
        result = post_message(
            s,
            chat,
            current_user(),
            request_payload().get("content"),
            llm=current_app.extensions.get("llm_client"),
            history_limit=_limit("CHAT_HISTORY_LIMIT", 50),
            search_limit=_limit("SEARCH_RESULT_LIMIT", 20),
        )
    except BlockedMessageError:
        # The blocked message and its audit event are kept.
        s.commit()
        raise
    s.commit()
    message = result["message"]
    return (
        jsonify(
            {
                "message": serialize_message(message) if message is not None else None,
                "replies": [serialize_message(m) for m in result["replies"]],
                "chat": serialize_chat(chat),
                "injection": result["injection"],
            }
        ),
        201,
    )


@bp.get("/chats/<int:chat_id>/history")
@require_login
def messages_history(chat_id: int):
    s = db_session()
    chat = _chat(s, chat_id)
    before_id = parse_int(request.args.get("before_id"), "before_id")
    limit = parse_int(request.args.get("limit"), "limit") or _limit("CHAT_HISTORY_LIMIT", 50)
    messages = message_history(chat, before_id=before_id, limit=max(1, min(limit, 200)))
    return jsonify(
        {
            "messages": [serialize_message(m) for m in messages],
            "has_more": bool(messages) and any(m.id < messages[0].id for m in chat.messages),
        }
    )


@bp.get("/chats/<int:chat_id>/export")
@require_login
def chats_export(chat_id: int):
    s = db_session()
    u = current_user()
    chat = _chat(s, chat_id)
    fmt = (request.args.get("format") or "text").strip().lower()
    if fmt == "json":
        return jsonify(export_json(chat, u))
    if fmt not in ("text", "txt"):
        raise ValidationError("Format must be one of: text, json")
    filename = f"chat-{slugify(chat.title, 'export')}-{chat.id}.txt"
    return Response(
        export_text(chat, u),
        mimetype="text/plain",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.post("/chats/<int:chat_id>/messages/<int:message_id>/feedback")
@require_login
def messages_feedback(chat_id: int, message_id: int):
    s = db_session()
    chat = _chat(s, chat_id)
    feedback = rate_message(s, chat, current_user(), message_id, request_payload())
    s.commit()
    return jsonify({"feedback": serialize_feedback(feedback)}), 201
