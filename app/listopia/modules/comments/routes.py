from __future__ import annotations

from flask import Blueprint, jsonify

from app.listopia.db import db_session
from app.listopia.modules.collaboration.service import resolve_target
from app.listopia.modules.comments.models import Comment
from app.listopia.modules.comments.policy import CommentPolicy
from app.listopia.modules.comments.service import create_comment, delete_comment, serialize_comment, target_comments, update_comment
from app.listopia.modules.lists.models import List
from app.listopia.modules.lists.policy import ListItemPolicy, ListPolicy
from app.listopia.policy import authorize, new_record
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, get_or_404, request_payload

bp = Blueprint("comments", __name__)

_KINDS = {"lists": "List", "items": "ListItem"}


def _target(s, kind: str, target_id: int):
    target = resolve_target(s, _KINDS[kind], target_id)
    policy = ListPolicy if isinstance(target, List) else ListItemPolicy
    authorize(current_user(), target, "show", policy)
    return target


@bp.get("/<any(lists, items):kind>/<int:target_id>/comments")
@require_login
def comments_index(kind: str, target_id: int):
    s = db_session()
    target = _target(s, kind, target_id)
    return jsonify({"comments": [serialize_comment(c) for c in target_comments(target)]})


@bp.post("/<any(lists, items):kind>/<int:target_id>/comments")
@require_login
def comments_create(kind: str, target_id: int):
    s = db_session()
    u = current_user()
    target = _target(s, kind, target_id)
    if isinstance(target, List):
        record = new_record(Comment, target_list=target, list_item_id=None)
    else:
        record = new_record(Comment, target_item=target, list_item_id=target.id)
    authorize(u, record, "create", CommentPolicy)
    comment = create_comment(s, target, u, request_payload())
    s.commit()
    return jsonify({"comment": serialize_comment(comment)}), 201


@bp.patch("/comments/<int:comment_id>")
@require_login
def comments_update(comment_id: int):
    s = db_session()
    u = current_user()
    comment = get_or_404(s, Comment, comment_id)
    authorize(u, comment, "update", CommentPolicy)
    update_comment(s, comment, u, request_payload())
    s.commit()
    return jsonify({"comment": serialize_comment(comment)})


@bp.delete("/comments/<int:comment_id>")
@require_login
def comments_delete(comment_id: int):
    s = db_session()
    u = current_user()
    comment = get_or_404(s, Comment, comment_id)
    authorize(u, comment, "destroy", CommentPolicy)
    delete_comment(s, comment, u)
    s.commit()
    return jsonify({"ok": True})
