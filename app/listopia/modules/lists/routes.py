from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.listopia.db import db_session
from app.listopia.errors import NotFoundError
from app.listopia.modules.lists.models import List, ListItem
from app.listopia.modules.lists.policy import ListItemPolicy, ListPolicy
from app.listopia.modules.lists.service import (
    accessible_lists,
    assign_item,
    bulk_complete,
    create_item,
    create_list,
    delete_item,
    delete_list,
    duplicate_list,
    get_public_list,
    list_analytics,
    log_time,
    move_item_to_column,
    progress,
    reorder_items,
    serialize_item,
    serialize_list,
    serialize_time_entry,
    share_summary,
    time_entries_summary,
    toggle_item,
    toggle_public_access,
    toggle_status,
    update_item,
    update_list,
)
from app.listopia.policy import authorize, new_record
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, get_or_404, request_payload

bp = Blueprint("lists", __name__)


def _load_list(s, list_id: int, action: str = "show") -> List:
    lst = get_or_404(s, List, list_id)
    authorize(current_user(), lst, action, ListPolicy)
    return lst


def _load_item(s, list_id: int, item_id: int, action: str = "show") -> ListItem:
    item = get_or_404(s, ListItem, item_id)
    if item.list_id != list_id:
        raise NotFoundError("ListItem", item_id)
    authorize(current_user(), item, action, ListItemPolicy)
    return item


def _item_response(item: ListItem, status: int = 200):
    # The changed item plus the list's progress, enough for the client to patch its view.
    return jsonify({"item": serialize_item(item), "progress": progress(item.parent_list)}), status


# ---------- lists ----------
@bp.get("/lists")
@require_login
def lists_index():
    s = db_session()
    lists = accessible_lists(
        s,
        current_user(),
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
    )
    return jsonify({"lists": [serialize_list(lst) for lst in lists]})


@bp.post("/lists")
@require_login
def lists_create():
    s = db_session()
    u = current_user()
    authorize(u, new_record(List, user_id=u.id), "create", ListPolicy)
    lst = create_list(s, u, request_payload())
    s.commit()
    return jsonify({"list": serialize_list(lst, include_items=True)}), 201


@bp.get("/lists/<int:list_id>")
@require_login
def lists_show(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id)
    out = serialize_list(lst, include_items=True)
    out["permissions"] = {
        action: ListPolicy(current_user(), lst).allows(action)
        for action in ("update", "destroy", "share", "manage_collaborators", "toggle_public_access")
    }
    return jsonify({"list": out})


@bp.patch("/lists/<int:list_id>")
@require_login
def lists_update(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "update")
    update_list(s, lst, current_user(), request_payload())
    s.commit()
    return jsonify({"list": serialize_list(lst)})


@bp.delete("/lists/<int:list_id>")
@require_login
def lists_delete(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "destroy")
    delete_list(s, lst, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/lists/<int:list_id>/toggle-status")
@require_login
def lists_toggle_status(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "toggle_status")
    toggle_status(s, lst, current_user())
    s.commit()
    return jsonify({"list": serialize_list(lst)})


@bp.post("/lists/<int:list_id>/toggle-public")
@require_login
def lists_toggle_public(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "toggle_public_access")
    toggle_public_access(s, lst, current_user())
    s.commit()
    return jsonify({"list": serialize_list(lst)})


@bp.post("/lists/<int:list_id>/duplicate")
@require_login
def lists_duplicate(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "duplicate")
    copy = duplicate_list(s, lst, current_user())
    s.commit()
    return jsonify({"list": serialize_list(copy, include_items=True)}), 201


@bp.get("/lists/<int:list_id>/share")
@require_login
def lists_share(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "share")
    return jsonify({"share": share_summary(lst, current_user())})


@bp.get("/lists/<int:list_id>/analytics")
@require_login
def lists_analytics(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id)
    return jsonify({"analytics": list_analytics(lst)})


@bp.get("/public/lists/<slug>")
def lists_public(slug: str):
    s = db_session()
    lst = get_public_list(s, slug)
    return jsonify({"list": serialize_list(lst, include_items=True)})


# ---------- items ----------
@bp.post("/lists/<int:list_id>/items")
@require_login
def items_create(list_id: int):
    s = db_session()
    u = current_user()
    lst = get_or_404(s, List, list_id)
    authorize(u, new_record(ListItem, parent_list=lst), "create", ListItemPolicy)
    item = create_item(s, lst, u, request_payload())
    s.commit()
    return _item_response(item, 201)


@bp.get("/lists/<int:list_id>/items/<int:item_id>")
@require_login
def items_show(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id)
    return jsonify({"item": serialize_item(item)})


@bp.patch("/lists/<int:list_id>/items/<int:item_id>")
@require_login
def items_update(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "update")
    update_item(s, item, current_user(), request_payload())
    s.commit()
    return _item_response(item)


@bp.delete("/lists/<int:list_id>/items/<int:item_id>")
@require_login
def items_delete(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "destroy")
    lst = item.parent_list
    delete_item(s, item, current_user())
    s.commit()
    return jsonify({"ok": True, "progress": progress(lst)})


@bp.post("/lists/<int:list_id>/items/<int:item_id>/toggle")
@require_login
def items_toggle(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "toggle_completion")
    toggle_item(s, item, current_user())
    s.commit()
    return _item_response(item)


@bp.post("/lists/<int:list_id>/items/<int:item_id>/assign")
@require_login
def items_assign(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "assign")
    assign_item(s, item, current_user(), request_payload().get("assigned_user_id"))
    s.commit()
    return _item_response(item)


@bp.post("/lists/<int:list_id>/items/<int:item_id>/move")
@require_login
def items_move(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "update")
    move_item_to_column(s, item, current_user(), request_payload().get("board_column_id"))
    s.commit()
    return _item_response(item)


@bp.post("/lists/<int:list_id>/items/reorder")
@require_login
def items_reorder(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "update")
    items = reorder_items(s, lst, current_user(), request_payload().get("item_ids"))
    s.commit()
    return jsonify({"items": [serialize_item(i) for i in items], "progress": progress(lst)})


@bp.post("/lists/<int:list_id>/items/bulk-complete")
@require_login
def items_bulk_complete(list_id: int):
    s = db_session()
    lst = _load_list(s, list_id, "update")
    items = bulk_complete(s, lst, current_user(), request_payload().get("item_ids"))
    s.commit()
    return jsonify({"items": [serialize_item(i) for i in items], "progress": progress(lst)})


# ---------- time entries ----------
@bp.get("/lists/<int:list_id>/items/<int:item_id>/time-entries")
@require_login
def time_entries_index(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id)
    return jsonify(time_entries_summary(item))


@bp.post("/lists/<int:list_id>/items/<int:item_id>/time-entries")
@require_login
def time_entries_create(list_id: int, item_id: int):
    s = db_session()
    item = _load_item(s, list_id, item_id, "update")
    entry = log_time(s, item, current_user(), request_payload())
    s.commit()
    return jsonify({"time_entry": serialize_time_entry(entry), "total_hours": time_entries_summary(item)["total_hours"]}), 201
