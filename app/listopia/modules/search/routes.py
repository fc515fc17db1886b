from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.listopia.db import db_session
from app.listopia.modules.search.service import search
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, parse_int

bp = Blueprint("search", __name__)


@bp.get("/search")
@require_login
def search_index():
    s = db_session()
    query = (request.args.get("q") or "").strip()
    default_limit = int(current_app.config.get("SEARCH_RESULT_LIMIT") or 20)
    limit = parse_int(request.args.get("limit"), "limit") or default_limit
    hits = search(s, current_user(), query, limit=max(1, min(limit, 100)))
    return jsonify({"query": query, "results": [h.as_dict() for h in hits], "total_count": len(hits)})
