from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, session, url_for
from sqlalchemy import func, select
from werkzeug.security import check_password_hash, generate_password_hash

from app.listopia.audit import record_event
from app.listopia.db import db_session
from app.listopia.errors import ValidationError
from app.listopia.models import User
from app.listopia.modules.notifications.service import ensure_settings
from app.listopia.rbac import require_login
from app.listopia.utils import current_user, iso, normalize_email, parse_int, request_payload, valid_email, wants_json

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
PASSWORD_MIN_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "bio": u.bio,
        "current_organization_id": u.current_organization_id,
        "organizations": [
            {"id": m.organization_id, "role": m.role}
            for m in u.organization_memberships
            if m.status == "active"
        ],
        "created_at": iso(u.created_at),
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _find_user(s, email: str) -> User | None:
    return s.execute(select(User).where(func.lower(User.email) == email)).scalar_one_or_none()


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    payload = request_payload()
    email = normalize_email(payload.get("email"))
    password = payload.get("password") or ""
    nxt = (payload.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        if wants_json():
            return jsonify({"errors": ["Too many login attempts. Please wait 5 minutes."]}), 429
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        user = _find_user(s, email)
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            if wants_json():
                return jsonify({"errors": ["Invalid credentials."]}), 401
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        if wants_json():
            return jsonify({"user": serialize_user(user)})
        return redirect(_safe_next(nxt) or url_for("routes.index"))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/register")
def register_get():
    return render_template("auth/register.html")


def validate_registration(s, payload: dict) -> list[str]:
    errors = []
    email = normalize_email(payload.get("email"))
    name = (payload.get("name") or "").strip()
    password = payload.get("password") or ""
    if not email:
        errors.append("Email is required.")
    elif not valid_email(email):
        errors.append("Email is invalid.")
    elif _find_user(s, email) is not None:
        errors.append("Email has already been taken.")
    if not name:
        errors.append("Name is required.")
    elif len(name) > 255:
        errors.append("Name must be at most 255 characters.")
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    return errors


@bp.post("/register")
def register_post():
    s = db_session()
    payload = request_payload()
    errors = validate_registration(s, payload)
    if errors:
        if wants_json():
            return jsonify({"errors": errors}), 422
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("auth.register_get"))

    now = datetime.utcnow()
    user = User(
        email=normalize_email(payload.get("email")),
        name=(payload.get("name") or "").strip(),
        password_hash=generate_password_hash(payload.get("password") or ""),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    ensure_settings(s, user)
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    if wants_json():
        return jsonify({"user": serialize_user(user)}), 201
    return redirect(url_for("routes.index"))


@bp.get("/me")
@require_login
def me_get():
    return jsonify({"user": serialize_user(current_user())})


@bp.patch("/me")
@require_login
def me_patch():
    s = db_session()
    u = current_user()
    payload = request_payload()
    changes: dict[str, dict] = {}

    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name or len(name) > 255:
            raise ValidationError("Name must be 1-255 characters.")
        if name != u.name:
            changes["name"] = {"old": u.name, "new": name}
            u.name = name
    if "bio" in payload:
        u.bio = (payload.get("bio") or "").strip() or None
    if "current_organization_id" in payload:
        org_id = parse_int(payload.get("current_organization_id"), "current_organization_id")
        if org_id is not None and not u.in_organization(org_id):
            raise ValidationError("You are not a member of that organization.")
        if org_id != u.current_organization_id:
            changes["current_organization_id"] = {"old": u.current_organization_id, "new": org_id}
            u.current_organization_id = org_id

    u.updated_at = datetime.utcnow()
    record_event(s, actor=u, action="user.update", entity_type="User", entity_id=str(u.id), metadata={"changes": changes})
    s.commit()
    return jsonify({"user": serialize_user(u)})


@bp.post("/password")
@require_login
def password_post():
    s = db_session()
    u = current_user()
    payload = request_payload()
    if not check_password_hash(u.password_hash, payload.get("current_password") or ""):
        raise ValidationError("Current password is incorrect.")
    new_password = payload.get("new_password") or ""
    if len(new_password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    u.password_hash = generate_password_hash(new_password)
    u.updated_at = datetime.utcnow()
    record_event(s, actor=u, action="auth.password_change", entity_type="User", entity_id=str(u.id))
    s.commit()
    return jsonify({"ok": True})


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    if wants_json():
        return jsonify({"ok": True})
    return redirect(url_for("routes.index"))
