import logging
from datetime import timedelta

from flask import Flask, g, jsonify, render_template, request, session
from dotenv import load_dotenv

from app.listopia.config import load_config
from app.listopia.db import init_db, teardown_db_session
from app.listopia.errors import BlockedMessageError, NotAuthorizedError, NotFoundError, ValidationError
from app.listopia.routes import bp as routes_bp
from app.listopia.auth import bp as auth_bp, load_current_user
from app.listopia.admin import bp as admin_bp
from app.listopia.modules.lists.routes import bp as lists_bp
from app.listopia.modules.collaboration.routes import bp as collaboration_bp
from app.listopia.modules.organizations.routes import bp as organizations_bp
from app.listopia.modules.comments.routes import bp as comments_bp
from app.listopia.modules.notifications.routes import bp as notifications_bp
from app.listopia.modules.chat.routes import bp as chat_bp
from app.listopia.modules.chat.llm import llm_client_from_config
from app.listopia.modules.search.routes import bp as search_bp
from app.listopia.security import ensure_csrf_token, validate_csrf
from app.listopia.utils import wants_json

API_PREFIX = "/api"
# Login, register and logout run before a token can exist client-side.
CSRF_EXEMPT_ENDPOINTS = frozenset({"auth.login_post", "auth.register_post", "auth.logout"})


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.endpoint in CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                if wants_json():
                    return jsonify({"errors": ["CSRF token missing or invalid."]}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("OPENAI_API_KEY"):
            app.logger.warning("OPENAI_API_KEY not set; chat replies will use the fallback message.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Tests install their own client before the first request.
    app.extensions.setdefault("llm_client", llm_client_from_config(app.config))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(lists_bp, url_prefix=API_PREFIX)
    app.register_blueprint(collaboration_bp, url_prefix=API_PREFIX)
    app.register_blueprint(organizations_bp, url_prefix=API_PREFIX)
    app.register_blueprint(comments_bp, url_prefix=API_PREFIX)
    app.register_blueprint(notifications_bp, url_prefix=API_PREFIX)
    app.register_blueprint(chat_bp, url_prefix=API_PREFIX)
    app.register_blueprint(search_bp, url_prefix=API_PREFIX)

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ValidationError)
    def _err_validation(e: ValidationError):
        return jsonify({"errors": e.errors}), 422

    @app.errorhandler(BlockedMessageError)
    def _err_blocked(e: BlockedMessageError):
        return jsonify({"errors": [str(e)], "blocked": True, "patterns": e.patterns, "risk_score": e.risk_score}), 422

    @app.errorhandler(NotAuthorizedError)
    def _err_not_authorized(e: NotAuthorizedError):
        app.logger.warning(
            "Forbidden: policy=%s action=%s request_id=%s", e.policy, e.action, getattr(g, "request_id", None)
        )
        if wants_json():
            return jsonify({"errors": ["You are not authorized to perform this action."]}), 403
        return render_template("errors/403.html", missing_permission=None), 403

    @app.errorhandler(NotFoundError)
    def _err_not_found(e: NotFoundError):
        if wants_json():
            return jsonify({"errors": [str(e)]}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if wants_json():
            return jsonify({"errors": ["Not found."]}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        if wants_json():
            return jsonify({"errors": ["Internal server error."], "request_id": rid}), 500
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if wants_json():
            return jsonify({"errors": ["Forbidden."], "missing_permission": missing}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"errors": ["Request body too large."]}), 413

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
