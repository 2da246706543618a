import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, abort, flash, g, redirect, render_template, request, session, url_for

from app.campus.config import load_config
from app.campus.db import init_db, teardown_db_session
from app.campus import models  # noqa: F401  (registers all tables on Base.metadata)
from app.campus.auth import bp as auth_bp, load_current_user
from app.campus.errors import CampusError, ErrorCode, deny_message
from app.campus.rbac import Target, authorize, authorize_path, current_identity, login_redirect
from app.campus.routes import bp as routes_bp
from app.campus.student import bp as student_bp
from app.campus.university import bp as university_bp
from app.campus.modules.clubs.admin import bp as club_admin_bp
from app.campus.modules.posts.views import bp as posts_bp

_UNGATED_PREFIXES = ("/static/", "/uploads/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    from app.campus.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_identity() -> dict:
        from app.campus.constants import Role
        from app.campus.modules.clubs.models import Club

        identity = current_identity()

        def can(action: str, club: Club | None = None) -> bool:
            target = Target.for_club(club) if club is not None else None
            return bool(authorize(identity, action, target))

        unread = 0
        if identity is not None and identity.role is Role.STUDENT:
            from app.campus.db import db_session
            from app.campus.modules.notifications.service import unread_count

            unread = unread_count(db_session(), identity.user_id)
        return {"identity": identity, "can": can, "unread_notifications": unread, "Role": Role}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGATED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        # Every state-changing submission, login and signup included.
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if not validate_csrf(request):
                return render_template("errors/400.html", message="Your form expired. Please try again."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(student_bp, url_prefix="/student")
    app.register_blueprint(posts_bp, url_prefix="/me/posts")
    app.register_blueprint(club_admin_bp, url_prefix="/club")
    app.register_blueprint(university_bp, url_prefix="/university")

    @app.before_request
    def _load_user():
        if request.path.startswith(_UNGATED_PREFIXES):
            g.current_user = None
            g.identity = None
            return None
        return load_current_user()

    @app.before_request
    def _role_gate():
        if request.path.startswith(_UNGATED_PREFIXES):
            return None
        decision = authorize_path(current_identity(), request.path)
        if decision:
            return None
        if decision.reason is ErrorCode.UNAUTHENTICATED:
            return login_redirect()
        g.deny_reason = decision.reason
        abort(403)

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(CampusError)
    def _campus_error(e: CampusError):  # type: ignore[no-redef]
        if e.code is ErrorCode.NOT_FOUND:
            return render_template("errors/404.html", message=e.message), 404
        if e.code in (ErrorCode.WRONG_ROLE, ErrorCode.NOT_OWNER, ErrorCode.NOT_MEMBER):
            g.deny_reason = e.code
            return render_template("errors/403.html", message=e.message), 403
        flash(e.message, "danger")
        return _redirect_back()

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        reason = getattr(g, "deny_reason", None)
        app.logger.warning(
            "Forbidden: path=%s reason=%s request_id=%s",
            request.path,
            reason.value if reason else None,
            getattr(g, "request_id", None),
        )
        message = deny_message(reason) if reason else None
        return render_template("errors/403.html", message=message), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
        flash(f"Image too large. Uploads are limited to {limit_mb}MB.", "danger")
        return _redirect_back()

    def _redirect_back():
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("routes.index")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
