from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import IntegrityError

from app.campus.audit import record_event
from app.campus.constants import ROLE_HOME_ENDPOINT, Role
from app.campus.db import db_session
from app.campus.models import University, User
from app.campus.modules.clubs.service import club_for_admin
from app.campus.rbac import Identity
from app.campus.security import password_hasher_from_config
from app.campus.utils import is_valid_email, safe_next

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user and the request-scoped g.identity from the signed
    session cookie. Also assigns a per-request request_id for log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.identity = None

    user_id = session.get("user_id")
    if not user_id:
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        return

    club_id = None
    if user.role is Role.CLUB_ADMIN:
        club = club_for_admin(s, user.id)
        club_id = club.id if club else None
    g.current_user = user
    g.identity = Identity.from_user(
        user,
        club_id=club_id,
        university_scoped=bool(current_app.config.get("UNIVERSITY_ADMIN_SCOPED", True)),
    )


def _home_for(user: User) -> str:
    return url_for(ROLE_HOME_ENDPOINT[user.role])


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    hasher = password_hasher_from_config(current_app.config)
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not hasher.verify(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
        )
        s.commit()
        flash("Invalid email or password.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=Identity.from_user(user), action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("Login user_id=%s role=%s request_id=%s", user.id, user.role.value, g.request_id)
    # Optional "next" redirect (only local paths, avoids open redirects).
    return redirect(safe_next(nxt) or _home_for(user))


@bp.get("/signup")
def signup_get():
    s = db_session()
    universities = s.query(University).order_by(University.name.asc()).all()
    return render_template("auth/signup.html", universities=universities)


DUPLICATE_EMAIL = "An account with that email already exists."


def _email_taken(s, email: str) -> bool:
    return s.query(User.id).filter(User.email == email).first() is not None


@bp.post("/signup")
def signup_post():
    """Self-service signup creates STUDENT accounts only."""
    s = db_session()
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    display_name = (request.form.get("display_name") or "").strip()
    university_id = request.form.get("university_id", type=int)

    errors = []
    if not is_valid_email(email):
        errors.append("Enter a valid email address.")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if not university_id or s.get(University, university_id) is None:
        errors.append("Choose your university.")
    if not errors and _email_taken(s, email):
        errors.append(DUPLICATE_EMAIL)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("auth.signup_get"))

    hasher = password_hasher_from_config(current_app.config)
    user = User(
        email=email,
        password_hash=hasher.hash(password),
        display_name=display_name[:128],
        role=Role.STUDENT,
        university_id=university_id,
        is_active=True,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError:
        # Unique email index caught a concurrent signup.
        s.rollback()
        current_app.logger.warning("Signup email conflict email=%s request_id=%s", email, g.request_id)
        flash(DUPLICATE_EMAIL, "danger")
        return redirect(url_for("auth.signup_get"))
    record_event(s, actor=Identity.from_user(user), action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    flash("Welcome! Explore clubs to follow or join.", "success")
    return redirect(url_for("routes.explore"))


@bp.post("/logout")
def logout():
    s = db_session()
    identity = getattr(g, "identity", None)
    if identity:
        record_event(s, actor=identity, action="auth.logout", entity_type="User", entity_id=str(identity.user_id))
        s.commit()
    session.clear()
    return redirect(url_for("routes.index"))
