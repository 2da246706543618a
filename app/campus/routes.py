from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, send_from_directory, url_for
from werkzeug.utils import secure_filename

from app.campus.db import db_session
from app.campus.errors import CampusError
from app.campus.models import University
from app.campus.modules.applications.service import apply, cancel, pending_application
from app.campus.modules.clubs.models import Club
from app.campus.modules.clubs.service import club_counts, explore_clubs, follow, is_follower, is_member, unfollow
from app.campus.modules.posts.service import add_comment, club_posts, get_post, toggle_like
from app.campus.rbac import current_identity, require_action
from app.campus.storage import LocalStorage, storage_from_config
from app.campus.utils import redirect_back

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    s = db_session()
    recent = s.query(Club).order_by(Club.created_at.desc(), Club.id.desc()).limit(6).all()
    return render_template("public/index.html", clubs=recent)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness probe. No DB access."""
    return "ok", 200


# ---------- Browse ----------
@bp.get("/explore")
def explore():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    university_id = request.args.get("university", type=int)
    clubs = explore_clubs(s, university_id=university_id, search=search)
    universities = s.query(University).order_by(University.name.asc()).all()
    return render_template(
        "public/explore.html",
        clubs=clubs,
        universities=universities,
        search=search,
        university_id=university_id,
    )


@bp.get("/clubs/<int:club_id>")
def club_detail(club_id: int):
    s = db_session()
    club = s.get(Club, club_id)
    if not club:
        abort(404)
    identity = current_identity()
    state = {"following": False, "member": False, "pending": None}
    if identity:
        state["following"] = is_follower(s, identity.user_id, club.id)
        state["member"] = is_member(s, identity.user_id, club.id)
        state["pending"] = pending_application(s, identity.user_id, club.id)
    return render_template(
        "public/club.html",
        club=club,
        counts=club_counts(s, club.id),
        posts=club_posts(s, club.id),
        state=state,
    )


# ---------- Social actions (login required, public prefix) ----------
def _club_action(club_id: int, fn, success: str):
    s = db_session()
    club = s.get(Club, club_id)
    if not club:
        abort(404)
    try:
        fn(s, current_identity(), club)
        s.commit()
        flash(success, "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("routes.club_detail", club_id=club_id))


@bp.post("/clubs/<int:club_id>/follow")
@require_action("club.follow")
def club_follow(club_id: int):
    return _club_action(club_id, follow, "Following.")


@bp.post("/clubs/<int:club_id>/unfollow")
@require_action("club.unfollow")
def club_unfollow(club_id: int):
    return _club_action(club_id, unfollow, "Unfollowed.")


@bp.post("/clubs/<int:club_id>/apply")
@require_action("application.apply")
def club_apply(club_id: int):
    return _club_action(club_id, apply, "Application sent. The club admin will review it.")


@bp.post("/clubs/<int:club_id>/apply/cancel")
@require_action("application.cancel")
def club_apply_cancel(club_id: int):
    return _club_action(club_id, cancel, "Application withdrawn.")


@bp.post("/clubs/<int:club_id>/posts/<int:post_id>/like")
@require_action("post.like")
def post_like(club_id: int, post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
        if post.club_id != club_id:
            abort(404)
        toggle_like(s, current_identity(), post)
        s.commit()
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect_back("routes.club_detail", club_id=club_id)


@bp.post("/clubs/<int:club_id>/posts/<int:post_id>/comments")
@require_action("post.comment")
def post_comment(club_id: int, post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
        if post.club_id != club_id:
            abort(404)
        add_comment(s, current_identity(), post, request.form.get("text") or "")
        s.commit()
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect_back("routes.club_detail", club_id=club_id)


# ---------- Uploaded media ----------
@bp.get("/uploads/<name>")
def uploads(name: str):
    if secure_filename(name) != name:
        abort(404)
    storage = storage_from_config(current_app.config)
    if isinstance(storage, LocalStorage):
        return send_from_directory(storage.root.resolve(), name, max_age=86400)
    if not storage.exists(name):
        abort(404)
    return send_file(storage.open(name), download_name=name, max_age=86400)
