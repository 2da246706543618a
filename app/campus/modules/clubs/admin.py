from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, url_for

from app.campus.db import db_session
from app.campus.errors import CampusError
from app.campus.modules.applications.service import accept, pending_for_club, reject
from app.campus.modules.clubs.models import Club
from app.campus.modules.clubs.service import club_counts, members_of, remove_member
from app.campus.modules.posts.service import club_posts, delete_post, get_post
from app.campus.rbac import Identity

bp = Blueprint("club_admin", __name__)


def _identity() -> Identity:
    identity = getattr(g, "identity", None)
    if not identity:
        raise RuntimeError("No identity")
    return identity


def _own_club() -> Club:
    identity = _identity()
    club = db_session().get(Club, identity.club_id) if identity.club_id else None
    if club is None:
        abort(404)
    return club


@bp.get("/")
def dashboard():
    s = db_session()
    club = _own_club()
    return render_template(
        "club/dashboard.html",
        club=club,
        counts=club_counts(s, club.id),
        pending=pending_for_club(s, club.id),
        members=members_of(s, club.id),
        posts=club_posts(s, club.id),
    )


def _resolve(application_id: int, fn, success: str):
    s = db_session()
    try:
        fn(s, _identity(), application_id)
        s.commit()
        flash(success, "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("club_admin.dashboard"))


@bp.post("/applications/<int:application_id>/accept")
def application_accept(application_id: int):
    return _resolve(application_id, accept, "Application accepted. The student is now a member.")


@bp.post("/applications/<int:application_id>/reject")
def application_reject(application_id: int):
    return _resolve(application_id, reject, "Application rejected.")


@bp.post("/members/<int:user_id>/remove")
def member_remove(user_id: int):
    s = db_session()
    try:
        remove_member(s, _identity(), _own_club(), user_id)
        s.commit()
        flash("Member removed.", "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("club_admin.dashboard"))


@bp.post("/posts/<int:post_id>/delete")
def post_delete(post_id: int):
    s = db_session()
    try:
        delete_post(s, _identity(), get_post(s, post_id))
        s.commit()
        flash("Post removed.", "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("club_admin.dashboard"))
