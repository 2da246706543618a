from __future__ import annotations

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from app.campus.db import db_session
from app.campus.errors import CampusError
from app.campus.modules.applications.service import applications_for_user
from app.campus.modules.clubs.models import Club, ClubMember, Follow
from app.campus.modules.notifications.service import list_for, mark_all_read, mark_read
from app.campus.modules.posts.service import feed_for
from app.campus.rbac import Identity

bp = Blueprint("student", __name__)


def _identity() -> Identity:
    identity = getattr(g, "identity", None)
    if not identity:
        # Path gate should prevent this.
        raise RuntimeError("No identity")
    return identity


@bp.get("/")
@bp.get("/feed")
def feed():
    s = db_session()
    identity = _identity()
    posts = feed_for(s, identity.user_id)
    followed = (
        s.query(Club).join(Follow, Follow.club_id == Club.id).filter(Follow.user_id == identity.user_id).order_by(Club.name).all()
    )
    joined = (
        s.query(Club)
        .join(ClubMember, ClubMember.club_id == Club.id)
        .filter(ClubMember.user_id == identity.user_id)
        .order_by(Club.name)
        .all()
    )
    return render_template("student/feed.html", posts=posts, followed=followed, joined=joined)


@bp.get("/applications")
def applications():
    s = db_session()
    rows = applications_for_user(s, _identity().user_id)
    return render_template("student/applications.html", applications=rows)


@bp.get("/notifications")
def notifications():
    s = db_session()
    show = request.args.get("filter") or "all"
    rows = list_for(s, _identity().user_id, unread_only=(show == "unread"))
    return render_template("student/notifications.html", notifications=rows, show=show)


@bp.post("/notifications/<int:notification_id>/read")
def notification_read(notification_id: int):
    s = db_session()
    try:
        mark_read(s, _identity(), notification_id)
        s.commit()
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("student.notifications", filter=request.form.get("filter") or None))


@bp.post("/notifications/read-all")
def notifications_read_all():
    s = db_session()
    count = mark_all_read(s, _identity())
    s.commit()
    if count:
        flash(f"Marked {count} notification(s) as read.", "success")
    return redirect(url_for("student.notifications"))
