from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.campus.db import db_session
from app.campus.errors import CampusError
from app.campus.modules.clubs.models import Club, ClubMember
from app.campus.modules.posts.service import create_post, delete_post, get_post, posts_by
from app.campus.rbac import Identity
from app.campus.storage import media_store_from_config
from app.campus.utils import image_from_request

bp = Blueprint("posts", __name__)


def _identity() -> Identity:
    identity = getattr(g, "identity", None)
    if not identity:
        raise RuntimeError("No identity")
    return identity


@bp.get("/")
def my_posts():
    s = db_session()
    identity = _identity()
    clubs = (
        s.query(Club)
        .join(ClubMember, ClubMember.club_id == Club.id)
        .filter(ClubMember.user_id == identity.user_id)
        .order_by(Club.name)
        .all()
    )
    return render_template(
        "me/posts.html",
        posts=posts_by(s, identity.user_id),
        clubs=clubs,
        selected_club_id=request.args.get("club", type=int),
    )


@bp.post("/new")
def new_post():
    s = db_session()
    identity = _identity()
    club_id = request.form.get("club_id", type=int)
    club = s.get(Club, club_id) if club_id else None
    if club is None:
        flash("Choose one of your clubs.", "danger")
        return redirect(url_for("posts.my_posts"))

    try:
        post = create_post(
            s,
            identity,
            club,
            request.form.get("text") or "",
            image=image_from_request("image"),
            media=media_store_from_config(current_app.config),
        )
        s.commit()
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("posts.my_posts", club=club.id))

    current_app.logger.info("Post created id=%s club_id=%s request_id=%s", post.id, club.id, g.request_id)
    flash("Posted.", "success")
    return redirect(url_for("routes.club_detail", club_id=club.id))


@bp.post("/<int:post_id>/delete")
def remove_post(post_id: int):
    s = db_session()
    try:
        delete_post(s, _identity(), get_post(s, post_id))
        s.commit()
        flash("Post deleted.", "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("posts.my_posts"))
