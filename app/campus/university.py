from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.campus.db import db_session
from app.campus.errors import CampusError
from app.campus.models import University
from app.campus.modules.clubs.models import Club
from app.campus.modules.clubs.service import club_counts, delete_club, provision_club
from app.campus.rbac import Identity
from app.campus.security import password_hasher_from_config

bp = Blueprint("university", __name__)


def _identity() -> Identity:
    identity = getattr(g, "identity", None)
    if not identity:
        raise RuntimeError("No identity")
    return identity


def _universities(s) -> list[University]:
    identity = _identity()
    q = s.query(University)
    if identity.scope_university_id is not None:
        q = q.filter(University.id == identity.scope_university_id)
    return q.order_by(University.name.asc()).all()


@bp.get("/")
def index():
    s = db_session()
    universities = _universities(s)
    ids = [u.id for u in universities]
    clubs = (
        s.query(Club).filter(Club.university_id.in_(ids)).order_by(Club.name.asc()).all() if ids else []
    )
    counts = {c.id: club_counts(s, c.id) for c in clubs}
    return render_template("university/index.html", universities=universities, clubs=clubs, counts=counts)


@bp.get("/clubs/new")
def club_new_get():
    return render_template("university/club_new.html", universities=_universities(db_session()))


@bp.post("/clubs/new")
def club_new_post():
    s = db_session()
    university_id = request.form.get("university_id", type=int) or _identity().scope_university_id
    if not university_id:
        flash("Choose a university.", "danger")
        return redirect(url_for("university.club_new_get"))

    payload = {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "admin_email": request.form.get("admin_email"),
        "admin_name": request.form.get("admin_name"),
        "admin_password": request.form.get("admin_password"),
    }
    try:
        club = provision_club(
            s,
            _identity(),
            university_id=university_id,
            payload=payload,
            hasher=password_hasher_from_config(current_app.config),
        )
        s.commit()
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("university.club_new_get"))

    flash(f"Club '{club.name}' created with its admin account.", "success")
    return redirect(url_for("university.index"))


@bp.post("/clubs/<int:club_id>/delete")
def club_delete(club_id: int):
    s = db_session()
    club = s.get(Club, club_id)
    if not club:
        abort(404)
    try:
        delete_club(s, _identity(), club)
        s.commit()
        flash("Club deleted.", "success")
    except CampusError as e:
        s.rollback()
        flash(e.message, "danger")
    return redirect(url_for("university.index"))
