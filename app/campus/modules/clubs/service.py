from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.campus.audit import record_event
from app.campus.constants import CLUB_NAME_MAX, Role
from app.campus.errors import ConstraintViolation, NotFound, ValidationError
from app.campus.models import University, User
from app.campus.modules.clubs.models import Club, ClubMember, Follow
from app.campus.rbac import Identity, Target, require

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.campus.security import PasswordHasher

logger = logging.getLogger(__name__)


def get_club(s: "Session", club_id: int) -> Club:
    club = s.get(Club, club_id)
    if club is None:
        raise NotFound("Club not found.")
    return club


def club_for_admin(s: "Session", user_id: int) -> Club | None:
    return s.query(Club).filter(Club.admin_user_id == user_id).one_or_none()


def is_member(s: "Session", user_id: int, club_id: int) -> bool:
    return s.get(ClubMember, (user_id, club_id)) is not None


def is_follower(s: "Session", user_id: int, club_id: int) -> bool:
    return s.get(Follow, (user_id, club_id)) is not None


def is_admin_of(s: "Session", user_id: int, club_id: int) -> bool:
    row = s.query(Club.id).filter(Club.id == club_id, Club.admin_user_id == user_id).first()
    return row is not None


# ---------- Follow ----------
def follow(s: "Session", identity: Identity | None, club: Club) -> bool:
    """Idempotent. Returns True if a follow was created."""
    identity = require(identity, "club.follow")
    if is_follower(s, identity.user_id, club.id):
        return False
    s.add(Follow(user_id=identity.user_id, club_id=club.id))
    try:
        s.flush()
    except IntegrityError:
        # Lost a race with an identical follow; the target state holds.
        s.rollback()
        return False
    return True


def unfollow(s: "Session", identity: Identity | None, club: Club) -> bool:
    """Idempotent. Returns True if a follow was removed."""
    identity = require(identity, "club.unfollow")
    row = s.get(Follow, (identity.user_id, club.id))
    if row is None:
        return False
    s.delete(row)
    s.flush()
    return True


# ---------- Membership ----------
def remove_member(s: "Session", identity: Identity | None, club: Club, user_id: int) -> None:
    identity = require(identity, "member.remove", Target.for_club(club))
    row = s.get(ClubMember, (user_id, club.id))
    if row is None:
        raise NotFound("That user is not a member of this club.")
    s.delete(row)
    record_event(
        s,
        actor=identity,
        action="club.member_remove",
        entity_type="Club",
        entity_id=str(club.id),
        metadata={"user_id": user_id},
    )
    logger.info("Member removed club_id=%s user_id=%s by=%s", club.id, user_id, identity.user_id)


def members_of(s: "Session", club_id: int) -> list[ClubMember]:
    return (
        s.query(ClubMember)
        .filter(ClubMember.club_id == club_id)
        .order_by(ClubMember.joined_at.asc())
        .all()
    )


# ---------- Explore ----------
def explore_clubs(s: "Session", *, university_id: int | None = None, search: str = "") -> list[Club]:
    q = s.query(Club)
    if university_id:
        q = q.filter(Club.university_id == university_id)
    search = (search or "").strip()
    if search:
        q = q.filter(Club.name.ilike(f"%{search}%"))
    return q.order_by(Club.name.asc()).all()


def club_counts(s: "Session", club_id: int) -> dict[str, int]:
    followers = s.query(func.count()).select_from(Follow).filter(Follow.club_id == club_id).scalar() or 0
    members = s.query(func.count()).select_from(ClubMember).filter(ClubMember.club_id == club_id).scalar() or 0
    return {"followers": followers, "members": members}


# ---------- Provisioning ----------
def validate_club_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Club name is required.")
    elif len(name) > CLUB_NAME_MAX:
        errors.append(f"Club name must be at most {CLUB_NAME_MAX} characters.")
    email = (payload.get("admin_email") or "").strip()
    if not email or "@" not in email:
        errors.append("A valid admin email is required.")
    if len(payload.get("admin_password") or "") < 8:
        errors.append("Admin password must be at least 8 characters.")
    return errors


def provision_club(
    s: "Session",
    identity: Identity | None,
    *,
    university_id: int,
    payload: dict,
    hasher: "PasswordHasher",
) -> Club:
    """
    Create a club together with its CLUB_ADMIN account. Both rows are flushed
    in the caller's transaction; on any failure the session is rolled back so
    neither survives.
    """
    identity = require(identity, "club.provision", Target.for_university(university_id))

    errors = validate_club_payload(payload)
    if errors:
        raise ValidationError(" ".join(errors))

    university = s.get(University, university_id)
    if university is None:
        raise NotFound("University not found.")

    name = payload["name"].strip()
    admin_email = payload["admin_email"].strip().lower()

    if s.query(User.id).filter(User.email == admin_email).first():
        raise ConstraintViolation("An account with that email already exists.")
    if s.query(Club.id).filter(Club.university_id == university_id, Club.name == name).first():
        raise ConstraintViolation("A club with that name already exists at this university.")

    try:
        admin = User(
            email=admin_email,
            password_hash=hasher.hash(payload["admin_password"]),
            display_name=(payload.get("admin_name") or "").strip() or f"{name} admin",
            role=Role.CLUB_ADMIN,
            university_id=university_id,
            is_active=True,
        )
        s.add(admin)
        s.flush()

        club = Club(
            name=name,
            description=(payload.get("description") or "").strip() or None,
            university_id=university_id,
            admin_user_id=admin.id,
        )
        s.add(club)
        s.flush()
    except IntegrityError as e:
        s.rollback()
        logger.warning("Club provisioning rolled back university_id=%s name=%r: %s", university_id, name, e.orig)
        raise ConstraintViolation("Club or admin account conflicts with an existing record.") from e

    record_event(
        s,
        actor=identity,
        action="club.provision",
        entity_type="Club",
        entity_id=str(club.id),
        metadata={"name": club.name, "university_id": university_id, "admin_user_id": admin.id},
    )
    logger.info("Club provisioned club_id=%s admin_user_id=%s by=%s", club.id, admin.id, identity.user_id)
    return club


def delete_club(s: "Session", identity: Identity | None, club: Club) -> None:
    """
    Cascade, per relation:
      posts -> comments, likes        deleted
      applications                    deleted (notifications keep their row, reference nulled)
      follows, memberships            deleted
      admin account                   deleted (never left without a club)
    """
    identity = require(identity, "club.delete", Target.for_club(club))
    club_id, club_name, admin = club.id, club.name, club.admin

    s.delete(club)
    s.flush()
    s.delete(admin)
    s.flush()

    record_event(
        s,
        actor=identity,
        action="club.delete",
        entity_type="Club",
        entity_id=str(club_id),
        metadata={"name": club_name, "admin_user_id": admin.id},
    )
    logger.info("Club deleted club_id=%s by=%s", club_id, identity.user_id)
