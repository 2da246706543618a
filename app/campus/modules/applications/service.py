"""
Club application workflow.

    apply ──> PENDING ──accept──> ACCEPTED   (terminal; applicant becomes a member)
                 │    ──reject──> REJECTED   (kept as history; apply again for a new row)
                 └────cancel────> (row removed, no notification)

Transitions out of PENDING are conditional UPDATE/DELETE statements keyed on
status = PENDING, so two racing resolutions cannot both succeed regardless of
how many processes serve requests.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from app.campus.audit import record_event
from app.campus.constants import ApplicationStatus
from app.campus.errors import (
    AlreadyResolved,
    DuplicatePendingApplication,
    NotFound,
    ValidationError,
)
from app.campus.modules.applications.models import ClubApplication
from app.campus.modules.clubs.models import Club, ClubMember
from app.campus.modules.clubs.service import is_admin_of, is_member
from app.campus.modules.notifications.service import emit
from app.campus.rbac import Identity, Target, require

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PENDING = ApplicationStatus.PENDING


def pending_application(s: "Session", user_id: int, club_id: int) -> ClubApplication | None:
    return (
        s.query(ClubApplication)
        .filter(
            ClubApplication.user_id == user_id,
            ClubApplication.club_id == club_id,
            ClubApplication.status == PENDING,
        )
        .one_or_none()
    )


def pending_for_club(s: "Session", club_id: int) -> list[ClubApplication]:
    return (
        s.query(ClubApplication)
        .filter(ClubApplication.club_id == club_id, ClubApplication.status == PENDING)
        .order_by(ClubApplication.created_at.asc(), ClubApplication.id.asc())
        .all()
    )


def applications_for_user(s: "Session", user_id: int) -> list[ClubApplication]:
    return (
        s.query(ClubApplication)
        .filter(ClubApplication.user_id == user_id)
        .order_by(ClubApplication.created_at.desc(), ClubApplication.id.desc())
        .all()
    )


def apply(s: "Session", identity: Identity | None, club: Club) -> ClubApplication:
    identity = require(identity, "application.apply")

    if is_admin_of(s, identity.user_id, club.id):
        raise ValidationError("You already run this club.")
    if is_member(s, identity.user_id, club.id):
        raise ValidationError("You are already a member of this club.")
    if pending_application(s, identity.user_id, club.id) is not None:
        raise DuplicatePendingApplication()

    application = ClubApplication(user_id=identity.user_id, club_id=club.id, status=PENDING)
    s.add(application)
    try:
        s.flush()
    except IntegrityError as e:
        # Partial unique index caught a concurrent apply.
        s.rollback()
        raise DuplicatePendingApplication() from e

    record_event(
        s,
        actor=identity,
        action="application.apply",
        entity_type="ClubApplication",
        entity_id=str(application.id),
        metadata={"club_id": club.id},
    )
    logger.info("Application created id=%s user_id=%s club_id=%s", application.id, identity.user_id, club.id)
    return application


def cancel(s: "Session", identity: Identity | None, club: Club) -> None:
    identity = require(identity, "application.cancel")

    application = pending_application(s, identity.user_id, club.id)
    if application is None:
        raise NotFound("You have no pending application for this club.")

    res = s.execute(
        delete(ClubApplication)
        .where(ClubApplication.id == application.id, ClubApplication.status == PENDING)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise AlreadyResolved()
    s.expunge(application)

    record_event(
        s,
        actor=identity,
        action="application.cancel",
        entity_type="ClubApplication",
        entity_id=str(application.id),
        metadata={"club_id": club.id},
    )
    logger.info("Application cancelled id=%s user_id=%s", application.id, identity.user_id)


def _resolve(
    s: "Session",
    identity: Identity | None,
    application_id: int,
    *,
    action: str,
    new_status: ApplicationStatus,
) -> ClubApplication:
    application = s.get(ClubApplication, application_id)
    if application is None:
        raise NotFound("Application not found.")

    identity = require(identity, action, Target.for_club(application.club))

    if application.status is not PENDING:
        raise AlreadyResolved()

    # Compare-and-set on status; the loaded object may already be stale.
    res = s.execute(
        update(ClubApplication)
        .where(ClubApplication.id == application.id, ClubApplication.status == PENDING)
        .values(status=new_status, resolved_at=datetime.utcnow(), resolved_by_user_id=identity.user_id)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        logger.info("Application already resolved id=%s attempted=%s by=%s", application.id, new_status.value, identity.user_id)
        raise AlreadyResolved()
    s.refresh(application)

    record_event(
        s,
        actor=identity,
        action=action,
        entity_type="ClubApplication",
        entity_id=str(application.id),
        metadata={"club_id": application.club_id, "user_id": application.user_id},
    )
    logger.info("Application %s id=%s by=%s", new_status.value.lower(), application.id, identity.user_id)
    return application


def accept(s: "Session", identity: Identity | None, application_id: int) -> ClubApplication:
    application = _resolve(s, identity, application_id, action="application.accept", new_status=ApplicationStatus.ACCEPTED)
    club = application.club
    if s.get(ClubMember, (application.user_id, club.id)) is None:
        s.add(ClubMember(user_id=application.user_id, club_id=club.id))
    emit(
        s,
        application.user_id,
        f"Your application to {club.name} was accepted. Welcome to the club!",
        application=application,
    )
    s.flush()
    return application


def reject(s: "Session", identity: Identity | None, application_id: int) -> ClubApplication:
    application = _resolve(s, identity, application_id, action="application.reject", new_status=ApplicationStatus.REJECTED)
    emit(
        s,
        application.user_id,
        f"Your application to {application.club.name} was not accepted. You can apply again later.",
        application=application,
    )
    s.flush()
    return application
