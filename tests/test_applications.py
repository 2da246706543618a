import pytest

from app.campus.constants import ApplicationStatus
from app.campus.errors import (
    AccessDenied,
    AlreadyResolved,
    DuplicatePendingApplication,
    ErrorCode,
    NotFound,
    ValidationError,
)
from app.campus.models import AuditEvent
from app.campus.modules.applications.models import ClubApplication
from app.campus.modules.applications.service import (
    accept,
    applications_for_user,
    apply,
    cancel,
    pending_application,
    pending_for_club,
    reject,
)
from app.campus.modules.clubs.models import ClubMember
from app.campus.modules.clubs.service import get_club, is_member
from app.campus.modules.notifications.models import Notification
from app.campus.modules.notifications.service import list_for


def test_apply_creates_single_pending_application(db, seed, ident):
    chess = get_club(db, seed.chess)
    application = apply(db, ident(seed.alice), chess)
    db.commit()
    assert application.status is ApplicationStatus.PENDING
    assert pending_application(db, seed.alice, seed.chess).id == application.id

    with pytest.raises(DuplicatePendingApplication) as exc:
        apply(db, ident(seed.alice), chess)
    assert exc.value.code is ErrorCode.DUPLICATE_PENDING_APPLICATION
    db.rollback()

    assert db.query(ClubApplication).filter(ClubApplication.user_id == seed.alice).count() == 1


def test_apply_requires_login(db, seed):
    with pytest.raises(AccessDenied) as exc:
        apply(db, None, get_club(db, seed.chess))
    assert exc.value.code is ErrorCode.UNAUTHENTICATED


def test_apply_rejects_members_and_the_club_admin(db, seed, ident):
    chess = get_club(db, seed.chess)
    db.add(ClubMember(user_id=seed.alice, club_id=seed.chess))
    db.flush()

    with pytest.raises(ValidationError):
        apply(db, ident(seed.alice), chess)
    with pytest.raises(ValidationError):
        apply(db, ident(seed.chess_admin), chess)


def test_accept_makes_member_and_notifies(db, seed, ident):
    chess = get_club(db, seed.chess)
    application = apply(db, ident(seed.alice), chess)
    db.commit()

    accept(db, ident(seed.chess_admin), application.id)
    db.commit()

    row = db.get(ClubApplication, application.id)
    assert row.status is ApplicationStatus.ACCEPTED
    assert row.resolved_by_user_id == seed.chess_admin
    assert row.resolved_at is not None
    assert is_member(db, seed.alice, seed.chess)
    assert pending_for_club(db, seed.chess) == []

    notes = list_for(db, seed.alice)
    assert len(notes) == 1
    assert notes[0].read is False
    assert notes[0].related_application_id == application.id
    assert "Chess Society" in notes[0].message
    assert "accepted" in notes[0].message

    assert db.query(AuditEvent).filter(AuditEvent.action == "application.accept").count() == 1


def test_resolved_application_cannot_be_resolved_again(db, seed, ident):
    application = apply(db, ident(seed.alice), get_club(db, seed.chess))
    accept(db, ident(seed.chess_admin), application.id)
    db.commit()

    with pytest.raises(AlreadyResolved):
        reject(db, ident(seed.chess_admin), application.id)
    with pytest.raises(AlreadyResolved):
        accept(db, ident(seed.chess_admin), application.id)
    db.rollback()

    assert db.get(ClubApplication, application.id).status is ApplicationStatus.ACCEPTED
    assert db.query(Notification).count() == 1


def test_reject_keeps_history_and_allows_reapplying(db, seed, ident):
    chess = get_club(db, seed.chess)
    first = apply(db, ident(seed.alice), chess)
    reject(db, ident(seed.chess_admin), first.id)
    db.commit()

    assert not is_member(db, seed.alice, seed.chess)
    notes = list_for(db, seed.alice)
    assert len(notes) == 1
    assert "not accepted" in notes[0].message

    second = apply(db, ident(seed.alice), chess)
    db.commit()
    assert second.id != first.id

    history = applications_for_user(db, seed.alice)
    assert [a.id for a in history] == [second.id, first.id]
    assert [a.status for a in history] == [ApplicationStatus.PENDING, ApplicationStatus.REJECTED]


def test_concurrent_resolution_only_one_wins(app, db, seed, ident):
    application = apply(db, ident(seed.alice), get_club(db, seed.chess))
    db.commit()
    admin = ident(seed.chess_admin)

    sm = app.extensions["sqlalchemy_sessionmaker"]
    other = sm()
    try:
        # Both sessions have seen the application while it was PENDING.
        assert other.get(ClubApplication, application.id).status is ApplicationStatus.PENDING

        accept(db, admin, application.id)
        db.commit()

        with pytest.raises(AlreadyResolved) as exc:
            reject(other, admin, application.id)
        assert exc.value.code is ErrorCode.ALREADY_RESOLVED
        other.rollback()
    finally:
        other.close()

    db.expire_all()
    assert db.get(ClubApplication, application.id).status is ApplicationStatus.ACCEPTED
    assert db.query(Notification).filter(Notification.user_id == seed.alice).count() == 1
    assert db.query(ClubMember).filter(ClubMember.club_id == seed.chess).count() == 1


def test_student_cannot_resolve_applications(db, seed, ident):
    application = apply(db, ident(seed.alice), get_club(db, seed.chess))
    db.commit()

    with pytest.raises(AccessDenied) as exc:
        accept(db, ident(seed.bob), application.id)
    assert exc.value.code is ErrorCode.WRONG_ROLE
    db.rollback()
    assert db.get(ClubApplication, application.id).status is ApplicationStatus.PENDING
    assert db.query(Notification).count() == 0


def test_resolving_missing_application_is_not_found(db, seed, ident):
    with pytest.raises(NotFound):
        accept(db, ident(seed.chess_admin), 12345)


def test_cancel_withdraws_pending_application(db, seed, ident):
    chess = get_club(db, seed.chess)
    apply(db, ident(seed.alice), chess)
    db.commit()

    cancel(db, ident(seed.alice), chess)
    db.commit()
    assert pending_application(db, seed.alice, seed.chess) is None
    assert db.query(ClubApplication).count() == 0
    assert db.query(Notification).count() == 0

    with pytest.raises(NotFound):
        cancel(db, ident(seed.alice), chess)


def test_apply_and_accept_over_http(app, client, db, seed):
    client.login("alice@north.edu")
    r = client.post(f"/clubs/{seed.chess}/apply", follow_redirects=True)
    assert r.status_code == 200
    assert b"Application sent" in r.data
    assert b"Application pending" in r.data

    r = client.post(f"/clubs/{seed.chess}/apply", follow_redirects=True)
    assert b"already have a pending application" in r.data

    application = pending_application(db, seed.alice, seed.chess)
    assert application is not None

    admin = app.test_client()
    admin.login("chess@north.edu")
    r = admin.get("/club/")
    assert b"Alice" in r.data
    r = admin.post(f"/club/applications/{application.id}/accept", follow_redirects=True)
    assert b"now a member" in r.data

    r = admin.post(f"/club/applications/{application.id}/reject", follow_redirects=True)
    assert b"already been resolved" in r.data

    r = client.get("/student/notifications?filter=unread")
    assert b"Welcome to the club!" in r.data
    r = client.get("/student/applications")
    assert b"Accepted" in r.data
