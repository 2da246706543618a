import pytest

from app.campus.errors import AccessDenied, ErrorCode, NotFound
from app.campus.modules.notifications.models import Notification
from app.campus.modules.notifications.service import emit, list_for, mark_all_read, mark_read, unread_count


def _emit_three(db, user_id):
    ids = [emit(db, user_id, f"Message {i}").id for i in range(3)]
    db.commit()
    return ids


def test_list_is_newest_first(db, seed):
    ids = _emit_three(db, seed.alice)
    assert [n.id for n in list_for(db, seed.alice)] == list(reversed(ids))
    assert list_for(db, seed.bob) == []


def test_mark_read_and_unread_filter(db, seed, ident):
    first, second, third = _emit_three(db, seed.alice)
    assert unread_count(db, seed.alice) == 3

    n = mark_read(db, ident(seed.alice), second)
    db.commit()
    assert n.read is True
    assert unread_count(db, seed.alice) == 2
    assert [x.id for x in list_for(db, seed.alice, unread_only=True)] == [third, first]
    assert len(list_for(db, seed.alice)) == 3


def test_mark_read_rejects_other_users(db, seed, ident):
    (nid, *_rest) = _emit_three(db, seed.alice)

    with pytest.raises(AccessDenied) as exc:
        mark_read(db, ident(seed.bob), nid)
    assert exc.value.code is ErrorCode.NOT_OWNER
    db.rollback()
    assert db.get(Notification, nid).read is False

    with pytest.raises(NotFound):
        mark_read(db, ident(seed.alice), 999)


def test_mark_all_read_only_touches_own_notifications(db, seed, ident):
    _emit_three(db, seed.alice)
    emit(db, seed.bob, "For Bob")
    db.commit()

    assert mark_all_read(db, ident(seed.alice)) == 3
    db.commit()
    assert unread_count(db, seed.alice) == 0
    assert unread_count(db, seed.bob) == 1


def test_notifications_page(client, db, seed):
    emit(db, seed.alice, "Old news")
    unread = emit(db, seed.alice, "Fresh news")
    old = db.query(Notification).filter(Notification.message == "Old news").one()
    old.read = True
    db.commit()

    client.login("alice@north.edu")
    r = client.get("/student/notifications")
    assert b"Old news" in r.data
    assert b"Fresh news" in r.data

    r = client.get("/student/notifications?filter=unread")
    assert b"Fresh news" in r.data
    assert b"Old news" not in r.data

    r = client.post(f"/student/notifications/{unread.id}/read", data={"filter": "unread"}, follow_redirects=True)
    assert b"Fresh news" not in r.data
    db.expire_all()
    assert db.get(Notification, unread.id).read is True


def test_notifications_page_cannot_mark_someone_elses(client, db, seed):
    n = emit(db, seed.alice, "Private")
    db.commit()

    client.login("bob@north.edu")
    r = client.post(f"/student/notifications/{n.id}/read", follow_redirects=True)
    assert b"only manage your own" in r.data
    db.expire_all()
    assert db.get(Notification, n.id).read is False
