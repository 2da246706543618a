from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func

from app.campus.errors import AccessDenied, ErrorCode, NotFound
from app.campus.modules.notifications.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.campus.modules.applications.models import ClubApplication
    from app.campus.rbac import Identity


def emit(s: "Session", user_id: int, message: str, application: "ClubApplication | None" = None) -> Notification:
    """Create an unread notification. Only workflow transitions call this."""
    n = Notification(
        user_id=user_id,
        message=message,
        related_application_id=application.id if application is not None else None,
        read=False,
    )
    s.add(n)
    s.flush()
    return n


def mark_read(s: "Session", identity: "Identity", notification_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if n is None:
        raise NotFound("Notification not found.")
    if n.user_id != identity.user_id:
        raise AccessDenied(ErrorCode.NOT_OWNER)
    n.read = True
    return n


def mark_all_read(s: "Session", identity: "Identity") -> int:
    rows = (
        s.query(Notification)
        .filter(Notification.user_id == identity.user_id, Notification.read.is_(False))
        .all()
    )
    for n in rows:
        n.read = True
    return len(rows)


def list_for(s: "Session", user_id: int, *, unread_only: bool = False) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def unread_count(s: "Session", user_id: int) -> int:
    return (
        s.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .scalar()
        or 0
    )
