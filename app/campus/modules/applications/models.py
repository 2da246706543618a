from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.campus.constants import ApplicationStatus
from app.campus.models import Base, User

if TYPE_CHECKING:
    from app.campus.modules.clubs.models import Club
    from app.campus.modules.notifications.models import Notification


class ClubApplication(Base):
    __tablename__ = "club_applications"
    __table_args__ = (
        # At most one PENDING row per (user, club); resolved rows are history.
        Index(
            "uq_club_applications_pending",
            "user_id",
            "club_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index("idx_club_applications_club_status", "club_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    club_id: Mapped[int] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, native_enum=False, length=16),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    resolved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    club: Mapped["Club"] = relationship("Club", back_populates="applications", lazy="selectin")
    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")
    # Notifications outlive the application; their reference is nulled on delete.
    notifications: Mapped[list["Notification"]] = relationship(
        "Notification",
        back_populates="application",
    )
