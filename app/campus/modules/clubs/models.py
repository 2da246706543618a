from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.campus.models import Base, University, User

if TYPE_CHECKING:
    from app.campus.modules.applications.models import ClubApplication
    from app.campus.modules.posts.models import Post


class Club(Base):
    __tablename__ = "clubs"
    __table_args__ = (
        UniqueConstraint("university_id", "name", name="uq_clubs_university_name"),
        Index("idx_clubs_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    university_id: Mapped[int] = mapped_column(ForeignKey("universities.id", ondelete="CASCADE"), nullable=False)
    # Exactly one admin per club and one club per admin.
    admin_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    university: Mapped[University] = relationship(lazy="selectin")
    admin: Mapped[User] = relationship(foreign_keys=[admin_user_id], lazy="selectin")

    # Cascades: deleting a club removes everything it owns.
    posts: Mapped[list["Post"]] = relationship(
        "Post",
        back_populates="club",
        cascade="all, delete-orphan",
    )
    applications: Mapped[list["ClubApplication"]] = relationship(
        "ClubApplication",
        back_populates="club",
        cascade="all, delete-orphan",
    )
    follows: Mapped[list["Follow"]] = relationship(
        "Follow",
        back_populates="club",
        cascade="all, delete-orphan",
    )
    members: Mapped[list["ClubMember"]] = relationship(
        "ClubMember",
        back_populates="club",
        cascade="all, delete-orphan",
    )


class Follow(Base):
    """Existence of the row means "following". No other state."""

    __tablename__ = "follows"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    club_id: Mapped[int] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    club: Mapped[Club] = relationship(back_populates="follows")


class ClubMember(Base):
    __tablename__ = "club_members"
    __table_args__ = (
        Index("idx_club_members_club", "club_id"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    club_id: Mapped[int] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), primary_key=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    club: Mapped[Club] = relationship(back_populates="members")
    user: Mapped[User] = relationship(lazy="selectin")
