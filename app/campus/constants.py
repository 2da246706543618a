"""
Central constants for the campus clubs application.
"""
from __future__ import annotations

import enum


class Role(str, enum.Enum):
    """Account role. Assigned at creation, never changed afterwards."""

    STUDENT = "STUDENT"
    CLUB_ADMIN = "CLUB_ADMIN"
    UNIVERSITY_ADMIN = "UNIVERSITY_ADMIN"


class ApplicationStatus(str, enum.Enum):
    # PENDING -> ACCEPTED (terminal) | REJECTED (reapply creates a new row)
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


ALLOWED_IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp"})

POST_TEXT_MAX = 5000
COMMENT_TEXT_MAX = 1000
CLUB_NAME_MAX = 255

FEED_PAGE_SIZE = 50

# Landing endpoint per role after login.
ROLE_HOME_ENDPOINT = {
    Role.STUDENT: "student.feed",
    Role.CLUB_ADMIN: "club_admin.dashboard",
    Role.UNIVERSITY_ADMIN: "university.index",
}
