from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    WRONG_ROLE = "WRONG_ROLE"
    NOT_OWNER = "NOT_OWNER"
    NOT_MEMBER = "NOT_MEMBER"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    DUPLICATE_PENDING_APPLICATION = "DUPLICATE_PENDING_APPLICATION"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    VALIDATION = "VALIDATION"


class CampusError(Exception):
    """
    Base for failures that are recovered into a user-facing message.
    Blueprints catch this, flash `message` and redirect.
    """

    code: ErrorCode = ErrorCode.VALIDATION
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None, *, code: ErrorCode | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class AccessDenied(CampusError):
    default_message = "You are not allowed to do that."

    def __init__(self, reason: ErrorCode, message: str | None = None) -> None:
        super().__init__(message or _DENY_MESSAGES.get(reason), code=reason)


class NotFound(CampusError):
    code = ErrorCode.NOT_FOUND
    default_message = "Not found."


class AlreadyResolved(CampusError):
    code = ErrorCode.ALREADY_RESOLVED
    default_message = "This application has already been resolved."


class DuplicatePendingApplication(CampusError):
    code = ErrorCode.DUPLICATE_PENDING_APPLICATION
    default_message = "You already have a pending application for this club."


class ConstraintViolation(CampusError):
    code = ErrorCode.CONSTRAINT_VIOLATION
    default_message = "That conflicts with an existing record."


class ValidationError(CampusError):
    code = ErrorCode.VALIDATION
    default_message = "Invalid input."


class UploadTooLarge(ValidationError):
    default_message = "Image too large."


_DENY_MESSAGES = {
    ErrorCode.UNAUTHENTICATED: "Please log in to continue.",
    ErrorCode.WRONG_ROLE: "Your account type cannot do that.",
    ErrorCode.NOT_OWNER: "You can only manage your own club or university.",
    ErrorCode.NOT_MEMBER: "Only club members can do that.",
}


def deny_message(reason: ErrorCode) -> str:
    return _DENY_MESSAGES.get(reason, AccessDenied.default_message)
