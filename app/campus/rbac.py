"""
Authorization gate.

`authorize()` maps (identity, action, target) to a `Decision`. It never raises;
callers decide how a deny is surfaced (redirect, 403 page, AccessDenied).
"""
from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import abort, flash, g, redirect, request, url_for

from app.campus.constants import Role
from app.campus.errors import AccessDenied, ErrorCode

if TYPE_CHECKING:
    from app.campus.models import User
    from app.campus.modules.clubs.models import Club


class Scope(str, enum.Enum):
    PUBLIC = "PUBLIC"
    SOCIAL = "SOCIAL"  # any authenticated identity
    STUDENT = "STUDENT"
    CLUB_ADMIN = "CLUB_ADMIN"  # role + owns target club
    UNIVERSITY_ADMIN = "UNIVERSITY_ADMIN"  # role + target inside admin's scope


_SCOPE_ROLE = {
    Scope.STUDENT: Role.STUDENT,
    Scope.CLUB_ADMIN: Role.CLUB_ADMIN,
    Scope.UNIVERSITY_ADMIN: Role.UNIVERSITY_ADMIN,
}


ACTION_SCOPES: dict[str, Scope] = {
    "explore.view": Scope.PUBLIC,
    "club.view": Scope.PUBLIC,
    "club.follow": Scope.SOCIAL,
    "club.unfollow": Scope.SOCIAL,
    "application.apply": Scope.SOCIAL,
    "application.cancel": Scope.SOCIAL,
    "post.create": Scope.SOCIAL,
    "post.comment": Scope.SOCIAL,
    "post.like": Scope.SOCIAL,
    "feed.view": Scope.STUDENT,
    "notification.list": Scope.STUDENT,
    "notification.read": Scope.STUDENT,
    "club.manage": Scope.CLUB_ADMIN,
    "application.accept": Scope.CLUB_ADMIN,
    "application.reject": Scope.CLUB_ADMIN,
    "member.remove": Scope.CLUB_ADMIN,
    "post.moderate": Scope.CLUB_ADMIN,
    "university.view": Scope.UNIVERSITY_ADMIN,
    "club.provision": Scope.UNIVERSITY_ADMIN,
    "club.delete": Scope.UNIVERSITY_ADMIN,
}

# Ordered; first match wins. Anything unlisted is public.
PATH_SCOPES: tuple[tuple[str, Scope], ...] = (
    ("/student", Scope.STUDENT),
    ("/me/posts", Scope.STUDENT),
    ("/club", Scope.CLUB_ADMIN),
    ("/university", Scope.UNIVERSITY_ADMIN),
)

LOGIN_PROMPTS = {
    "club.follow": "Log in to follow clubs.",
    "club.unfollow": "Log in to follow clubs.",
    "application.apply": "Log in to apply to clubs.",
    "application.cancel": "Log in to manage your applications.",
    "post.create": "Log in to post.",
    "post.comment": "Log in to comment.",
    "post.like": "Log in to like posts.",
}


@dataclass(frozen=True)
class Identity:
    """
    Request-scoped identity. Built once per request and passed explicitly
    into service calls.

    club_id: the club a CLUB_ADMIN owns.
    scope_university_id: the university a UNIVERSITY_ADMIN is limited to;
    None means global.
    """

    user_id: int
    email: str
    role: Role
    university_id: int | None = None
    club_id: int | None = None
    scope_university_id: int | None = None

    @classmethod
    def from_user(cls, user: "User", *, club_id: int | None = None, university_scoped: bool = True) -> "Identity":
        scope = None
        if user.role is Role.UNIVERSITY_ADMIN and university_scoped:
            scope = user.university_id
        return cls(
            user_id=user.id,
            email=user.email,
            role=user.role,
            university_id=user.university_id,
            club_id=club_id if user.role is Role.CLUB_ADMIN else None,
            scope_university_id=scope,
        )


@dataclass(frozen=True)
class Target:
    club_id: int | None = None
    club_admin_id: int | None = None
    university_id: int | None = None

    @classmethod
    def for_club(cls, club: "Club") -> "Target":
        return cls(club_id=club.id, club_admin_id=club.admin_user_id, university_id=club.university_id)

    @classmethod
    def for_university(cls, university_id: int) -> "Target":
        return cls(university_id=university_id)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: ErrorCode | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: ErrorCode) -> Decision:
    return Decision(False, reason)


def check_scope(identity: Identity | None, scope: Scope, target: Target | None = None) -> Decision:
    if scope is Scope.PUBLIC:
        return ALLOW
    if identity is None:
        return deny(ErrorCode.UNAUTHENTICATED)
    if scope is Scope.SOCIAL:
        return ALLOW
    if identity.role is not _SCOPE_ROLE[scope]:
        return deny(ErrorCode.WRONG_ROLE)
    if target is None:
        return ALLOW
    if scope is Scope.CLUB_ADMIN:
        if target.club_admin_id != identity.user_id:
            return deny(ErrorCode.NOT_OWNER)
    elif scope is Scope.UNIVERSITY_ADMIN:
        if identity.scope_university_id is not None and target.university_id != identity.scope_university_id:
            return deny(ErrorCode.NOT_OWNER)
    return ALLOW


def authorize(identity: Identity | None, action: str, target: Target | None = None) -> Decision:
    scope = ACTION_SCOPES.get(action)
    if scope is None:
        return deny(ErrorCode.WRONG_ROLE)
    return check_scope(identity, scope, target)


def require(identity: Identity | None, action: str, target: Target | None = None) -> Identity:
    """Raising form of authorize() for service code; returns the acting identity."""
    decision = authorize(identity, action, target)
    if not decision:
        raise AccessDenied(decision.reason or ErrorCode.WRONG_ROLE)
    if identity is None:
        raise AccessDenied(ErrorCode.UNAUTHENTICATED)
    return identity


def scope_for_path(path: str) -> Scope:
    for prefix, scope in PATH_SCOPES:
        if path == prefix or path.startswith(prefix + "/"):
            return scope
    return Scope.PUBLIC


def authorize_path(identity: Identity | None, path: str) -> Decision:
    """Role-only check for a request path. Ownership is checked per action."""
    return check_scope(identity, scope_for_path(path))


def current_identity() -> Identity | None:
    return getattr(g, "identity", None)


def login_redirect(prompt: str | None = None):
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    if request.method != "GET":
        # Come back to the page the form was on, not the POST endpoint.
        ref = request.referrer or ""
        nxt = ref[len(request.host_url) - 1:] if ref.startswith(request.host_url) else "/"
    flash(prompt or "Please log in to continue.", "info")
    return redirect(url_for("auth.login_get", next=nxt))


def require_action(action: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Guard for SOCIAL routes living under public prefixes. Anonymous users get a
    friendly login prompt instead of an auth challenge.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            decision = authorize(current_identity(), action)
            if decision.reason is ErrorCode.UNAUTHENTICATED:
                return login_redirect(LOGIN_PROMPTS.get(action))
            if not decision:
                g.deny_reason = decision.reason
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
