from __future__ import annotations

import secrets
from dataclasses import dataclass

from flask import Request, session
from werkzeug.security import check_password_hash, generate_password_hash


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form, header, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


@dataclass(frozen=True)
class PasswordHasher:
    """
    Salted one-way hashing via werkzeug. `method` is any werkzeug method string
    ("scrypt", "pbkdf2:sha256:600000", ...); verification reads the method
    from the stored hash, so changing it does not invalidate old hashes.
    """

    method: str = "scrypt"

    def hash(self, password: str) -> str:
        return generate_password_hash(password, method=self.method)

    def verify(self, password_hash: str, password: str) -> bool:
        if not password_hash:
            return False
        return check_password_hash(password_hash, password)


def password_hasher_from_config(config: dict) -> PasswordHasher:
    return PasswordHasher(method=(config.get("PASSWORD_HASH_METHOD") or "scrypt").strip())
