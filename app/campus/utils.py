from __future__ import annotations

import re

from flask import redirect, request, url_for
from werkzeug.datastructures import FileStorage

from app.campus.modules.posts.service import ImageUpload

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def safe_next(nxt: str | None) -> str | None:
    """Only local absolute paths; rejects scheme-relative "//host" targets."""
    nxt = (nxt or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def redirect_back(default_endpoint: str, **values):
    referrer = request.referrer
    if referrer and referrer.startswith(request.host_url):
        return redirect(referrer)
    return redirect(url_for(default_endpoint, **values))


def image_from_request(field: str = "image") -> ImageUpload | None:
    f: FileStorage | None = request.files.get(field)
    if not f or not f.filename:
        return None
    return ImageUpload(
        data=f.read(),
        filename=f.filename,
        content_type=(f.mimetype or "application/octet-stream").strip(),
    )
