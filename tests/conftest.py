from types import SimpleNamespace

import pytest
from flask.testing import FlaskClient

from app.campus import create_app
from app.campus.constants import Role
from app.campus.db import session_scope
from app.campus.models import Base, Country, University, User
from app.campus.modules.clubs.models import Club
from app.campus.modules.clubs.service import club_for_admin
from app.campus.rbac import Identity
from app.campus.security import PasswordHasher

PASSWORD = "correct-horse-1"
HASH_METHOD = "pbkdf2:sha256:1000"


class CampusClient(FlaskClient):
    """Test client that sends the session's CSRF token with every POST."""

    def post(self, *args, csrf=True, **kwargs):
        if csrf:
            with self.session_transaction() as sess:
                token = sess.setdefault("csrf_token", "test-csrf-token")
            data = dict(kwargs.pop("data", None) or {})
            data.setdefault("csrf_token", token)
            kwargs["data"] = data
        return super().post(*args, **kwargs)

    def login(self, email, password=PASSWORD, **kwargs):
        return self.post("/login", data={"email": email, "password": password, **kwargs})

    def logout(self):
        return self.post("/logout")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("PASSWORD_HASH_METHOD", HASH_METHOD)
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "UNIVERSITY_ADMIN_SCOPED"):
        monkeypatch.delenv(k, raising=False)

    from app.campus import auth

    auth._login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True
    app.test_client_class = CampusClient

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def seed(app):
    """
    Two universities. North has a scoped university admin, two students and
    the Chess club; South has one student and the Ski club.
    """
    hasher = PasswordHasher(method=HASH_METHOD)

    def user(email, role, university):
        return User(
            email=email,
            password_hash=hasher.hash(PASSWORD),
            display_name=email.split("@")[0].title(),
            role=role,
            university_id=university.id,
            is_active=True,
        )

    with session_scope(app) as s:
        country = Country(name="Canada")
        s.add(country)
        s.flush()
        north = University(name="North University", country_id=country.id)
        south = University(name="South University", country_id=country.id)
        s.add_all([north, south])
        s.flush()

        uadmin = user("dean@north.edu", Role.UNIVERSITY_ADMIN, north)
        alice = user("alice@north.edu", Role.STUDENT, north)
        bob = user("bob@north.edu", Role.STUDENT, north)
        carol = user("carol@south.edu", Role.STUDENT, south)
        chess_admin = user("chess@north.edu", Role.CLUB_ADMIN, north)
        ski_admin = user("ski@south.edu", Role.CLUB_ADMIN, south)
        s.add_all([uadmin, alice, bob, carol, chess_admin, ski_admin])
        s.flush()

        chess = Club(name="Chess Society", description="Weekly blitz.", university_id=north.id, admin_user_id=chess_admin.id)
        ski = Club(name="Ski Club", university_id=south.id, admin_user_id=ski_admin.id)
        s.add_all([chess, ski])
        s.flush()

        ids = SimpleNamespace(
            north=north.id,
            south=south.id,
            uadmin=uadmin.id,
            alice=alice.id,
            bob=bob.id,
            carol=carol.id,
            chess_admin=chess_admin.id,
            ski_admin=ski_admin.id,
            chess=chess.id,
            ski=ski.id,
        )
    return ids


@pytest.fixture()
def client(app, seed):
    return app.test_client()


@pytest.fixture()
def db(app):
    s = app.extensions["sqlalchemy_sessionmaker"]()
    yield s
    s.rollback()
    s.close()


@pytest.fixture()
def ident(db):
    """Build the request-equivalent Identity for a seeded user id."""

    def _ident(user_id, *, scoped=True):
        user = db.get(User, user_id)
        club = club_for_admin(db, user_id)
        return Identity.from_user(user, club_id=club.id if club else None, university_scoped=scoped)

    return _ident
