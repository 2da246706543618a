import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.campus.constants import Role
from app.campus.db import build_engine, make_sessionmaker, session_scope
from app.campus.models import Country, University, User
from app.campus.security import PasswordHasher


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the default country/university and a university admin, idempotently.
    Does NOT overwrite an existing admin's password.

    Env:
      SEED_COUNTRY, SEED_UNIVERSITY   default university to create
      UNIVERSITY_ADMIN_EMAIL / UNIVERSITY_ADMIN_PASSWORD
    """
    country_name = (os.environ.get("SEED_COUNTRY") or "Canada").strip()
    university_name = (os.environ.get("SEED_UNIVERSITY") or "Demo University").strip()
    admin_email = (os.environ.get("UNIVERSITY_ADMIN_EMAIL") or "admin@campus.local").strip().lower()
    admin_password = os.environ.get("UNIVERSITY_ADMIN_PASSWORD") or "change-me"
    hasher = PasswordHasher(method=(os.environ.get("PASSWORD_HASH_METHOD") or "scrypt").strip())

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///campus.db").strip()

    with session_scope(make_sessionmaker(build_engine(db_url))) as s:
        country = s.query(Country).filter(Country.name == country_name).one_or_none()
        if not country:
            country = Country(name=country_name)
            s.add(country)
            s.flush()

        university = s.query(University).filter(University.name == university_name).one_or_none()
        if not university:
            university = University(name=university_name, country_id=country.id)
            s.add(university)
            s.flush()

        admin = s.query(User).filter(User.email == admin_email).one_or_none()
        if not admin:
            s.add(
                User(
                    email=admin_email,
                    password_hash=hasher.hash(admin_password),
                    display_name="University admin",
                    role=Role.UNIVERSITY_ADMIN,
                    university_id=university.id,
                    is_active=True,
                )
            )
        elif admin.role is not Role.UNIVERSITY_ADMIN:
            raise RuntimeError(f"{admin_email} exists with role {admin.role.value}; roles cannot be changed.")


def main() -> None:
    seed_only()
    print("Seed complete.")


if __name__ == "__main__":
    main()
