"""
Release phase: migrate the schema to head, then seed the default university
and its admin. Safe to re-run.

    python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def database_url() -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set; refusing to release against an implicit SQLite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL points at SQLite but ENV is production. Use Postgres.")
    return url


def upgrade_schema(url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", url)
    command.upgrade(cfg, "head")


def run_release() -> None:
    url = database_url()
    steps = (
        ("alembic upgrade head", lambda: upgrade_schema(url)),
        ("seed university and admin", lambda: _seed(url)),
    )
    for label, step in steps:
        print(f"[release] {label}...", flush=True)
        step()
    print("[release] done", flush=True)


def _seed(url: str) -> None:
    from scripts import init_db

    init_db.seed_only(database_url=url)


if __name__ == "__main__":
    run_release()
