"""
Release-phase helper for DigitalOcean App Platform.

Goal:
- Fail fast if DATABASE_URL is missing (avoid silently using SQLite in prod).
- Run alembic migrations and report the revision the database ended on.
- Seed permissions/roles/admin user and built-in templates (idempotent; does NOT overwrite existing passwords),
  then report what the seed actually added so a no-op release is visible in the deploy log.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(
            f"Missing required environment variable {name}. "
            "On DigitalOcean App Platform, set this in Settings > Environment Variables."
        )
    return v


def _current_revision(db_url: str) -> str | None:
    from alembic.runtime.migration import MigrationContext
    from sqlalchemy import create_engine

    engine = create_engine(db_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            return MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()


def format_seed_summary(summary: dict) -> list[str]:
    """Deploy-log lines for an ``init_db.seed_only`` result."""
    perms = summary.get("permissions_added") or []
    roles = summary.get("roles_added") or []
    lines = [
        f"Permissions added: {len(perms)}" + (f" ({', '.join(perms)})" if perms else ""),
        f"Roles added: {', '.join(roles) if roles else 'none'}",
        f"Admin user: {summary.get('admin_email')} ({'created' if summary.get('admin_created') else 'already present'})",
        f"Built-in templates added: {summary.get('templates_added', 0)}",
    ]
    return lines


def run_release() -> dict:
    db_url = _require_env("DATABASE_URL")
    # Guardrail: prevent accidental prod deploys against SQLite.
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print("=== QMS release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    before = _current_revision(db_url)
    print(f"Running Alembic migrations from {before or '(empty database)'}...", flush=True)
    command.upgrade(cfg, "head")
    after = _current_revision(db_url)
    print(f"Migrations complete. Database at revision {after}.", flush=True)

    print("Seeding permissions/admin/templates (idempotent)...", flush=True)
    from scripts import init_db

    summary = init_db.seed_only(database_url=db_url)
    for line in format_seed_summary(summary):
        print(line, flush=True)
    print("=== QMS release done ===", flush=True)
    return {"revision_before": before, "revision": after, **summary}


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
