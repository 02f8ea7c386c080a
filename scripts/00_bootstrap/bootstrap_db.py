#!/usr/bin/env python3
"""Project database bootstrapper

Creates or upgrades the database schema to the latest Alembic revision.

Defaults are safe:
- Uses Alembic migrations by default (no destructive operations)
- Accepts --db-url to override target DB (preferred over env var on Windows)
- Falls back to SQLAlchemy metadata create_all if Alembic is unavailable

Examples:
  python scripts/00_bootstrap/bootstrap_db.py --db-url sqlite:///./data/bmark_manager.db

Optional:
  --use-metadata      Use SQLAlchemy Base.metadata.create_all instead of Alembic
  --echo              Enable SQL echo for troubleshooting
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.engine import make_url  # noqa: E402
from sqlalchemy.exc import IntegrityError, OperationalError  # noqa: E402

from db.models import Base  # noqa: E402
from db.session import DEFAULT_DB_URL, _normalize_sqlite_url  # noqa: E402

BASELINE_REVISION = "0001_initial"


def _ensure_sqlite_dir(db_url: str, project_root: Path) -> None:
    # Create parent directory for SQLite files if needed
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        db_path = Path(url.database)
        if not db_path.is_absolute():
            db_path = (project_root / db_path).resolve()
        db_path.parent.mkdir(parents=True, exist_ok=True)


def _run_alembic_upgrade_head(db_url: str, project_root: Path) -> int:
    try:
        from alembic.config import Config  # type: ignore
        from alembic import command  # type: ignore
    except ImportError as e:  # Alembic not installed
        print("[warn] Alembic not available:", e)
        return 2

    ini_path = project_root / "alembic.ini"
    if not ini_path.is_file():
        print(f"[error] alembic.ini not found at {ini_path}")
        return 2

    cfg = Config(str(ini_path))
    # Ensure script location and URL are set correctly
    cfg.set_main_option("script_location", str(project_root / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print("Running Alembic upgrade to head...")
    try:
        command.upgrade(cfg, "head")
        print("Alembic upgrade complete.")
    except IntegrityError as ie:
        # Occurs when the version row is already present (idempotent re-run)
        print(f"[warn] Alembic IntegrityError during upgrade: {ie}; stamping baseline and retrying...")
        command.stamp(cfg, BASELINE_REVISION)
        command.upgrade(cfg, "head")
        print(f"Alembic upgrade complete after stamping {BASELINE_REVISION}.")
    except OperationalError as e:
        print(f"[error] Alembic upgrade failed: {e}")
        return 2
    # Safety net: ensure all ORM-declared tables exist (no-ops for existing tables)
    eng = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=eng)
    eng.dispose()
    print("Verified baseline tables via SQLAlchemy metadata.")
    return 0


def _create_with_metadata(db_url: str, echo: bool = False) -> int:
    print("Creating tables via SQLAlchemy metadata (create_all)...")
    os.environ["BMARK_DB_URL"] = db_url
    engine = create_engine(db_url, echo=echo, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    print("Metadata create_all complete.")
    return 0


def parse_args(argv: list[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Bootstrap/upgrade the project database schema")
    ap.add_argument("--db-url", dest="db_url", default=os.environ.get("BMARK_DB_URL", DEFAULT_DB_URL),
                    help="Target database URL (overrides env var BMARK_DB_URL)")
    ap.add_argument("--use-metadata", action="store_true",
                    help="Use SQLAlchemy Base.metadata.create_all instead of Alembic")
    ap.add_argument("--echo", action="store_true", help="Echo SQL statements (metadata mode)")
    return ap.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    # Anchor relative sqlite paths at the repo root, same as db.session
    db_url = _normalize_sqlite_url(args.db_url)
    print(f"Target DB URL: {db_url}")
    _ensure_sqlite_dir(db_url, PROJECT_ROOT)

    if args.use_metadata:
        return _create_with_metadata(db_url, echo=args.echo)

    # Prefer Alembic; fall back to metadata if Alembic is not available
    rc = _run_alembic_upgrade_head(db_url, PROJECT_ROOT)
    if rc != 0:
        print("[warn] Falling back to SQLAlchemy metadata create_all...")
        return _create_with_metadata(db_url, echo=args.echo)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
