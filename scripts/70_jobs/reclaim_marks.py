#!/usr/bin/env python3
"""
Return marks of retired books to the free pool.

Books in historicized/early_return whose state_entered_at is older than the
retention window (BMARK_RETENTION_DAYS, default 7) lose their mark; the mark
goes back into the pool with the reclaim rank. Each run holds a job-row lock,
so overlapping runs skip instead of racing.

Modes:
  (default)     run once now
  --dry-run     report what would be released, write nothing
  --schedule    run daily at BMARK_RECLAIM_AT (default 02:15) in
                BMARK_RECLAIM_TZ (default Europe/Berlin) until interrupted
  --force-unlock  clear the job lock left by a crashed run

Usage:
  python scripts/70_jobs/reclaim_marks.py --dry-run
  python scripts/70_jobs/reclaim_marks.py --schedule
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time as _time
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo

# Ensure repo root on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db.session as _dbs  # noqa: E402
from marks import config  # noqa: E402
from marks.reclaimer import force_unlock, run_reclaim_job  # noqa: E402

_log = logging.getLogger("reclaim_marks")


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def next_run(now: datetime, at: time, tz: ZoneInfo) -> datetime:
    """Next wall-clock occurrence of `at` in `tz` strictly after `now` (aware)."""
    local = now.astimezone(tz)
    candidate = datetime.combine(local.date(), at, tzinfo=tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


def run_once(as_of: Optional[datetime], dry_run: bool) -> int:
    # The schema must exist before the job lock row can be written
    with _dbs.get_session():
        pass
    result = run_reclaim_job(_dbs.session_factory(), as_of=as_of, dry_run=dry_run)
    if result is None:
        print("Another reclaim run holds the lock; nothing done.")
        return 1
    print(json.dumps(result.as_dict()))
    return 0


def run_schedule(dry_run: bool) -> int:
    at = config.reclaim_at()
    tz = ZoneInfo(config.reclaim_tz())
    _log.info("reclaim scheduled daily at %s %s", at.strftime("%H:%M"), tz.key)
    try:
        while True:
            now = datetime.now(tz)
            due = next_run(now, at, tz)
            _log.info("next run at %s", due.isoformat())
            _time.sleep(max(0.0, (due - datetime.now(tz)).total_seconds()))
            try:
                run_once(None, dry_run)
            except Exception:
                # Keep the schedule alive; the failed job row records the failure
                _log.exception("reclaim run failed")
    except KeyboardInterrupt:
        _log.info("scheduler stopped")
    return 0


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Release marks of retired books back to the pool")
    p.add_argument("--dry-run", action="store_true", help="Report eligible books without writing")
    p.add_argument("--schedule", action="store_true", help="Run daily at BMARK_RECLAIM_AT in BMARK_RECLAIM_TZ")
    p.add_argument("--force-unlock", action="store_true", help="Clear a reclaim lock left by a crashed run, then exit")
    p.add_argument("--as-of", default=None, help="ISO timestamp (UTC) to evaluate eligibility at; default now")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    reconfigure_db(args.db_url)

    if args.force_unlock:
        with _dbs.get_session():
            pass
        n = force_unlock(_dbs.session_factory())
        print(f"Cleared {n} lock(s).")
        return 0

    if args.schedule:
        return run_schedule(args.dry_run)

    as_of = None
    if args.as_of:
        try:
            as_of = datetime.fromisoformat(args.as_of)
        except ValueError:
            print(f"Invalid --as-of value: {args.as_of!r}")
            return 2
        if as_of.tzinfo is not None:
            # Stored timestamps are naive UTC
            as_of = as_of.astimezone(timezone.utc).replace(tzinfo=None)
    return run_once(as_of, args.dry_run)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
