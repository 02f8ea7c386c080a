#!/usr/bin/env python3
"""
Compare marks held by books with the free pool.

Reports:
  - occupied: distinct marks currently held by books
  - also_free: occupied marks that are ALSO in the free pool (should be empty;
    fix with scripts/50_cleanup_repair/cleanup_free_marks.py)
  - pool_by_series: free marks per prefix group

Read-only.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List

# Ensure repo root on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select  # noqa: E402

import db.session as _dbs  # noqa: E402
from db.models import Book, FreeMark  # noqa: E402
from marks.allocator import canonical_mark  # noqa: E402


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def build_report(session) -> dict:
    occupied = sorted({canonical_mark(m) for m in session.execute(
        select(Book.mark).where(Book.mark.is_not(None))
    ).scalars()} - {""})
    pool = set(session.execute(select(FreeMark.mark)).scalars())
    also_free = [m for m in occupied if m in pool]
    by_series = dict(session.execute(
        select(FreeMark.series, func.count(FreeMark.id)).group_by(FreeMark.series).order_by(FreeMark.series)
    ).all())
    return {
        "occupied_total": len(occupied),
        "not_in_pool": len(occupied) - len(also_free),
        "also_free": also_free,
        "pool_total": len(pool),
        "pool_by_series": by_series,
    }


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Report occupied marks vs the free pool")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--out", default=None, help="Write a JSON report to this path")
    args = p.parse_args(argv)

    reconfigure_db(args.db_url)
    with _dbs.get_session() as session:
        report = build_report(session)

    print(f"Occupied total: {report['occupied_total']}")
    print(f"Not in free pool (as expected): {report['not_in_pool']}")
    print(f"Occupied AND free (needs cleanup): {len(report['also_free'])}")
    if report["also_free"]:
        print(report["also_free"][:50])
    print(f"Free pool: {report['pool_total']}")
    for series, n in report["pool_by_series"].items():
        print(f"  {series}: {n}")

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(report, indent=2), encoding="utf8")
        print(f"Wrote report: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
