#!/usr/bin/env python3
"""
Repair the free-mark pool.

Two passes:
  1. normalize: trim + lowercase every mark and recompute its series; when the
     normalized value already exists, the duplicate row is dropped.
  2. occupied: delete pool rows whose mark is currently held by a book (a mark
     must never be both free and assigned).

Dry-run by default; add --commit to write. --out writes a JSON report.

Usage:
  python scripts/50_cleanup_repair/cleanup_free_marks.py
  python scripts/50_cleanup_repair/cleanup_free_marks.py --commit --out reports/cleanup_free_marks.json
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Dict, List

# Ensure repo root on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

import db.session as _dbs  # noqa: E402
from db.models import Book, FreeMark  # noqa: E402
from marks.allocator import canonical_mark, mark_series  # noqa: E402


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def normalize_pool(session) -> Dict[str, List[str]]:
    """Trim/lowercase marks in place; drop rows that collapse onto an existing mark."""
    rows = session.execute(select(FreeMark).order_by(FreeMark.rank, FreeMark.id)).scalars().all()
    seen: Dict[str, FreeMark] = {}
    renamed: List[str] = []
    dropped: List[str] = []
    # Canonical spellings claim their slot first so renames never collide with them
    for fm in rows:
        if fm.mark == canonical_mark(fm.mark):
            seen[fm.mark] = fm
    for fm in rows:
        norm = canonical_mark(fm.mark)
        if fm.mark == norm:
            if fm.series != mark_series(norm):
                fm.series = mark_series(norm)
            continue
        if not norm or norm in seen:
            dropped.append(fm.mark)
            session.delete(fm)
            continue
        renamed.append(f"{fm.mark!r} -> {norm}")
        fm.mark = norm
        fm.series = mark_series(norm)
        seen[norm] = fm
    session.flush()
    return {"renamed": renamed, "dropped_duplicates": dropped}


def remove_occupied(session) -> List[str]:
    held = {canonical_mark(m) for m in session.execute(
        select(Book.mark).where(Book.mark.is_not(None))
    ).scalars()}
    held.discard("")
    if not held:
        return []
    rows = session.execute(select(FreeMark).where(FreeMark.mark.in_(sorted(held)))).scalars().all()
    removed = [fm.mark for fm in rows]
    for fm in rows:
        session.delete(fm)
    session.flush()
    return removed


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Normalize the free-mark pool and drop occupied marks (dry-run by default)")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--commit", action="store_true", help="Apply changes (default: dry-run)")
    p.add_argument("--out", default=None, help="Write a JSON report to this path")
    args = p.parse_args(argv)

    reconfigure_db(args.db_url)
    with _dbs.get_session() as session:
        norm = normalize_pool(session)
        removed = remove_occupied(session)
        if args.commit:
            session.commit()
        else:
            session.rollback()

    print(f"Normalized: {len(norm['renamed'])}; duplicates dropped: {len(norm['dropped_duplicates'])}")
    print(f"Removed occupied marks from pool: {len(removed)}")
    if removed:
        print("  sample:", removed[:20])
    print(f"commit={args.commit}")

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        report = {"commit": args.commit, "occupied_removed": removed, **norm}
        out.write_text(json.dumps(report, indent=2), encoding="utf8")
        print(f"Wrote report: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
