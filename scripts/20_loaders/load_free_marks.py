#!/usr/bin/env python3
"""
Seed the free-mark pool.

Marks come from a text file (one per line, '#' comments allowed) and/or a
generated range (--series egk --start 1 --end 200 -> egk001..egk200). Marks
are stored trimmed + lowercase with a rank computed from the numeric suffix
(...00 -> 2, ...0 -> 1, else 0). Marks already in the pool or currently held
by a book are skipped.

Dry-run by default; add --commit to write.

Usage:
  python scripts/20_loaders/load_free_marks.py --file marks.txt --commit
  python scripts/20_loaders/load_free_marks.py --series egk --start 1 --end 200 --commit
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Iterable, List

# Ensure repo root on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select  # noqa: E402

import db.session as _dbs  # noqa: E402
from db.models import Book, FreeMark  # noqa: E402
from marks.allocator import canonical_mark, compute_rank, mark_series  # noqa: E402


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def read_marks(path: Path) -> List[str]:
    out: List[str] = []
    for ln in path.read_text(encoding="utf8").splitlines():
        s = ln.split("#", 1)[0].strip()
        if s:
            out.append(s)
    return out


def generate_marks(series: str, start: int, end: int, width: int = 3) -> List[str]:
    s = canonical_mark(series)
    return [f"{s}{n:0{width}d}" for n in range(start, end + 1)]


def seed_marks(session, marks: Iterable[str]) -> dict:
    """Add marks to the pool; returns counts. Caller commits."""
    in_pool = set(session.execute(select(FreeMark.mark)).scalars())
    held = {m for m in session.execute(
        select(func.lower(func.trim(Book.mark))).where(Book.mark.is_not(None))
    ).scalars() if m}
    added = skipped_pool = skipped_held = invalid = 0
    for raw in marks:
        m = canonical_mark(raw)
        if not m or not mark_series(m):
            invalid += 1
            continue
        if m in in_pool:
            skipped_pool += 1
            continue
        if m in held:
            skipped_held += 1
            continue
        session.add(FreeMark(mark=m, series=mark_series(m), rank=compute_rank(m)))
        in_pool.add(m)
        added += 1
    session.flush()
    return {"added": added, "already_in_pool": skipped_pool, "held_by_book": skipped_held, "invalid": invalid}


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Seed the free-mark pool (dry-run by default)")
    p.add_argument("--file", "-f", default=None, help="Text file with one mark per line")
    p.add_argument("--series", default=None, help="Generate marks for this prefix group, e.g. egk")
    p.add_argument("--start", type=int, default=1)
    p.add_argument("--end", type=int, default=None, help="Last number to generate (inclusive)")
    p.add_argument("--digits", type=int, default=3, help="Zero-padded width of generated numbers")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--commit", action="store_true", help="Apply changes (default: dry-run)")
    args = p.parse_args(argv)

    marks: List[str] = []
    if args.file:
        path = Path(args.file)
        if not path.exists():
            print("File not found:", path)
            return 2
        marks.extend(read_marks(path))
    if args.series:
        if args.end is None:
            print("--series needs --end")
            return 2
        marks.extend(generate_marks(args.series, args.start, args.end, args.digits))
    if not marks:
        print("No marks given (use --file and/or --series/--end).")
        return 2

    reconfigure_db(args.db_url)
    with _dbs.get_session() as session:
        summary = seed_marks(session, marks)
        if args.commit:
            session.commit()
        else:
            session.rollback()

    print(
        f"Marks: {len(marks)}; added: {summary['added']}; already in pool: {summary['already_in_pool']}; "
        f"held by book: {summary['held_by_book']}; invalid: {summary['invalid']}; commit={args.commit}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
