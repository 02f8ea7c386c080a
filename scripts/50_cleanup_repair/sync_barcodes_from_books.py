#!/usr/bin/env python3
"""
Mark barcode labels whose code is held by a book as assigned.

With --mark-free, labels not held by any book are put back to free (blocked
labels are left alone). Dry-run by default; add --commit to write.

Usage:
  python scripts/50_cleanup_repair/sync_barcodes_from_books.py --commit
  python scripts/50_cleanup_repair/sync_barcodes_from_books.py --mark-free --commit
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List

# Ensure repo root on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db.session as _dbs  # noqa: E402
from marks.barcodes import BarcodePool  # noqa: E402


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Sync barcode label status from book marks (dry-run by default)")
    p.add_argument("--mark-free", action="store_true", help="Also free labels that no book holds")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--commit", action="store_true", help="Apply changes (default: dry-run)")
    args = p.parse_args(argv)

    reconfigure_db(args.db_url)
    with _dbs.get_session() as session:
        changed = BarcodePool(session).sync_from_books(mark_free=args.mark_free)
        if args.commit:
            session.commit()
        else:
            session.rollback()

    print(f"Barcodes changed: {changed}; mark_free={args.mark_free}; commit={args.commit}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
