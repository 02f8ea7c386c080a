#!/usr/bin/env python3
"""
Load the size-to-prefix rule table (YAML SSOT) into the size_rule/size_band tables.

Dry-run by default: the file is parsed and validated, overlapping width
buckets are listed, and nothing is written. Add --commit to replace the
stored table.

Usage:
  python scripts/20_loaders/load_size_rules.py                      # data/size_rules.yaml
  python scripts/20_loaders/load_size_rules.py --file my_rules.yaml --commit
  python scripts/20_loaders/load_size_rules.py --db-url sqlite:///./data/bmark_manager.db --commit
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
from marks import config  # noqa: E402
from marks.rules import RuleTableError, find_overlaps, load_rule_table, store_rule_table  # noqa: E402


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Load size rule YAML into the DB (dry-run by default)")
    p.add_argument("--file", "-f", default=None, help="Rule table YAML (default: BMARK_RULES_FILE or data/size_rules.yaml)")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--commit", action="store_true", help="Apply changes (default: dry-run)")
    args = p.parse_args(argv)

    path = Path(args.file) if args.file else config.rules_file()
    if not path.exists():
        print("File not found:", path)
        return 2
    try:
        table = load_rule_table(path)
    except RuleTableError as e:
        print(f"ERROR: invalid rule table {path}: {e}")
        return 2

    print(f"Rule table {table.version}: {len(table.rules)} width buckets, prefixes: {', '.join(table.prefixes())}")
    for a, b in find_overlaps(table.rules):
        print(f"  overlap: {a.label or '-'} {a.describe()} / {b.label or '-'} {b.describe()} (first wins)")

    if not args.commit:
        print("Dry-run: no changes written. Use --commit to store the table.")
        return 0

    reconfigure_db(args.db_url)
    with _dbs.get_session() as session:
        n = store_rule_table(session, table)
        session.commit()
    print(f"Stored {n} rules (version={table.version}); commit=True")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
