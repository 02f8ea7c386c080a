#!/usr/bin/env python3
"""
Audit coverage of the size-to-prefix rule table.

Walks a (width, height) grid (default width 10.0-27.0 step 0.1, height
17.0-32.0 step 0.5) and lists every combination the table does not resolve,
plus width buckets that overlap (the lower one in evaluation order wins).

By default the stored table is audited; --file audits a YAML table without
touching the DB. Read-only.

Usage:
  python scripts/60_reports_analysis/audit_size_rules.py
  python scripts/60_reports_analysis/audit_size_rules.py --file data/size_rules.yaml --out reports/size_rule_gaps.json
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

import db.session as _dbs  # noqa: E402
from marks.normalize import round1  # noqa: E402
from marks.resolver import resolve_prefix  # noqa: E402
from marks.rules import RuleTable, RuleTableError, find_overlaps, load_rule_table, rules_from_db  # noqa: E402

MAX_PRINTED = 200


def reconfigure_db(db_url: str | None) -> None:
    if not db_url:
        return
    os.environ["BMARK_DB_URL"] = db_url
    _dbs.reconfigure(db_url)


def frange(start: float, stop: float, step: float) -> List[float]:
    # Integer stepping keeps the grid on exact one-decimal values
    n = int(round((stop - start) / step))
    return [round1(start + i * step) for i in range(n + 1)]


def audit(table: RuleTable, widths: List[float], heights: List[float]) -> Dict[str, object]:
    gaps: List[str] = []
    by_prefix: Dict[str, int] = {}
    for w in widths:
        for h in heights:
            p = resolve_prefix(w, h, table)
            if p is None:
                gaps.append(f"{w:.1f}x{h:.1f}")
            else:
                by_prefix[p] = by_prefix.get(p, 0) + 1
    overlaps = [
        {"first": a.label, "first_range": a.describe(), "second": b.label, "second_range": b.describe()}
        for a, b in find_overlaps(table.rules)
    ]
    return {
        "version": table.version,
        "grid_size": len(widths) * len(heights),
        "gaps": gaps,
        "overlaps": overlaps,
        "by_prefix": dict(sorted(by_prefix.items())),
    }


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Audit size rule coverage over a width/height grid")
    p.add_argument("--file", "-f", default=None, help="Audit this YAML rule table instead of the DB")
    p.add_argument("--db-url", default=None, help="Override database URL (defaults to BMARK_DB_URL env var or sqlite:///./data/bmark_manager.db)")
    p.add_argument("--width-min", type=float, default=10.0)
    p.add_argument("--width-max", type=float, default=27.0)
    p.add_argument("--width-step", type=float, default=0.1)
    p.add_argument("--height-min", type=float, default=17.0)
    p.add_argument("--height-max", type=float, default=32.0)
    p.add_argument("--height-step", type=float, default=0.5)
    p.add_argument("--out", default=None, help="Write a JSON report to this path")
    args = p.parse_args(argv)

    if args.file:
        try:
            table = load_rule_table(Path(args.file))
        except (OSError, RuleTableError) as e:
            print(f"ERROR: cannot load {args.file}: {e}")
            return 2
    else:
        reconfigure_db(args.db_url)
        with _dbs.get_session() as session:
            table = rules_from_db(session)
        if not table.rules:
            print("No size rules stored; run scripts/20_loaders/load_size_rules.py --commit first.")
            return 2

    widths = frange(args.width_min, args.width_max, args.width_step)
    heights = frange(args.height_min, args.height_max, args.height_step)
    report = audit(table, widths, heights)
    gaps = report["gaps"]
    overlaps = report["overlaps"]

    print(f"Rule table {report['version']}: grid {len(widths)}x{len(heights)} = {report['grid_size']} combos")
    if gaps:
        print(f"{len(gaps)} uncovered combos:")
        for s in gaps[:MAX_PRINTED]:  # type: ignore[index]
            print("  ", s)
        if len(gaps) > MAX_PRINTED:  # type: ignore[arg-type]
            print("  ...(truncated)")
    else:
        print("No gaps found in the tested grid.")
    for o in overlaps:  # type: ignore[attr-defined]
        print(f"overlap: {o['first']} {o['first_range']} / {o['second']} {o['second_range']}")

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(report, indent=2), encoding="utf8")
        print(f"Wrote report: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
