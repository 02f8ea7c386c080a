"""Size-to-prefix rule table.

The YAML file under ``data/size_rules.yaml`` is the single source of truth; it
is loaded into the ``size_rule`` / ``size_band`` tables by
``scripts/20_loaders/load_size_rules.py`` and read back with
:func:`rules_from_db`. Both sides produce the same immutable dataclasses that
the resolver works on.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ruamel.yaml import YAML
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from db import models

BAND_KINDS = ("eq", "lt", "gt")


class RuleTableError(ValueError):
    pass


@dataclass(frozen=True)
class Band:
    kind: str
    prefix: str
    value: Optional[float] = None
    values: Tuple[float, ...] = ()
    inclusive: bool = False


@dataclass(frozen=True)
class SizeRule:
    bands: Tuple[Band, ...]
    min_width: Optional[float] = None
    max_width: Optional[float] = None
    min_inclusive: bool = False
    max_inclusive: bool = True
    priority: int = 0
    position: int = 0
    label: Optional[str] = None

    def contains_width(self, w: float) -> bool:
        if self.min_width is not None:
            if self.min_inclusive and w < self.min_width:
                return False
            if not self.min_inclusive and w <= self.min_width:
                return False
        if self.max_width is not None:
            if self.max_inclusive and w > self.max_width:
                return False
            if not self.max_inclusive and w >= self.max_width:
                return False
        return True

    def describe(self) -> str:
        lo = "(-inf" if self.min_width is None else ("[" if self.min_inclusive else "(") + f"{self.min_width:g}"
        hi = "+inf)" if self.max_width is None else f"{self.max_width:g}" + ("]" if self.max_inclusive else ")")
        return f"{lo}, {hi}"


def _sort_key(rule: SizeRule) -> tuple:
    # Ascending upper bound (open-ended buckets last), then priority, then declaration order
    upper = rule.max_width if rule.max_width is not None else float("inf")
    return (upper, rule.priority, rule.position)


@dataclass
class RuleTable:
    version: str
    rules: List[SizeRule] = field(default_factory=list)

    def ordered(self) -> List[SizeRule]:
        return sorted(self.rules, key=_sort_key)

    def prefixes(self) -> List[str]:
        seen: Dict[str, None] = {}
        for r in self.rules:
            for b in r.bands:
                seen.setdefault(b.prefix, None)
        return list(seen)


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------

def _num(v: Any, where: str) -> Optional[float]:
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise RuleTableError(f"{where}: expected a number, got {v!r}")
    return float(v)


def _parse_band(node: Dict[str, Any], where: str) -> Band:
    kinds = [k for k in BAND_KINDS if k in node]
    if len(kinds) != 1:
        raise RuleTableError(f"{where}: band needs exactly one of {BAND_KINDS}, got {sorted(node)}")
    kind = kinds[0]
    prefix = str(node.get("prefix") or "").strip().lower()
    if not prefix:
        raise RuleTableError(f"{where}: band without prefix")
    if kind == "eq":
        raw = node["eq"]
        if not isinstance(raw, (list, tuple)) or not raw:
            raise RuleTableError(f"{where}: 'eq' needs a non-empty list of heights")
        values = tuple(_num(v, where) for v in raw)
        return Band(kind="eq", prefix=prefix, values=values)  # type: ignore[arg-type]
    return Band(
        kind=kind,
        prefix=prefix,
        value=_num(node[kind], where),
        inclusive=bool(node.get("inclusive", False)),
    )


def parse_rule_table(data: Dict[str, Any]) -> RuleTable:
    version = str(data.get("version") or "").strip()
    if not version:
        raise RuleTableError("rule table has no version")
    rules: List[SizeRule] = []
    for i, node in enumerate(data.get("rules") or []):
        where = f"rules[{i}]"
        bands = tuple(_parse_band(b, f"{where}.bands[{j}]") for j, b in enumerate(node.get("bands") or []))
        if not bands:
            raise RuleTableError(f"{where}: rule without bands")
        lo = _num(node.get("min"), where)
        hi = _num(node.get("max"), where)
        if lo is not None and hi is not None and lo > hi:
            raise RuleTableError(f"{where}: min {lo} > max {hi}")
        rules.append(SizeRule(
            bands=bands,
            min_width=lo,
            max_width=hi,
            min_inclusive=bool(node.get("min_inclusive", False)),
            max_inclusive=bool(node.get("max_inclusive", True)),
            priority=int(node.get("priority", 0)),
            position=i,
            label=node.get("label"),
        ))
    if not rules:
        raise RuleTableError("rule table has no rules")
    return RuleTable(version=version, rules=rules)


def load_rule_table(path: Path) -> RuleTable:
    yaml = YAML(typ="safe")
    with Path(path).open("r", encoding="utf8") as f:
        data = yaml.load(f) or {}
    return parse_rule_table(data)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

def store_rule_table(session: Session, table: RuleTable) -> int:
    """Replace the stored rule table with `table`. Caller commits."""
    session.execute(delete(models.SizeBand))
    session.execute(delete(models.SizeRule))
    for r in table.rules:
        row = models.SizeRule(
            version=table.version,
            position=r.position,
            label=r.label,
            min_width=r.min_width,
            min_inclusive=r.min_inclusive,
            max_width=r.max_width,
            max_inclusive=r.max_inclusive,
            priority=r.priority,
        )
        for j, b in enumerate(r.bands):
            row.bands.append(models.SizeBand(
                position=j,
                kind=b.kind,
                value=b.value,
                heights=list(b.values),
                inclusive=b.inclusive,
                prefix=b.prefix,
            ))
        session.add(row)
    session.flush()
    return len(table.rules)


def rules_from_db(session: Session) -> RuleTable:
    rows = session.execute(
        select(models.SizeRule).options(selectinload(models.SizeRule.bands)).order_by(models.SizeRule.position)
    ).scalars().all()
    rules = [
        SizeRule(
            bands=tuple(
                Band(
                    kind=b.kind,
                    prefix=b.prefix,
                    value=b.value,
                    values=tuple(float(v) for v in (b.heights or [])),
                    inclusive=bool(b.inclusive),
                )
                for b in row.bands
            ),
            min_width=row.min_width,
            max_width=row.max_width,
            min_inclusive=bool(row.min_inclusive),
            max_inclusive=bool(row.max_inclusive),
            priority=row.priority or 0,
            position=row.position or 0,
            label=row.label,
        )
        for row in rows
    ]
    version = rows[0].version if rows else ""
    return RuleTable(version=version, rules=rules)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def _overlaps(a: SizeRule, b: SizeRule) -> bool:
    # Compare as half-open intervals after applying inclusivity; a shared
    # boundary only overlaps when both sides include it.
    a_lo = a.min_width if a.min_width is not None else float("-inf")
    a_hi = a.max_width if a.max_width is not None else float("inf")
    b_lo = b.min_width if b.min_width is not None else float("-inf")
    b_hi = b.max_width if b.max_width is not None else float("inf")
    lo = max(a_lo, b_lo)
    hi = min(a_hi, b_hi)
    if lo < hi:
        return True
    if lo == hi:
        return a.contains_width(lo) and b.contains_width(lo)
    return False


def find_overlaps(rules: Iterable[SizeRule]) -> List[Tuple[SizeRule, SizeRule]]:
    """Pairs of width buckets that claim a common width (first one wins at runtime)."""
    ordered = sorted(rules, key=_sort_key)
    out: List[Tuple[SizeRule, SizeRule]] = []
    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if _overlaps(a, b):
                out.append((a, b))
    return out
