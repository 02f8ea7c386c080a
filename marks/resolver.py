"""Resolve a (width, height) pair in cm to a mark prefix."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy.orm import Session

from marks import config
from marks.errors import NoMatch
from marks.rules import Band, RuleTable, SizeRule, rules_from_db

_log = logging.getLogger(__name__)

# Float safety for threshold comparisons; exact-height matches use the configured tolerance
EPS = 1e-9

Rules = Union[RuleTable, Sequence[SizeRule]]


@dataclass(frozen=True)
class Resolution:
    width: float
    height: float
    prefix: Optional[str]
    rule: Optional[SizeRule] = None
    band: Optional[Band] = None

    @property
    def matched(self) -> bool:
        return self.prefix is not None

    def as_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "prefix": self.prefix,
            "bucket": self.rule.label if self.rule else None,
            "bucket_range": self.rule.describe() if self.rule else None,
            "band": self.band.kind if self.band else None,
        }


def _ordered(rules: Rules) -> Iterable[SizeRule]:
    if isinstance(rules, RuleTable):
        return rules.ordered()
    return rules


def band_matches(band: Band, h: float, tol: float) -> bool:
    if band.kind == "eq":
        return any(abs(h - v) <= tol + EPS for v in band.values)
    if band.value is None:
        return False
    if band.kind == "lt":
        return h <= band.value + EPS if band.inclusive else h < band.value - EPS
    if band.kind == "gt":
        return h >= band.value - EPS if band.inclusive else h > band.value + EPS
    return False


def explain(width: float, height: float, rules: Rules, tolerance: Optional[float] = None) -> Resolution:
    """Like :func:`resolve_prefix` but also reports the bucket and band that decided."""
    tol = config.tolerance_cm() if tolerance is None else tolerance
    if not (math.isfinite(width) and math.isfinite(height)):
        return Resolution(width, height, None)
    for rule in _ordered(rules):
        if not rule.contains_width(width):
            continue
        # First bucket in order is authoritative, even if its bands do not cover the height
        for band in rule.bands:
            if band.kind == "eq" and band_matches(band, height, tol):
                return Resolution(width, height, band.prefix, rule, band)
        for band in rule.bands:
            if band.kind != "eq" and band_matches(band, height, tol):
                return Resolution(width, height, band.prefix, rule, band)
        return Resolution(width, height, None, rule)
    return Resolution(width, height, None)


def resolve_prefix(width: float, height: float, rules: Rules, tolerance: Optional[float] = None) -> Optional[str]:
    """Canonical prefix for the dimensions, or None when no rule covers them."""
    return explain(width, height, rules, tolerance).prefix


def resolve_series(session: Session, width: float, height: float, rules: Optional[Rules] = None) -> str:
    """DB-backed resolution used by registration.

    Falls back to BMARK_DEFAULT_SERIES only when it is explicitly configured;
    otherwise raises NoMatch.
    """
    table = rules if rules is not None else rules_from_db(session)
    prefix = resolve_prefix(width, height, table)
    if prefix is not None:
        return prefix
    fallback = config.default_series()
    if fallback:
        _log.info("no size rule for %sx%s; using default series %s", width, height, fallback)
        return fallback
    raise NoMatch(width, height)
