"""Runtime settings, read from the environment at call time.

Invalid values fall back to the defaults so a typo in a deployment env never
takes the registration path down.
"""
from __future__ import annotations

import os
from datetime import time, timedelta
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_TOL_CM = 0.05
DEFAULT_RETENTION_DAYS = 7
DEFAULT_LOCALE = "eu"
LOCALE_PROFILES = ("eu", "en")
DEFAULT_RULES_FILE = ROOT / "data" / "size_rules.yaml"
DEFAULT_RECLAIM_AT = time(2, 15)
DEFAULT_RECLAIM_TZ = "Europe/Berlin"
DEFAULT_LOCK_TTL_MINUTES = 120


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def tolerance_cm() -> float:
    """Tolerance for exact-height matches (cm)."""
    tol = _float_env("BMARK_TOL_CM", DEFAULT_TOL_CM)
    return tol if tol >= 0 else DEFAULT_TOL_CM


def retention() -> timedelta:
    days = _float_env("BMARK_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
    if days < 0:
        days = DEFAULT_RETENTION_DAYS
    return timedelta(days=days)


def default_series() -> Optional[str]:
    raw = (os.environ.get("BMARK_DEFAULT_SERIES") or "").strip().lower()
    return raw or None


def locale_profile() -> str:
    raw = (os.environ.get("BMARK_LOCALE") or "").strip().lower()
    return raw if raw in LOCALE_PROFILES else DEFAULT_LOCALE


def rules_file() -> Path:
    raw = os.environ.get("BMARK_RULES_FILE")
    if not raw:
        return DEFAULT_RULES_FILE
    p = Path(raw)
    return p if p.is_absolute() else (ROOT / p)


def reclaim_at() -> time:
    raw = (os.environ.get("BMARK_RECLAIM_AT") or "").strip()
    if not raw:
        return DEFAULT_RECLAIM_AT
    try:
        hh, mm = raw.split(":", 1)
        return time(int(hh), int(mm))
    except ValueError:
        return DEFAULT_RECLAIM_AT


def reclaim_tz() -> str:
    return (os.environ.get("BMARK_RECLAIM_TZ") or "").strip() or DEFAULT_RECLAIM_TZ


def lock_ttl() -> timedelta:
    """Age after which a running job's lock counts as abandoned."""
    minutes = _float_env("BMARK_LOCK_TTL_MINUTES", DEFAULT_LOCK_TTL_MINUTES)
    if minutes <= 0:
        minutes = DEFAULT_LOCK_TTL_MINUTES
    return timedelta(minutes=minutes)
