"""Parse locale-formatted centimeter values.

Two locale profiles are supported:

- ``eu`` (default): ``,`` is the decimal separator. When a value contains both
  ``,`` and ``.``, the dots are thousands separators and are dropped
  (``1.234,5`` -> 1234.5). A lone ``.`` is still read as a decimal point.
- ``en``: ``.`` is the decimal separator and ``,`` is always a thousands
  separator (``1,234.5`` -> 1234.5, ``12,5`` -> 125.0).

Results are rounded half-up to one decimal so bucket boundaries stay stable.
"""
from __future__ import annotations

import math
import re
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from marks import config
from marks.errors import InputError

_WS_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

Number = Union[int, float, str, None]


def round1(x: float) -> float:
    return float(Decimal(repr(x)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _clean(raw: str, profile: str) -> str:
    s = _WS_RE.sub("", raw)
    if profile == "en":
        return s.replace(",", "")
    if "," in s and "." in s:
        s = s.replace(".", "")
    return s.replace(",", ".")


def normalize(raw: Number, profile: Optional[str] = None) -> Optional[float]:
    """Return the value in cm rounded to one decimal, or None when not a number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            return None
    elif isinstance(raw, str):
        s = _clean(raw, profile or config.locale_profile())
        if not _NUMBER_RE.match(s):
            return None
        try:
            value = float(s)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(value):
        return None
    try:
        return round1(value)
    except InvalidOperation:
        return None


def require_cm(raw: Number, field: str, profile: Optional[str] = None) -> float:
    value = normalize(raw, profile)
    if value is None:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise InputError(field, f"{field} is required")
        raise InputError(field, f"{field} must be a number in cm, got {raw!r}")
    return value
