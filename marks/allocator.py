"""Free-mark pool.

`MarkPool` owns the ``free_mark`` table; callers never read-modify-write it
directly. A mark belongs to the prefix group named by its leading letters
(``egk001`` is in ``egk``, never in ``eg``). A claim is a conditional ``DELETE ... WHERE id = :id``: under
concurrent registrations exactly one deleter sees ``rowcount == 1`` for a
given row, the others re-select the next candidate.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import FreeMark
from marks.errors import ConcurrencyConflict, Exhausted, InputError

_log = logging.getLogger(__name__)

# Rank given to marks returned by the reclaim job (sorts after seeded marks)
RECLAIM_RANK = 9999
FALLBACK_LETTER = "i"
FALLBACK_SUFFIX = "k"
# Upper bound on claim attempts per prefix; each lost race removes a candidate
_MAX_CLAIM_ROUNDS = 32

_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")
_SERIES_RE = re.compile(r"^[a-z]+")


def canonical_mark(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def compute_rank(code: Optional[str]) -> int:
    """Rank from the numeric suffix: ...00 -> 2, ...0 -> 1, else 0."""
    m = _TRAILING_DIGITS_RE.search(canonical_mark(code))
    if not m:
        return 0
    digits = m.group(1)
    if digits.endswith("00"):
        return 2
    if digits.endswith("0"):
        return 1
    return 0


def fallback_prefixes(prefix: str) -> List[str]:
    """Prefixes tried in order: the canonical one, then '<prefix>k' for a trailing 'i'."""
    p = canonical_mark(prefix)
    out = [p]
    if p.endswith(FALLBACK_LETTER):
        out.append(p + FALLBACK_SUFFIX)
    return out


def mark_series(mark: Optional[str]) -> str:
    """Leading letter group of a mark: "egk001" -> "egk"."""
    m = _SERIES_RE.match(canonical_mark(mark))
    return m.group(0) if m else ""


class MarkPool:
    def __init__(self, session: Session):
        self.session = session

    def _prefix_filter(self, prefix: str):
        return FreeMark.series == canonical_mark(prefix)

    def _candidates(self, prefix: str, limit: int = 1) -> List[FreeMark]:
        stmt = (
            select(FreeMark)
            .where(self._prefix_filter(prefix))
            .order_by(FreeMark.rank.asc(), FreeMark.mark.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def _claim(self, mark_id: int) -> bool:
        res = self.session.execute(
            delete(FreeMark).where(FreeMark.id == mark_id).execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def _claim_prefix(self, prefix: str) -> Optional[str]:
        for _ in range(_MAX_CLAIM_ROUNDS):
            found = self._candidates(prefix)
            if not found:
                return None
            mark, mark_id = found[0].mark, found[0].id
            if self._claim(mark_id):
                return mark
            _log.debug("lost race for %s, retrying", mark)
        return None

    def allocate(self, prefix: str) -> str:
        """Remove and return the best free mark for `prefix`.

        Runs inside the caller's transaction; the caller commits together with
        whatever record receives the mark.
        """
        if not canonical_mark(prefix):
            raise InputError("prefix", "prefix is required")
        tried = fallback_prefixes(prefix)
        for p in tried:
            mark = self._claim_prefix(p)
            if mark is not None:
                if p != tried[0]:
                    _log.info("prefix %s exhausted, allocated %s from fallback %s", tried[0], mark, p)
                return mark
        raise Exhausted(tried[0], tried)

    def peek(self, prefix: str) -> Optional[FreeMark]:
        for p in fallback_prefixes(prefix):
            found = self._candidates(p)
            if found:
                return found[0]
        return None

    def exists(self, mark: str) -> bool:
        stmt = select(FreeMark.id).where(FreeMark.mark == canonical_mark(mark)).limit(1)
        return self.session.execute(stmt).first() is not None

    def count(self, prefix: Optional[str] = None) -> int:
        stmt = select(func.count(FreeMark.id))
        if prefix:
            stmt = stmt.where(self._prefix_filter(prefix))
        return int(self.session.execute(stmt).scalar() or 0)

    def release(self, mark: str, rank: int = RECLAIM_RANK) -> bool:
        """Insert `mark` into the pool unless present. Returns True if inserted."""
        m = canonical_mark(mark)
        if not m:
            raise InputError("mark", "mark is required")
        if self.exists(m):
            return False
        self.session.add(FreeMark(mark=m, series=mark_series(m), rank=rank))
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Inserted concurrently by someone else; the enclosing transaction is void
            self.session.rollback()
            raise ConcurrencyConflict(f"mark {m} was released concurrently") from exc
        return True
