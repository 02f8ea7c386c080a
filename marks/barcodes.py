"""Printed barcode labels: find, reserve, assign, free and availability checks.

State moves use conditional UPDATEs (``WHERE id = :id AND status = ...``) so
only one caller wins a given label; a loser either retries with the next
candidate (reserve) or gets ConcurrencyConflict (assign).
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.orm import Session

from db.models import BARCODE_FREE_STATUSES, Barcode, Book
from marks.allocator import canonical_mark, compute_rank, mark_series
from marks.errors import ConcurrencyConflict, Exhausted, InputError

_log = logging.getLogger(__name__)

_TRIPLET_RE = re.compile(r"(\d+)$")
_MAX_RESERVE_ROUNDS = 32


def _free_clause():
    return and_(
        Barcode.is_available.is_(True),
        Barcode.status.in_(BARCODE_FREE_STATUSES),
        Barcode.assigned_book_id.is_(None),
    )


def _not_used_by_books():
    return ~exists().where(func.lower(Book.mark) == Barcode.code_norm)


def make_barcode(code: str, rank: int = 0, stripes_total: int = 0, series: Optional[str] = None) -> Barcode:
    c = (code or "").strip()
    if not c:
        raise InputError("code", "code is required")
    m = _TRIPLET_RE.search(c)
    return Barcode(
        code=c,
        code_norm=c.lower(),
        series=canonical_mark(series) or mark_series(c),
        triplet=m.group(1) if m else None,
        rank=rank,
        stripes_total=stripes_total,
        is_available=True,
        status="free",
    )


class BarcodePool:
    def __init__(self, session: Session):
        self.session = session

    def _filter(self, prefix: Optional[str], series: Optional[str]):
        clauses = [_free_clause()]
        if series:
            clauses.append(Barcode.series == canonical_mark(series))
        if prefix:
            clauses.append(Barcode.code_norm.startswith(canonical_mark(prefix), autoescape=True))
        return and_(*clauses)

    def pick_and_reserve(self, prefix: Optional[str] = None, series: Optional[str] = None) -> Barcode:
        """Reserve the first free label (rank, code) matching the filters. Caller commits."""
        cond = self._filter(prefix, series)
        for _ in range(_MAX_RESERVE_ROUNDS):
            cand_id = self.session.execute(
                select(Barcode.id).where(cond).order_by(Barcode.rank, Barcode.code).limit(1)
            ).scalar()
            if cand_id is None:
                break
            res = self.session.execute(
                update(Barcode)
                .where(Barcode.id == cand_id, _free_clause())
                .values(is_available=False, status="reserved", reserved_at=datetime.utcnow(),
                        updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 1:
                bc = self.session.get(Barcode, cand_id)
                self.session.refresh(bc)
                return bc
            _log.debug("lost race for barcode %s, retrying", cand_id)
        raise Exhausted(canonical_mark(series or prefix) or "*")

    def assign_reserved(self, barcode_id: int, book_id: int) -> Barcode:
        res = self.session.execute(
            update(Barcode)
            .where(
                Barcode.id == barcode_id,
                Barcode.is_available.is_(False),
                Barcode.status == "reserved",
                Barcode.assigned_book_id.is_(None),
            )
            .values(status="assigned", assigned_book_id=book_id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConcurrencyConflict(f"barcode {barcode_id} is not reserved")
        bc = self.session.get(Barcode, barcode_id)
        self.session.refresh(bc)
        return bc

    def _select_one(self, code_or_id: str) -> Optional[Barcode]:
        s = str(code_or_id or "").strip()
        if s.isdigit():
            bc = self.session.get(Barcode, int(s))
            if bc is not None:
                return bc
        return self.session.execute(select(Barcode).where(Barcode.code_norm == s.lower())).scalars().first()

    def free(self, code_or_id: str) -> Optional[Barcode]:
        """Put a label back to available. Returns None when it does not exist."""
        bc = self._select_one(code_or_id)
        if bc is None:
            return None
        bc.is_available = True
        bc.status = "available"
        bc.assigned_book_id = None
        bc.reserved_at = None
        self.session.flush()
        return bc

    def free_codes(self, codes: Iterable[str], book_id: Optional[int] = None) -> int:
        """Free all given codes; with `book_id`, only those assigned to that book."""
        norm = [c.strip().lower() for c in codes if c and c.strip()]
        if not norm:
            return 0
        stmt = update(Barcode).where(Barcode.code_norm.in_(norm))
        if book_id is not None:
            stmt = stmt.where(Barcode.assigned_book_id == book_id)
        res = self.session.execute(
            stmt.values(is_available=True, status="available", reserved_at=None, assigned_book_id=None,
                        updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0)

    def exists_available(self, prefix: Optional[str] = None, series: Optional[str] = None) -> bool:
        stmt = select(Barcode.id).where(self._filter(prefix, series)).limit(1)
        return self.session.execute(stmt).first() is not None

    def preview(self, series: str) -> Tuple[Optional[str], int]:
        """Lowest-rank available code in `series` not held by any book, and how many there are."""
        cond = and_(self._filter(None, series), _not_used_by_books())
        candidate = self.session.execute(
            select(Barcode.code).where(cond).order_by(Barcode.rank, Barcode.code).limit(1)
        ).scalar()
        count = self.session.execute(select(func.count(Barcode.id)).where(cond)).scalar() or 0
        return candidate, int(count)

    def add(self, codes: Iterable[str], rank: Optional[int] = None) -> List[Barcode]:
        """Insert labels that are not known yet. Caller commits."""
        known = set(self.session.execute(select(Barcode.code_norm)).scalars())
        created: List[Barcode] = []
        for code in codes:
            c = (code or "").strip()
            if not c or c.lower() in known:
                continue
            bc = make_barcode(c, rank=compute_rank(c) if rank is None else rank)
            self.session.add(bc)
            known.add(c.lower())
            created.append(bc)
        self.session.flush()
        return created

    def sync_from_books(self, mark_free: bool = False) -> int:
        """Mark labels whose code is held by a book as assigned.

        With `mark_free`, labels not held by any book become free again.
        Caller commits.
        """
        used = {canonical_mark(m) for m in self.session.execute(
            select(Book.mark).where(Book.mark.is_not(None))
        ).scalars() if canonical_mark(m)}
        changed = 0
        for bc in self.session.execute(select(Barcode)).scalars():
            if bc.code_norm in used:
                if bc.status != "assigned" or bc.is_available:
                    bc.status = "assigned"
                    bc.is_available = False
                    changed += 1
            elif mark_free and (bc.status not in BARCODE_FREE_STATUSES or not bc.is_available):
                if bc.status == "blocked":
                    continue
                bc.status = "free"
                bc.is_available = True
                bc.assigned_book_id = None
                bc.reserved_at = None
                changed += 1
        self.session.flush()
        return changed
