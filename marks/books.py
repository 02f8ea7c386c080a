"""Book registration and lifecycle."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from db.models import (
    AuditLog,
    Barcode,
    Book,
    BOOK_STATUSES,
    RECLAIMABLE_STATUSES,
    STATUS_OPEN,
)
from marks import config
from marks.allocator import MarkPool
from marks.barcodes import BarcodePool
from marks.errors import InputError, NotFound
from marks.normalize import require_cm
from marks.resolver import Rules, resolve_series

_log = logging.getLogger(__name__)

# Plain metadata fields accepted from clients: name -> (required, max length or max value)
TEXT_FIELDS = {
    "author": (True, 256),
    "keyword": (True, 25),
    "keyword1": (False, 25),
    "keyword2": (False, 25),
    "publisher": (True, 25),
}
INT_FIELDS = {
    "keyword_priority": (True, 2),
    "keyword1_priority": (False, 2),
    "keyword2_priority": (False, 2),
    "pages": (True, 9999),
}
# Never writable from client payloads; mark linkage is server-controlled
PROTECTED_FIELDS = {"id", "mark", "status", "state_entered_at", "reclaim_due_at", "created_at", "updated_at"}


def _clean_text(fields: Mapping[str, Any], name: str, required: bool, max_len: int) -> Optional[str]:
    raw = fields.get(name)
    s = str(raw).strip() if raw is not None else ""
    if not s:
        if required:
            raise InputError(name, f"{name} is required")
        return None
    if len(s) > max_len:
        raise InputError(name, f"{name} must be at most {max_len} characters")
    return s


def _clean_int(fields: Mapping[str, Any], name: str, required: bool, max_value: int) -> Optional[int]:
    raw = fields.get(name)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise InputError(name, f"{name} is required")
        return None
    if isinstance(raw, bool):
        raise InputError(name, f"{name} must be an integer")
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise InputError(name, f"{name} must be an integer") from None
    if value < 0 or value > max_value:
        raise InputError(name, f"{name} must be between 0 and {max_value}")
    return value


def clean_metadata(fields: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate client metadata; with `partial`, only fields present are checked."""
    out: Dict[str, Any] = {}
    for name, (required, max_len) in TEXT_FIELDS.items():
        if partial and name not in fields:
            continue
        out[name] = _clean_text(fields, name, required, max_len)
    for name, (required, max_value) in INT_FIELDS.items():
        if partial and name not in fields:
            continue
        out[name] = _clean_int(fields, name, required, max_value)
    if "is_top" in fields:
        out["is_top"] = bool(fields["is_top"])
    return out


def register_book(
    session: Session,
    fields: Mapping[str, Any],
    rules: Optional[Rules] = None,
    now: Optional[datetime] = None,
) -> Book:
    """Create a book and give it a mark in one transaction.

    Raises InputError (bad field), NoMatch (no size rule) or Exhausted (no free
    mark, fallbacks included). Nothing is written when any of them is raised.
    """
    now = now or datetime.utcnow()
    width = require_cm(fields.get("width"), "width")
    height = require_cm(fields.get("height"), "height")
    meta = clean_metadata(fields)

    try:
        prefix = resolve_series(session, width, height, rules)
        mark = MarkPool(session).allocate(prefix)
        book = Book(width=width, height=height, mark=mark, status=STATUS_OPEN, registered_at=now, **meta)
        if meta.get("is_top"):
            book.top_at = now
        session.add(book)
        session.flush()
        session.add(AuditLog(resource_type="book", resource_id=book.id, field="mark",
                             old_value=None, new_value=mark, actor="register"))
        session.commit()
    except Exception:
        session.rollback()
        raise
    _log.info("registered book %s (%sx%s) with %s", book.id, width, height, mark)
    return book


def set_status(session: Session, book: Book, status: str, now: Optional[datetime] = None) -> Book:
    """Move a book through its lifecycle. Caller commits.

    Entering historicized/early_return writes state_entered_at and
    reclaim_due_at together; going back to open clears both.
    """
    s = (status or "").strip().lower()
    if s not in BOOK_STATUSES:
        raise InputError("status", f"status must be one of {', '.join(BOOK_STATUSES)}")
    if s == book.status:
        return book
    now = now or datetime.utcnow()
    if s in RECLAIMABLE_STATUSES:
        book.state_entered_at = now
        book.reclaim_due_at = now + config.retention()
    else:
        book.state_entered_at = None
        book.reclaim_due_at = None
    session.add(AuditLog(resource_type="book", resource_id=book.id, field="status",
                         old_value=book.status, new_value=s))
    book.status = s
    return book


def update_book(session: Session, book_id: int, fields: Mapping[str, Any], now: Optional[datetime] = None) -> Book:
    book = session.get(Book, book_id)
    if book is None:
        raise NotFound(f"book {book_id} not found")
    now = now or datetime.utcnow()
    payload = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
    if "width" in payload:
        book.width = require_cm(payload["width"], "width")
    if "height" in payload:
        book.height = require_cm(payload["height"], "height")
    meta = clean_metadata(payload, partial=True)
    if "is_top" in meta and meta["is_top"] != book.is_top:
        book.top_at = now if meta["is_top"] else None
    for k, v in meta.items():
        setattr(book, k, v)
    if fields.get("status") is not None:
        set_status(session, book, str(fields["status"]), now=now)
    session.commit()
    return book


def delete_book(session: Session, book_id: int) -> None:
    """Delete a book; barcodes assigned to it go back to available."""
    book = session.get(Book, book_id)
    if book is None:
        raise NotFound(f"book {book_id} not found")
    codes = session.execute(select(Barcode.code_norm).where(Barcode.assigned_book_id == book_id)).scalars().all()
    freed = BarcodePool(session).free_codes(codes, book_id=book_id)
    session.delete(book)
    session.commit()
    if freed:
        _log.info("deleted book %s, freed %d barcode(s)", book_id, freed)


def search_filter(q: str):
    like = f"%{q}%"
    return or_(
        Book.author.ilike(like),
        Book.publisher.ilike(like),
        Book.keyword.ilike(like),
        Book.keyword1.ilike(like),
        Book.keyword2.ilike(like),
        Book.mark.ilike(like),
    )
