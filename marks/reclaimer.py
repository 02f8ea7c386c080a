"""Return marks of retired books to the free pool.

A book whose status is historicized or early_return keeps its mark for the
retention window (``BMARK_RETENTION_DAYS``, default 7). After that the mark is
re-inserted into the pool and cleared on the book, both in one transaction per
book. The clear is conditioned on the exact mark value, so a mark that was
reassigned between the scan and the write is skipped rather than freed twice.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import AuditLog, Book, Job, RECLAIMABLE_STATUSES
from marks import config
from marks.allocator import RECLAIM_RANK, MarkPool, compute_rank
from marks.errors import ConcurrencyConflict, NotFound

_log = logging.getLogger(__name__)

JOB_NAME = "reclaim_marks"


@dataclass
class ReclaimResult:
    scanned: int = 0
    released: int = 0
    conflicts: int = 0
    dry_run: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


def _clear_mark(session: Session, book_id: int, mark: str) -> bool:
    res = session.execute(
        update(Book)
        .where(Book.id == book_id, Book.mark == mark)
        .values(mark=None, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _audit(session: Session, book_id: int, old: Optional[str], new: Optional[str], actor: str) -> None:
    session.add(AuditLog(resource_type="book", resource_id=book_id, field="mark",
                         old_value=old, new_value=new, actor=actor))


def eligible_books(session: Session, as_of: datetime, retention: timedelta):
    cutoff = as_of - retention
    stmt = (
        select(Book.id, Book.mark)
        .where(
            Book.status.in_(RECLAIMABLE_STATUSES),
            Book.state_entered_at.is_not(None),
            Book.state_entered_at <= cutoff,
            Book.mark.is_not(None),
        )
        .order_by(Book.state_entered_at, Book.id)
    )
    return session.execute(stmt).all()


def reclaim_eligible(
    session: Session,
    as_of: Optional[datetime] = None,
    retention: Optional[timedelta] = None,
    dry_run: bool = False,
) -> ReclaimResult:
    as_of = as_of or datetime.utcnow()
    retention = config.retention() if retention is None else retention
    rows = eligible_books(session, as_of, retention)
    # End the read transaction; every release below runs in its own transaction
    session.rollback()
    result = ReclaimResult(scanned=len(rows), dry_run=dry_run)
    pool = MarkPool(session)

    for book_id, mark in rows:
        if not mark:
            continue
        if dry_run:
            _log.info("[DRY] would release %s from book %s", mark, book_id)
            continue
        try:
            pool.release(mark, rank=RECLAIM_RANK)
            if not _clear_mark(session, book_id, mark):
                raise ConcurrencyConflict(f"book {book_id} no longer holds {mark}")
            _audit(session, book_id, mark, None, actor=JOB_NAME)
            session.commit()
        except ConcurrencyConflict as exc:
            session.rollback()
            result.conflicts += 1
            _log.warning("skipping book %s: %s", book_id, exc)
            continue
        result.released += 1
        _log.info("released %s from book %s", mark, book_id)

    return result


def release_book_mark(session: Session, book_id: int, actor: str = "manual") -> str:
    """Return a book's current mark to the pool now, ranked by its numeric suffix.

    Caller commits.
    """
    book = session.get(Book, book_id)
    if book is None or not book.mark:
        raise NotFound(f"book {book_id} has no mark to release")
    mark = book.mark
    MarkPool(session).release(mark, rank=compute_rank(mark))
    if not _clear_mark(session, book_id, mark):
        raise ConcurrencyConflict(f"book {book_id} no longer holds {mark}")
    _audit(session, book_id, mark, None, actor=actor)
    session.expire(book)
    return mark


def _take_stale_lock(session: Session, now: datetime) -> bool:
    """Clear a lock left behind by a run that died without releasing it."""
    res = session.execute(
        update(Job)
        .where(Job.lock_key == JOB_NAME, Job.updated_at < now - config.lock_ttl())
        .values(lock_key=None, status="stale", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _acquire_lock(session: Session, dry_run: bool) -> Optional[int]:
    for attempt in range(2):
        job = Job(name=JOB_NAME, status="running", lock_key=JOB_NAME, payload={"dry_run": dry_run})
        session.add(job)
        try:
            session.commit()
            return job.id
        except IntegrityError:
            session.rollback()
        if attempt or not _take_stale_lock(session, datetime.utcnow()):
            return None
        session.commit()
        _log.warning("%s lock was abandoned by an earlier run; taking it over", JOB_NAME)
    return None


def run_reclaim_job(
    make_session: Callable[[], Session],
    as_of: Optional[datetime] = None,
    retention: Optional[timedelta] = None,
    dry_run: bool = False,
) -> Optional[ReclaimResult]:
    """Run one reclaim pass under a job-row lock.

    Returns None when another run holds the lock. A lock older than
    ``BMARK_LOCK_TTL_MINUTES`` is taken over.
    """
    session = make_session()
    try:
        job_id = _acquire_lock(session, dry_run)
        if job_id is None:
            _log.warning("%s already running; skipping this run", JOB_NAME)
            return None

        try:
            result = reclaim_eligible(session, as_of=as_of, retention=retention, dry_run=dry_run)
        except BaseException:
            # Interrupts included: a lock left set would block every later run
            session.rollback()
            _finish_job(session, job_id, "failed", {"dry_run": dry_run})
            raise
        _finish_job(session, job_id, "done", result.as_dict())
        _log.info("[%s] scanned=%d released=%d conflicts=%d", JOB_NAME,
                  result.scanned, result.released, result.conflicts)
        return result
    finally:
        session.close()


def force_unlock(make_session: Callable[[], Session]) -> int:
    """Release the reclaim lock whoever holds it. Returns the number of rows cleared."""
    session = make_session()
    try:
        res = session.execute(
            update(Job)
            .where(Job.lock_key == JOB_NAME)
            .values(lock_key=None, status="stale", updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
        n = int(res.rowcount or 0)
        if n:
            _log.warning("%s lock cleared by force", JOB_NAME)
        return n
    finally:
        session.close()


def _finish_job(session: Session, job_id: int, status: str, payload: dict) -> None:
    job = session.get(Job, job_id)
    if job is None:
        return
    job.status = status
    job.lock_key = None
    job.payload = payload
    session.commit()
