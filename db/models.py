from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Float,
    DateTime,
    Text,
    JSON,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

# Book lifecycle states. The two terminal-ish states start the reclaim clock.
STATUS_OPEN = "open"
STATUS_HISTORICIZED = "historicized"
STATUS_EARLY_RETURN = "early_return"
BOOK_STATUSES = (STATUS_OPEN, STATUS_HISTORICIZED, STATUS_EARLY_RETURN)
RECLAIMABLE_STATUSES = (STATUS_HISTORICIZED, STATUS_EARLY_RETURN)

BARCODE_STATUSES = ("free", "available", "reserved", "assigned", "unavailable", "blocked")
BARCODE_FREE_STATUSES = ("free", "available")


# =========================
# Size rule table
# =========================

class SizeRule(Base):
    """A width bucket of the size-to-prefix rule table.

    The interval is (min_width, max_width] by default; either end may be
    made inclusive/exclusive. NULL bounds are open (-inf / +inf).
    """

    __tablename__ = "size_rule"

    id = Column(Integer, primary_key=True)
    version = Column(String(64), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # declaration order in the YAML table
    label = Column(String(64), nullable=True)  # e.g. "size 7"
    min_width = Column(Float, nullable=True)
    min_inclusive = Column(Boolean, default=False, nullable=False)
    max_width = Column(Float, nullable=True)
    max_inclusive = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    bands = relationship(
        "SizeBand",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="SizeBand.position",
    )

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<SizeRule {self.label} ({self.min_width}, {self.max_width}] v={self.version}>"


class SizeBand(Base):
    """Height band within a width bucket: 'eq' (exact heights), 'lt' or 'gt' (threshold)."""

    __tablename__ = "size_band"

    id = Column(Integer, primary_key=True)
    rule_id = Column(Integer, ForeignKey("size_rule.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    kind = Column(String(8), nullable=False)
    value = Column(Float, nullable=True)  # threshold for lt/gt
    heights = Column(JSON, default=list)  # exact heights for eq
    inclusive = Column(Boolean, default=False, nullable=False)  # lt -> <=, gt -> >=
    prefix = Column(String(16), nullable=False)

    rule = relationship("SizeRule", back_populates="bands")

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<SizeBand {self.kind} {self.value or self.heights} -> {self.prefix}>"


# =========================
# Marks and books
# =========================

class FreeMark(Base):
    """One reusable mark in the free pool.

    Mark strings are stored trimmed + lowercase; `series` is the leading letter
    group ("eik001" -> "eik") so "ei" never consumes an "eik" mark.
    """

    __tablename__ = "free_mark"
    __table_args__ = (Index("ix_free_mark_series_rank_mark", "series", "rank", "mark"),)

    id = Column(Integer, primary_key=True)
    mark = Column(String(32), unique=True, nullable=False, index=True)
    series = Column(String(16), nullable=False, default="", index=True)  # leading letters, e.g. "egk"
    rank = Column(Integer, nullable=False, default=0, index=True)  # lower sorts first
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<FreeMark {self.mark} rank={self.rank}>"


class Book(Base):
    __tablename__ = "book"

    id = Column(Integer, primary_key=True, index=True)
    # Dimensions in centimeters, one decimal
    width = Column(Float, nullable=False)
    height = Column(Float, nullable=False)

    author = Column(String(256), nullable=False, index=True)
    keyword = Column(String(25), nullable=False)
    keyword_priority = Column(Integer, nullable=False)
    keyword1 = Column(String(25), nullable=True)
    keyword1_priority = Column(Integer, nullable=True)
    keyword2 = Column(String(25), nullable=True)
    keyword2_priority = Column(Integer, nullable=True)
    publisher = Column(String(25), nullable=False, index=True)
    pages = Column(Integer, nullable=False)
    registered_at = Column(DateTime, default=datetime.utcnow, index=True)

    is_top = Column(Boolean, default=False)
    top_at = Column(DateTime, nullable=True)

    # Lifecycle: open -> historicized | early_return. The timestamp pair is
    # always written together when a reclaimable state is entered.
    status = Column(String(32), nullable=False, default=STATUS_OPEN, index=True)
    state_entered_at = Column(DateTime, nullable=True, index=True)
    reclaim_due_at = Column(DateTime, nullable=True)

    # Currently assigned mark (copied by value from the pool)
    mark = Column(String(32), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    barcodes = relationship("Barcode", back_populates="book")

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<Book id={self.id} mark={self.mark} status={self.status}>"


# =========================
# Barcode labels
# =========================

class Barcode(Base):
    __tablename__ = "barcode"
    __table_args__ = (Index("ix_barcode_series_rank_code", "series", "rank", "triplet", "code"),)

    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False, index=True)  # e.g. "egk001"
    code_norm = Column(String(32), nullable=False, index=True)
    series = Column(String(16), nullable=False, index=True)  # e.g. "egk"
    triplet = Column(String(8), nullable=True)  # numeric suffix, e.g. "001"
    stripes_total = Column(Integer, default=0)
    rank = Column(Integer, default=0, index=True)

    is_available = Column(Boolean, default=True, nullable=False, index=True)
    status = Column(String(16), default="free", nullable=False, index=True)
    reserved_at = Column(DateTime, nullable=True)
    assigned_book_id = Column(Integer, ForeignKey("book.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    book = relationship("Book", back_populates="barcodes")

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<Barcode {self.code} status={self.status}>"


# =========================
# Jobs and audit
# =========================

class Job(Base):
    __tablename__ = "job"

    id = Column(Integer, primary_key=True)
    name = Column(String(256), nullable=False)
    status = Column(String(32), default="pending", index=True)
    # Set to the job name while running; the unique index makes it a run lock
    lock_key = Column(String(128), nullable=True, unique=True)
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<Job id={self.id} name={self.name} status={self.status}>"


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    resource_type = Column(String(64), nullable=False)
    resource_id = Column(Integer, nullable=True, index=True)
    field = Column(String(128), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    actor = Column(String(128), nullable=True)
    ts = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"<AuditLog {self.resource_type}:{self.resource_id} {self.field}>"
