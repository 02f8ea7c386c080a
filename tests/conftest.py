from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from db.models import Base, FreeMark  # noqa: E402
from marks.allocator import compute_rank, mark_series  # noqa: E402
from marks.rules import load_rule_table, store_rule_table  # noqa: E402

RULES_FILE = PROJECT_ROOT / "data" / "size_rules.yaml"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # Tests rely on defaults unless they set a variable themselves
    for name in ("BMARK_TOL_CM", "BMARK_RETENTION_DAYS", "BMARK_DEFAULT_SERIES", "BMARK_LOCALE",
                 "BMARK_RULES_FILE", "BMARK_RECLAIM_AT", "BMARK_RECLAIM_TZ", "BMARK_LOCK_TTL_MINUTES"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def rule_table():
    return load_rule_table(RULES_FILE)


@pytest.fixture
def engine():
    # One shared in-memory connection; every session sees the same database
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_connection, connection_record):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def make_session(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session(make_session):
    s = make_session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def stored_rules(session, rule_table):
    store_rule_table(session, rule_table)
    session.commit()
    return rule_table


@pytest.fixture
def add_marks(session):
    def _add(*marks: str, rank=None) -> None:
        for m in marks:
            session.add(FreeMark(mark=m, series=mark_series(m), rank=compute_rank(m) if rank is None else rank))
        session.commit()
    return _add
