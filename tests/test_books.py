from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from db.models import AuditLog, Barcode, Book, STATUS_HISTORICIZED, STATUS_OPEN
from marks.allocator import MarkPool
from marks.barcodes import make_barcode
from marks.books import clean_metadata, delete_book, register_book, set_status, update_book
from marks.errors import Exhausted, InputError, NoMatch, NotFound

NOW = datetime(2025, 10, 6, 9, 0)


def _fields(**kw):
    f = {
        "width": "10,4",
        "height": "18,5",
        "author": "Ada Author",
        "keyword": "history",
        "keyword_priority": 1,
        "publisher": "Pub",
        "pages": 240,
    }
    f.update(kw)
    return f


def test_register_assigns_mark(session, stored_rules, add_marks):
    add_marks("ogk002", "ogk001")
    book = register_book(session, _fields(), now=NOW)
    assert book.mark == "ogk001"
    assert (book.width, book.height) == (10.4, 18.5)
    assert book.status == STATUS_OPEN
    assert book.registered_at == NOW
    assert not MarkPool(session).exists("ogk001")
    assert session.query(AuditLog).filter_by(resource_id=book.id, actor="register").count() == 1


def test_register_uses_k_fallback(session, stored_rules, add_marks):
    add_marks("eik001")
    book = register_book(session, _fields(width="12,45", height="18"))
    assert book.mark == "eik001"


@pytest.mark.parametrize("override,field", [
    ({"width": None}, "width"),
    ({"height": "tall"}, "height"),
    ({"author": "  "}, "author"),
    ({"keyword": "k" * 26}, "keyword"),
    ({"keyword_priority": 3}, "keyword_priority"),
    ({"pages": "many"}, "pages"),
])
def test_register_rejects_bad_input(session, stored_rules, add_marks, override, field):
    add_marks("ogk001")
    with pytest.raises(InputError) as exc:
        register_book(session, _fields(**override))
    assert exc.value.field == field
    assert session.query(Book).count() == 0
    assert MarkPool(session).exists("ogk001")


def test_register_no_match_writes_nothing(session, stored_rules, add_marks):
    add_marks("egk001", "ogk001")
    with pytest.raises(NoMatch):
        register_book(session, _fields(height="17,5"))
    assert session.query(Book).count() == 0
    assert MarkPool(session).count() == 2


def test_register_exhausted_writes_nothing(session, stored_rules, add_marks):
    add_marks("egk001")
    with pytest.raises(Exhausted):
        register_book(session, _fields())
    assert session.query(Book).count() == 0
    assert MarkPool(session).count() == 1


def test_clean_metadata_partial_only_checks_present_fields():
    assert clean_metadata({"pages": "12"}, partial=True) == {"pages": 12}
    with pytest.raises(InputError):
        clean_metadata({"pages": "12"})


def test_set_status_writes_timestamp_pair(session, stored_rules, add_marks):
    add_marks("ogk001")
    book = register_book(session, _fields())
    set_status(session, book, "Historicized", now=NOW)
    session.commit()
    assert book.status == STATUS_HISTORICIZED
    assert book.state_entered_at == NOW
    assert book.reclaim_due_at == NOW + timedelta(days=7)

    set_status(session, book, "open", now=NOW)
    session.commit()
    assert book.state_entered_at is None
    assert book.reclaim_due_at is None


def test_set_status_rejects_unknown(session, stored_rules, add_marks):
    add_marks("ogk001")
    book = register_book(session, _fields())
    with pytest.raises(InputError):
        set_status(session, book, "lost")


def test_update_ignores_protected_fields(session, stored_rules, add_marks):
    add_marks("ogk001")
    book = register_book(session, _fields())
    updated = update_book(session, book.id, {"mark": "zzz999", "pages": 300, "status": "early_return"}, now=NOW)
    assert updated.mark == "ogk001"
    assert updated.pages == 300
    assert updated.status == "early_return"
    assert updated.state_entered_at == NOW


def test_update_missing_book(session):
    with pytest.raises(NotFound):
        update_book(session, 42, {"pages": 1})


def test_delete_frees_assigned_barcodes(session, stored_rules, add_marks):
    add_marks("ogk001")
    book = register_book(session, _fields())
    bc = make_barcode("ogk001")
    bc.status, bc.is_available, bc.assigned_book_id = "assigned", False, book.id
    session.add(bc)
    session.commit()

    delete_book(session, book.id)
    assert session.query(Book).count() == 0
    bc = session.query(Barcode).one()
    assert (bc.status, bc.is_available, bc.assigned_book_id) == ("available", True, None)


def test_delete_leaves_other_books_barcodes(session, stored_rules, add_marks):
    add_marks("ogk001", "ogk002")
    keep = register_book(session, _fields())
    gone = register_book(session, _fields())
    for code, book in (("ogk101", keep), ("ogk102", gone)):
        bc = make_barcode(code)
        bc.status, bc.is_available, bc.assigned_book_id = "assigned", False, book.id
        session.add(bc)
    session.commit()

    delete_book(session, gone.id)
    statuses = {b.code: (b.status, b.assigned_book_id) for b in session.query(Barcode)}
    assert statuses["ogk101"] == ("assigned", keep.id)
    assert statuses["ogk102"] == ("available", None)
