from __future__ import annotations

from datetime import datetime
from typing import Generator, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from db.session import get_session
from db import models
from marks import books as book_service
from marks.allocator import MarkPool
from marks.barcodes import BarcodePool
from marks.errors import ConcurrencyConflict, Exhausted, InputError, MarkError, NoMatch, NotFound
from marks.normalize import require_cm
from marks.reclaimer import release_book_mark, run_reclaim_job
from marks.resolver import explain, resolve_series
from marks.rules import rules_from_db


def get_db() -> Generator[Session, None, None]:
    # Wrap the existing contextmanager for FastAPI dependency injection
    with get_session() as s:
        yield s


Cm = Union[float, str]


class BookIn(BaseModel):
    width: Optional[Cm] = None
    height: Optional[Cm] = None
    author: Optional[str] = None
    keyword: Optional[str] = None
    keyword_priority: Optional[int] = None
    keyword1: Optional[str] = None
    keyword1_priority: Optional[int] = None
    keyword2: Optional[str] = None
    keyword2_priority: Optional[int] = None
    publisher: Optional[str] = None
    pages: Optional[int] = None
    is_top: Optional[bool] = None


class BookPatch(BookIn):
    status: Optional[str] = None


class BookOut(BaseModel):
    id: int
    width: float
    height: float
    author: str
    keyword: str
    keyword_priority: int
    keyword1: Optional[str] = None
    keyword1_priority: Optional[int] = None
    keyword2: Optional[str] = None
    keyword2_priority: Optional[int] = None
    publisher: str
    pages: int
    mark: Optional[str] = None
    status: str
    is_top: bool = False
    registered_at: Optional[str] = None
    state_entered_at: Optional[str] = None
    reclaim_due_at: Optional[str] = None


class PaginatedBooks(BaseModel):
    total: int
    limit: int
    offset: int
    items: List[BookOut]


class BarcodeOut(BaseModel):
    id: int
    code: str
    series: str
    status: str
    is_available: bool
    assigned_book_id: Optional[int] = None


class ReserveIn(BaseModel):
    prefix: Optional[str] = None
    series: Optional[str] = None


class AssignIn(BaseModel):
    book_id: int


app = FastAPI(title="BMark Manager API", version="0.1.0")

# CORS for local dev (adjust later as needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_ERROR_STATUS = {
    InputError: 422,
    NoMatch: 422,
    Exhausted: 409,
    ConcurrencyConflict: 409,
    NotFound: 404,
}


@app.exception_handler(MarkError)
def _mark_error_handler(request: Request, exc: MarkError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    body = {"error": str(exc)}
    if isinstance(exc, InputError):
        body["field"] = exc.field
    elif isinstance(exc, NoMatch):
        body["error"] = "no_series_for_size"
        body["detail"] = str(exc)
    elif isinstance(exc, Exhausted):
        body["error"] = "no codes available for this size"
        body["tried"] = exc.tried
    return JSONResponse(status_code=status, content=body)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _to_out(b: models.Book) -> BookOut:
    return BookOut(
        id=b.id,
        width=b.width,
        height=b.height,
        author=b.author,
        keyword=b.keyword,
        keyword_priority=b.keyword_priority,
        keyword1=b.keyword1,
        keyword1_priority=b.keyword1_priority,
        keyword2=b.keyword2,
        keyword2_priority=b.keyword2_priority,
        publisher=b.publisher,
        pages=b.pages,
        mark=b.mark,
        status=b.status,
        is_top=bool(b.is_top),
        registered_at=_iso(b.registered_at),
        state_entered_at=_iso(b.state_entered_at),
        reclaim_due_at=_iso(b.reclaim_due_at),
    )


def _barcode_out(bc: models.Barcode) -> BarcodeOut:
    return BarcodeOut(
        id=bc.id,
        code=bc.code,
        series=bc.series,
        status=bc.status,
        is_available=bool(bc.is_available),
        assigned_book_id=bc.assigned_book_id,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------

SORT_WHITELIST = {
    "registered_at": models.Book.registered_at,
    "author": models.Book.author,
    "publisher": models.Book.publisher,
    "pages": models.Book.pages,
    "top_at": models.Book.top_at,
    "state_entered_at": models.Book.state_entered_at,
    "id": models.Book.id,
}


@app.get("/books", response_model=PaginatedBooks)
def list_books(
    q: Optional[str] = Query(None, description="Search in author, publisher, keywords and mark"),
    status: Optional[str] = Query(None, description="Filter by lifecycle status"),
    sort_by: str = Query("registered_at"),
    order: str = Query("desc"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    qry = db.query(models.Book)
    if q:
        qry = qry.filter(book_service.search_filter(q.strip()))
    if status:
        qry = qry.filter(models.Book.status == status)
    col = SORT_WHITELIST.get(sort_by, models.Book.registered_at)
    ordering = col.asc() if order.lower() == "asc" else col.desc()

    total = db.query(func.count(models.Book.id)).select_from(qry.subquery()).scalar()  # type: ignore
    items = qry.order_by(ordering, models.Book.id.desc()).offset(offset).limit(limit).all()
    return PaginatedBooks(
        total=int(total or 0),
        limit=limit,
        offset=offset,
        items=[_to_out(b) for b in items],
    )


@app.get("/books/{book_id}", response_model=BookOut)
def get_book(book_id: int, db: Session = Depends(get_db)):
    b = db.get(models.Book, book_id)
    if not b:
        raise HTTPException(status_code=404, detail="Book not found")
    return _to_out(b)


@app.post("/books/register", response_model=BookOut, status_code=201)
def register_book(body: BookIn, db: Session = Depends(get_db)):
    book = book_service.register_book(db, body.model_dump(exclude_none=True))
    return _to_out(book)


@app.patch("/books/{book_id}", response_model=BookOut)
def update_book(book_id: int, body: BookPatch, db: Session = Depends(get_db)):
    book = book_service.update_book(db, book_id, body.model_dump(exclude_unset=True))
    return _to_out(book)


@app.delete("/books/{book_id}", status_code=204)
def delete_book(book_id: int, db: Session = Depends(get_db)):
    book_service.delete_book(db, book_id)
    return Response(status_code=204)


@app.patch("/books/{book_id}/release")
def release_mark(book_id: int, db: Session = Depends(get_db)):
    mark = release_book_mark(db, book_id, actor="api")
    db.commit()
    return {"success": True, "mark": mark}


# ---------------------------------------------------------------------------
# Marks
# ---------------------------------------------------------------------------

@app.get("/marks/prefix")
def prefix_for_size(
    width: str = Query(..., description="Width in cm ('12,5' or '12.5')"),
    height: str = Query(..., description="Height in cm"),
    db: Session = Depends(get_db),
):
    w = require_cm(width, "width")
    h = require_cm(height, "height")
    table = rules_from_db(db)
    res = explain(w, h, table)
    if not res.matched:
        # Applies BMARK_DEFAULT_SERIES when configured, else raises NoMatch
        out = res.as_dict()
        out["prefix"] = resolve_series(db, w, h, table)
        out["default_series"] = True
        return out
    return res.as_dict()


@app.get("/marks/preview")
def preview_mark(prefix: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    cand = MarkPool(db).peek(prefix)
    if cand is None:
        return None
    return {"mark": cand.mark, "rank": cand.rank}


@app.post("/marks/reclaim")
def reclaim(dry_run: bool = Query(False), db: Session = Depends(get_db)):
    # Same job lock as the scheduled run; the request session only supplies the engine
    result = run_reclaim_job(sessionmaker(bind=db.get_bind()), dry_run=dry_run)
    if result is None:
        raise ConcurrencyConflict("a reclaim run is already in progress")
    return result.as_dict()


# ---------------------------------------------------------------------------
# Barcodes
# ---------------------------------------------------------------------------

@app.get("/barcodes/available")
def barcodes_available(
    prefix: Optional[str] = Query(None),
    series: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    if not prefix and not series:
        raise InputError("series", "prefix or series is required")
    if not BarcodePool(db).exists_available(prefix=prefix, series=series):
        raise HTTPException(status_code=404, detail="no barcodes available")
    return {"available": True}


@app.get("/barcodes/preview")
def barcode_preview(width: str = Query(...), height: str = Query(...), db: Session = Depends(get_db)):
    w = require_cm(width, "width")
    h = require_cm(height, "height")
    series = resolve_series(db, w, h)
    candidate, count = BarcodePool(db).preview(series)
    return {"series": series, "candidate": candidate, "availableCount": count}


@app.post("/barcodes/reserve", response_model=BarcodeOut)
def reserve_barcode(body: ReserveIn, db: Session = Depends(get_db)):
    bc = BarcodePool(db).pick_and_reserve(prefix=body.prefix, series=body.series)
    db.commit()
    return _barcode_out(bc)


@app.post("/barcodes/{barcode_id}/assign", response_model=BarcodeOut)
def assign_barcode(barcode_id: int, body: AssignIn, db: Session = Depends(get_db)):
    if db.get(models.Book, body.book_id) is None:
        raise NotFound(f"book {body.book_id} not found")
    bc = BarcodePool(db).assign_reserved(barcode_id, body.book_id)
    db.commit()
    return _barcode_out(bc)


@app.post("/barcodes/{code}/free", response_model=BarcodeOut)
def free_barcode(code: str, db: Session = Depends(get_db)):
    bc = BarcodePool(db).free(code)
    if bc is None:
        raise HTTPException(status_code=404, detail="Barcode not found")
    db.commit()
    return _barcode_out(bc)
