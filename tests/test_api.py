"""HTTP surface tests against an in-memory database shared with the test session."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_db
from db.models import FreeMark, Job
from marks.barcodes import BarcodePool
from marks.reclaimer import JOB_NAME


@pytest.fixture
def client(make_session, stored_rules):
    def override_get_db():
        db = make_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


BOOK = {
    "width": "10,4",
    "height": "18,5",
    "author": "Ada Author",
    "keyword": "history",
    "keyword_priority": 1,
    "publisher": "Pub",
    "pages": 240,
}


def _register(client, **kw):
    body = dict(BOOK)
    body.update(kw)
    return client.post("/books/register", json=body)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


class TestBooks:
    def test_register_and_fetch(self, client, add_marks):
        add_marks("ogk001")
        r = _register(client)
        assert r.status_code == 201
        book = r.json()
        assert book["mark"] == "ogk001"
        assert book["status"] == "open"

        r = client.get(f"/books/{book['id']}")
        assert r.status_code == 200
        assert r.json()["width"] == 10.4

        listing = client.get("/books", params={"q": "ada"}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == book["id"]

    def test_unknown_book(self, client):
        assert client.get("/books/999").status_code == 404

    def test_invalid_field_is_422(self, client, add_marks):
        add_marks("ogk001")
        r = _register(client, author="")
        assert r.status_code == 422
        assert r.json()["field"] == "author"

    def test_no_rule_is_422(self, client, add_marks):
        add_marks("egk001")
        r = _register(client, height="17,5")
        assert r.status_code == 422
        assert r.json()["error"] == "no_series_for_size"

    def test_exhausted_is_409(self, client):
        r = _register(client)
        assert r.status_code == 409
        assert r.json()["error"] == "no codes available for this size"
        assert r.json()["tried"] == ["ogk"]

    def test_update_release_and_delete(self, client, session, add_marks):
        add_marks("ogk010")
        book = _register(client).json()

        r = client.patch(f"/books/{book['id']}", json={"status": "historicized", "pages": 300})
        assert r.status_code == 200
        assert r.json()["status"] == "historicized"
        assert r.json()["reclaim_due_at"] is not None

        r = client.patch(f"/books/{book['id']}/release")
        assert r.status_code == 200
        assert r.json() == {"success": True, "mark": "ogk010"}
        assert session.query(FreeMark).filter_by(mark="ogk010").one().rank == 1
        assert client.get(f"/books/{book['id']}").json()["mark"] is None

        r = client.patch(f"/books/{book['id']}/release")
        assert r.status_code == 404

        assert client.delete(f"/books/{book['id']}").status_code == 204
        assert client.delete(f"/books/{book['id']}").status_code == 404


class TestMarks:
    def test_prefix_for_size(self, client):
        r = client.get("/marks/prefix", params={"width": "10,4", "height": "21"})
        assert r.status_code == 200
        body = r.json()
        assert body["prefix"] == "lgk"
        assert body["bucket"] == "size 0"

    def test_prefix_bad_input(self, client):
        r = client.get("/marks/prefix", params={"width": "wide", "height": "21"})
        assert r.status_code == 422
        assert r.json()["field"] == "width"

    def test_prefix_gap(self, client, monkeypatch):
        params = {"width": "10,4", "height": "17,5"}
        assert client.get("/marks/prefix", params=params).status_code == 422
        monkeypatch.setenv("BMARK_DEFAULT_SERIES", "egk")
        body = client.get("/marks/prefix", params=params).json()
        assert body["prefix"] == "egk"
        assert body["default_series"] is True

    def test_preview_uses_fallback(self, client, add_marks):
        add_marks("eik003")
        r = client.get("/marks/preview", params={"prefix": "ei"})
        assert r.json() == {"mark": "eik003", "rank": 0}
        assert client.get("/marks/preview", params={"prefix": "og"}).json() is None

    def test_reclaim_endpoint(self, client):
        r = client.post("/marks/reclaim", params={"dry_run": True})
        assert r.status_code == 200
        assert r.json() == {"scanned": 0, "released": 0, "conflicts": 0, "dry_run": True}

    def test_reclaim_respects_job_lock(self, client, session):
        session.add(Job(name=JOB_NAME, status="running", lock_key=JOB_NAME))
        session.commit()
        r = client.post("/marks/reclaim")
        assert r.status_code == 409
        assert "already in progress" in r.json()["error"]


class TestBarcodes:
    @pytest.fixture
    def codes(self, session):
        BarcodePool(session).add(["ogk001", "ogk002"])
        session.commit()

    def test_reserve_assign_free(self, client, codes, add_marks):
        add_marks("egk001")
        book = _register(client, height="17").json()

        r = client.post("/barcodes/reserve", json={"series": "ogk"})
        assert r.status_code == 200
        bc = r.json()
        assert (bc["code"], bc["status"]) == ("ogk001", "reserved")

        r = client.post(f"/barcodes/{bc['id']}/assign", json={"book_id": book["id"]})
        assert r.status_code == 200
        assert r.json()["assigned_book_id"] == book["id"]

        r = client.post(f"/barcodes/{bc['id']}/assign", json={"book_id": book["id"]})
        assert r.status_code == 409

        r = client.post("/barcodes/OGK001/free")
        assert r.status_code == 200
        assert r.json()["status"] == "available"
        assert client.post("/barcodes/zzz/free").status_code == 404

    def test_assign_unknown_book(self, client, codes):
        bc = client.post("/barcodes/reserve", json={"series": "ogk"}).json()
        assert client.post(f"/barcodes/{bc['id']}/assign", json={"book_id": 404}).status_code == 404

    def test_available(self, client, codes):
        assert client.get("/barcodes/available", params={"series": "ogk"}).json() == {"available": True}
        assert client.get("/barcodes/available", params={"series": "lgk"}).status_code == 404
        assert client.get("/barcodes/available").status_code == 422

    def test_preview_for_size(self, client, codes):
        r = client.get("/barcodes/preview", params={"width": "10,4", "height": "18,5"})
        assert r.status_code == 200
        assert r.json() == {"series": "ogk", "candidate": "ogk001", "availableCount": 2}

    def test_reserve_exhausted(self, client):
        r = client.post("/barcodes/reserve", json={"series": "ogk"})
        assert r.status_code == 409
