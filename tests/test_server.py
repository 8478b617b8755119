from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import server
from gemini import parse_gemini_response
from inventory import InventoryStore
from models import LibraryItem
from normalize import ExternalResult
from remote import TABLE
from searching import SearchCoordinator
from server import app, get_gemini_client, get_search_coordinator, get_store, get_supabase_client


def _result(title: str, source: str = "google_books") -> ExternalResult:
    return ExternalResult(source=source, item=LibraryItem(title=title, type="paper" if "scholar" in source else "book"))


def _reset_singletons() -> None:
    for factory in (get_store, get_search_coordinator):
        if hasattr(factory, "_instance"):
            delattr(factory, "_instance")


class FakeGemini:
    def __init__(self, text: str):
        self.text = text
        self.calls = []

    def extract_cover_info(self, image_base64, mime_type="image/jpeg"):
        self.calls.append(mime_type)
        return parse_gemini_response(self.text)


@pytest.fixture
def store(tmp_path: Path) -> InventoryStore:
    _reset_singletons()
    test_store = InventoryStore(db_path=tmp_path / "library.db")
    coordinator = SearchCoordinator(
        lambda query: [_result(f"Book {n} {query}") for n in range(7)],
        lambda query: [_result(f"Paper {query}", source="google_scholar")],
    )
    app.dependency_overrides[get_store] = lambda: test_store
    app.dependency_overrides[get_search_coordinator] = lambda: coordinator
    yield test_store
    app.dependency_overrides.clear()
    coordinator.shutdown()
    test_store.close()
    _reset_singletons()


@pytest.fixture
def client(store: InventoryStore) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def _add(client: TestClient, **fields) -> dict:
    response = client.post("/api/library", json=fields)
    assert response.status_code == 201, response.text
    return response.json()


def _seed(client: TestClient) -> None:
    _add(client, title="Attention Is All You Need", type="paper", category="AI", rating=5, difficulty=4)
    _add(client, title="Deep Learning", type="book", category="AI", rating=4, difficulty=2)
    _add(client, title="Dune", type="book", category="Fiction")


def test_health(client: TestClient) -> None:
    payload = client.get("/api/health").json()
    assert payload["status"] == "OK"
    assert "timestamp" in payload and payload["uptime"] >= 0


# -----------------------------------------------------------------------------
# Library collection
# -----------------------------------------------------------------------------


def test_create_and_list_items(client: TestClient) -> None:
    created = _add(client, title="Dune", author="Frank Herbert", publishingYear="1965")
    assert created["id"] == 1
    assert created["publishing_year"] == 1965

    listing = client.get("/api/library").json()
    assert listing["total"] == 1
    assert listing["source"] == "local"
    assert listing["items"][0]["title"] == "Dune"


@pytest.mark.parametrize(
    ("payload", "status_code"),
    [
        ({"author": "No title"}, 422),
        ({"title": "x", "rating": 9}, 400),
        ({"title": "x", "type": "movie"}, 400),
        ({"title": "x", "pages": "lots"}, 400),
    ],
)
def test_invalid_items_are_rejected(client: TestClient, store: InventoryStore, payload, status_code) -> None:
    response = client.post("/api/library", json=payload)
    assert response.status_code == status_code
    assert store.count() == 0


def test_update_item(client: TestClient) -> None:
    item = _add(client, title="Dune")
    response = client.put(f"/api/library/{item['id']}", json={"status": "read", "rating": 4.5})
    assert response.status_code == 200
    assert response.json()["status"] == "read"
    assert response.json()["title"] == "Dune"

    assert client.put("/api/library/999", json={"status": "read"}).status_code == 404
    assert client.put(f"/api/library/{item['id']}", json={"rating": "abc"}).status_code == 400


def test_delete_item_and_clear(client: TestClient) -> None:
    _seed(client)
    assert client.delete("/api/library/2").status_code == 204
    titles = [item["title"] for item in client.get("/api/library").json()["items"]]
    assert titles == ["Attention Is All You Need", "Dune"]
    assert client.delete("/api/library/2").status_code == 404

    assert client.delete("/api/library").status_code == 204
    assert client.get("/api/library").json()["total"] == 0


def test_filter_endpoint(client: TestClient) -> None:
    _seed(client)
    payload = client.get("/api/library/filter", params={"rating": "4.5"}).json()
    assert [item["title"] for item in payload["items"]] == ["Attention Is All You Need"]
    assert payload["message"] == "Showing 1 of 3 items"

    unfiltered = client.get("/api/library/filter").json()
    assert unfiltered["shown"] == 3
    assert unfiltered["message"] is None

    easy = client.get("/api/library/filter", params={"difficulty": "easy", "type": "book"}).json()
    assert [item["title"] for item in easy["items"]] == ["Deep Learning"]

    assert client.get("/api/library/filter", params={"difficulty": "extreme"}).status_code == 400


def test_search_and_highlight(client: TestClient) -> None:
    _seed(client)
    upper = client.get("/api/library/search", params={"q": "ATTENTION"}).json()
    lower = client.get("/api/library/search", params={"q": "attention"}).json()
    assert upper["items"] == lower["items"]
    assert upper["total"] == 1
    assert client.get("/api/library/search").json()["total"] == 3

    blank = client.get("/api/library/highlight", params={"q": ""}).json()
    assert blank["highlight"] is False
    assert blank["indices"] is None
    dune = client.get("/api/library/highlight", params={"q": "dune"}).json()
    assert dune["indices"] == [2]
    assert dune["ids"] == [3]


def test_categories_and_views(client: TestClient) -> None:
    _seed(client)
    assert client.get("/api/library/categories").json() == ["AI", "Fiction"]

    planet = client.get("/api/library/view", params={"mode": "planet", "category": "AI"}).json()
    assert planet["total"] == 2
    assert {"x", "y", "z"} <= set(planet["nodes"][0])

    masonry = client.get("/api/library/view").json()
    assert masonry["mode"] == "masonry"
    assert masonry["nodes"][0]["stars"] == "★★★★★"

    assert client.get("/api/library/view", params={"mode": "carousel"}).status_code == 422


def test_export_and_import(client: TestClient) -> None:
    _seed(client)
    response = client.get("/api/library/export")
    assert "digital-library-backup.json" in response.headers["content-disposition"]
    exported = response.json()
    assert len(exported) == 3

    replaced = client.post("/api/library/import", json=exported[:1])
    assert replaced.status_code == 200
    assert replaced.json()["imported"] == 1
    assert client.get("/api/library").json()["total"] == 1

    bad = client.post("/api/library/import", json={"items": "nope"})
    assert bad.status_code == 400
    assert client.get("/api/library").json()["total"] == 1


# -----------------------------------------------------------------------------
# External search
# -----------------------------------------------------------------------------


def test_book_search_requires_query(client: TestClient) -> None:
    assert client.get("/api/books/search").status_code == 400
    assert client.get("/api/books/search", params={"q": "  "}).status_code == 400


def test_book_search_returns_normalized_results(client: TestClient, monkeypatch) -> None:
    seen = {}

    def fake_search(query, max_results=10, **kwargs):
        seen.update(query=query, max_results=max_results)
        return [_result("Dune")]

    monkeypatch.setattr(server, "search_books", fake_search)
    payload = client.get("/api/books/search", params={"q": "dune", "max_results": 3}).json()
    assert payload["total"] == 1
    assert payload["results"][0]["source"] == "google_books"
    assert seen == {"query": "dune", "max_results": 3}


def test_scholar_search_passes_provider(client: TestClient, monkeypatch) -> None:
    seen = {}

    def fake_papers(query, max_results=10, provider="scholar", **kwargs):
        seen["provider"] = provider
        return [_result("Attention", source="semantic_scholar")]

    monkeypatch.setattr(server, "search_papers", fake_papers)
    response = client.get("/api/scholar/search", params={"q": "attention", "provider": "semantic_scholar"})
    assert response.status_code == 200
    assert seen["provider"] == "semantic_scholar"
    assert client.get("/api/scholar/search", params={"q": "x", "provider": "bing"}).status_code == 422


def test_add_dialog_search_merges_external_and_existing(client: TestClient) -> None:
    _seed(client)
    payload = client.get("/api/search", params={"q": "deep", "kind": "book"}).json()
    sources = [entry["source"] for entry in payload["results"]]
    assert sources == ["google_books"] * 5 + ["library"]
    assert payload["results"][-1]["title"] == "Deep Learning"

    papers = client.get("/api/search", params={"q": "deep", "kind": "paper"}).json()
    assert [entry["search_type"] for entry in papers["results"]] == ["paper", "existing"]

    both = client.get("/api/search", params={"q": "deep", "kind": "all"}).json()
    assert len(both["books"]) == 7
    assert len(both["papers"]) == 1

    assert client.get("/api/search", params={"q": ""}).json()["results"] == []


# -----------------------------------------------------------------------------
# Cover scanning
# -----------------------------------------------------------------------------


def test_scan_searches_catalogue_with_extracted_title(client: TestClient, monkeypatch, png_base64) -> None:
    gemini = FakeGemini('{"title": "Dune", "author": "Frank Herbert", "confidence": 90}')
    app.dependency_overrides[get_gemini_client] = lambda: gemini
    queries = []

    def fake_search(query, max_results=10, **kwargs):
        queries.append(query)
        return [_result(f"Match {n}") for n in range(8)]

    monkeypatch.setattr(server, "search_books", fake_search)
    response = client.post("/api/scan/process", json={"image": png_base64, "mime_type": "image/png"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["extraction"]["parse_kind"] == "parsed"
    assert payload["item"]["title"] == "Dune"
    assert len(payload["matches"]) == 5
    assert queries == ["Dune Frank Herbert"]
    assert gemini.calls == ["image/png"]


def test_scan_prefers_isbn_lookup(client: TestClient, monkeypatch, png_base64) -> None:
    app.dependency_overrides[get_gemini_client] = lambda: FakeGemini('{"title": "Dune", "isbn": "9780441013593"}')
    monkeypatch.setattr(server, "get_book_by_isbn", lambda isbn, **kwargs: _result(f"ISBN {isbn}"))
    monkeypatch.setattr(server, "search_books", lambda *a, **k: pytest.fail("title search not expected"))
    payload = client.post("/api/scan/process", json={"image": png_base64, "mime_type": "image/png"}).json()
    assert [match["title"] for match in payload["matches"]] == ["ISBN 9780441013593"]


def test_scan_placeholder_skips_catalogue(client: TestClient, monkeypatch, png_base64) -> None:
    app.dependency_overrides[get_gemini_client] = lambda: FakeGemini("I can't read that.")
    monkeypatch.setattr(server, "search_books", lambda *a, **k: pytest.fail("search not expected"))
    payload = client.post("/api/scan/process", json={"image": png_base64, "mime_type": "image/png"}).json()
    assert payload["extraction"]["parse_kind"] == "fallback"
    assert payload["extraction"]["title"] == "Book Cover Detected"
    assert payload["matches"] == []


def test_scan_rejects_bad_images(client: TestClient, png_base64) -> None:
    app.dependency_overrides[get_gemini_client] = lambda: FakeGemini("{}")
    response = client.post("/api/scan/process", json={"image": png_base64, "mime_type": "image/gif"})
    assert response.status_code == 400
    assert client.post("/api/scan/process", json={"mime_type": "image/png"}).status_code == 422


# -----------------------------------------------------------------------------
# Authenticated sessions
# -----------------------------------------------------------------------------


def test_bearer_token_routes_to_remote_library(client: TestClient, store: InventoryStore, fake_supabase) -> None:
    app.dependency_overrides[get_supabase_client] = lambda: fake_supabase
    headers = {"Authorization": "Bearer good-token"}

    created = client.post("/api/library", json={"title": "Synced"}, headers=headers)
    assert created.status_code == 201
    assert store.count() == 0
    assert fake_supabase.table(TABLE).rows[0]["user_id"] == "user-1"

    listing = client.get("/api/library", headers=headers).json()
    assert listing["source"] == "remote"
    assert [item["title"] for item in listing["items"]] == ["Synced"]


@pytest.mark.parametrize("header", ["Bearer expired", "Token good-token", "Basic abc"])
def test_bad_credentials_are_unauthorized(client: TestClient, fake_supabase, header) -> None:
    app.dependency_overrides[get_supabase_client] = lambda: fake_supabase
    assert client.get("/api/library", headers={"Authorization": header}).status_code == 401


def test_remote_outage_falls_back_to_local(client: TestClient, store: InventoryStore, fake_supabase) -> None:
    store.insert(LibraryItem(title="Local copy"))
    fake_supabase.table(TABLE).fail = RuntimeError("timeout")
    app.dependency_overrides[get_supabase_client] = lambda: fake_supabase

    payload = client.get("/api/library", headers={"Authorization": "Bearer good-token"}).json()
    assert payload["source"] == "local"
    assert [item["title"] for item in payload["items"]] == ["Local copy"]
    assert payload["notifications"][0]["level"] == "error"
