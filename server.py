from __future__ import annotations

import time
from functools import partial
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api import get_book_by_isbn, search_books
from config import Settings, configure_logging, get_settings
from filters import filter_summary
from gemini import GeminiClient
from inventory import InventoryStore
from media import prepare_scan_image
from models import PersistenceError, ValidationError, utc_now
from remote import AuthenticationError, SupabaseStore, authenticate, create_supabase_client
from scholar import paper_details, search_papers
from searching import SearchCoordinator, merge_add_results
from state import LibraryState
from views import VIEW_MODES

SCAN_MATCH_LIMIT = 5
STARTED_AT = time.monotonic()


# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

app = FastAPI(title="Digital Library API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store(settings: Settings = Depends(get_settings)) -> InventoryStore:
    if not hasattr(get_store, "_instance"):
        get_store._instance = InventoryStore(settings.db_path)
    return get_store._instance  # type: ignore[attr-defined]


def get_search_coordinator(settings: Settings = Depends(get_settings)) -> SearchCoordinator:
    if not hasattr(get_search_coordinator, "_instance"):
        get_search_coordinator._instance = SearchCoordinator(
            partial(
                search_books,
                max_results=SCAN_MATCH_LIMIT,
                api_key=settings.google_books_api_key,
                timeout=settings.request_timeout,
            ),
            partial(
                search_papers,
                max_results=SCAN_MATCH_LIMIT,
                provider=settings.paper_provider,
                timeout=settings.request_timeout,
            ),
            debounce=settings.search_debounce,
        )
    return get_search_coordinator._instance  # type: ignore[attr-defined]


def get_gemini_client(settings: Settings = Depends(get_settings)) -> GeminiClient:
    return GeminiClient(
        settings.gemini_api_key,
        model=settings.gemini_model,
        timeout=settings.request_timeout,
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Malformed Authorization header")
    return token.strip()


def get_supabase_client(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Any:
    if not _bearer_token(authorization):
        return None
    client = create_supabase_client(settings)
    if client is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Online library is not configured")
    return client


def get_library(
    authorization: Optional[str] = Header(None),
    store: InventoryStore = Depends(get_store),
    client: Any = Depends(get_supabase_client),
) -> LibraryState:
    token = _bearer_token(authorization)
    remote = None
    session = None
    if token and client is not None:
        try:
            session = authenticate(client, token)
        except AuthenticationError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
        remote = SupabaseStore(client, session)

    library = LibraryState(store, remote=remote, session=session)
    try:
        library.load()
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return library


@app.on_event("startup")
def _startup() -> None:
    configure_logging()


@app.on_event("shutdown")
def _shutdown() -> None:
    store = getattr(get_store, "_instance", None)
    if isinstance(store, InventoryStore):
        store.close()
    coordinator = getattr(get_search_coordinator, "_instance", None)
    if isinstance(coordinator, SearchCoordinator):
        coordinator.shutdown()


# -----------------------------------------------------------------------------
# Pydantic models
# -----------------------------------------------------------------------------


class ItemFields(BaseModel):
    # camelCase keys from browser exports pass through as extras.
    model_config = ConfigDict(extra="allow")

    author: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    publishing_year: Optional[Any] = None
    pages: Optional[Any] = None
    language: Optional[str] = None
    status: Optional[str] = None
    difficulty: Optional[Any] = None
    rating: Optional[Any] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    cover_url: Optional[str] = None
    url: Optional[str] = None
    isbn: Optional[str] = None
    doi: Optional[str] = None
    publisher: Optional[str] = None


class ItemCreate(ItemFields):
    title: str


class ItemUpdate(ItemFields):
    title: Optional[str] = None


class ScanRequest(BaseModel):
    image: str = Field(..., min_length=1)
    mime_type: str = "image/jpeg"


class SearchResponse(BaseModel):
    results: List[Dict[str, Any]]
    total: int
    query: str


class LibraryResponse(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    source: str = "local"
    notifications: List[Dict[str, str]] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------


def _require_query(q: Optional[str]) -> str:
    if not q or not q.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Search query is required")
    return q.strip()


def _filter_values(
    type: Optional[str],
    status_: Optional[str],
    rating: Optional[str],
    difficulty: Optional[str],
    language: Optional[str],
    category: Optional[str],
) -> Dict[str, Optional[str]]:
    return {
        "type": type,
        "status": status_,
        "rating": rating,
        "difficulty": difficulty,
        "language": language,
        "category": category,
    }


def _apply_filters(library: LibraryState, values: Dict[str, Optional[str]]) -> None:
    try:
        library.set_filters(values)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _notifications(library: LibraryState) -> List[Dict[str, str]]:
    return [note.to_dict() for note in library.drain_notifications()]


# -----------------------------------------------------------------------------
# Health and external search
# -----------------------------------------------------------------------------


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {
        "status": "OK",
        "timestamp": utc_now(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


@app.get("/api/books/search", response_model=SearchResponse)
def search_google_books(
    q: Optional[str] = Query(None, description="Free-text book query"),
    max_results: int = Query(10, ge=1, le=40),
    settings: Settings = Depends(get_settings),
) -> SearchResponse:
    query = _require_query(q)
    results = search_books(
        query,
        max_results,
        api_key=settings.google_books_api_key,
        timeout=settings.request_timeout,
    )
    return SearchResponse(results=[result.to_dict() for result in results], total=len(results), query=query)


@app.get("/api/scholar/search", response_model=SearchResponse)
def search_scholar_papers(
    q: Optional[str] = Query(None, description="Free-text paper query"),
    max_results: int = Query(10, ge=1, le=20),
    provider: Optional[str] = Query(None, pattern="^(scholar|semantic_scholar)$"),
    settings: Settings = Depends(get_settings),
) -> SearchResponse:
    query = _require_query(q)
    results = search_papers(
        query,
        max_results,
        provider=provider or settings.paper_provider,
        timeout=settings.request_timeout,
    )
    return SearchResponse(results=[result.to_dict() for result in results], total=len(results), query=query)


@app.get("/api/scholar/details")
def scholar_details(url: str = Query(..., min_length=1)) -> Dict[str, Any]:
    details = paper_details(url)
    if details is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Paper details unavailable")
    return details


@app.get("/api/search")
def add_dialog_search(
    q: Optional[str] = Query(None),
    kind: str = Query("book", pattern="^(book|paper|all)$"),
    library: LibraryState = Depends(get_library),
    coordinator: SearchCoordinator = Depends(get_search_coordinator),
) -> Dict[str, Any]:
    if not q or not q.strip():
        return {"query": q or "", "kind": kind, "results": []}
    query = q.strip()
    existing = library.search_existing(query)

    if kind == "all":
        outcome = coordinator.search_now(query)
        return {
            "query": query,
            "kind": kind,
            "books": [result.to_dict() for result in outcome.books],
            "papers": [result.to_dict() for result in outcome.papers],
            "existing": [item.to_dict() for item in existing],
        }

    search = coordinator.book_search if kind == "book" else coordinator.paper_search
    results = merge_add_results(search(query), existing, search_type=kind)
    return {"query": query, "kind": kind, "results": results}


@app.post("/api/scan/process")
def process_scan(
    payload: ScanRequest,
    settings: Settings = Depends(get_settings),
    gemini: GeminiClient = Depends(get_gemini_client),
) -> Dict[str, Any]:
    try:
        image, mime_type = prepare_scan_image(payload.image, payload.mime_type)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    extraction = gemini.extract_cover_info(image, mime_type)

    # Extracted fields are untrusted; matches come from a fresh catalogue search.
    matches = []
    if extraction.trusted:
        fields = extraction.fields
        if fields.get("isbn"):
            found = get_book_by_isbn(
                fields["isbn"],
                api_key=settings.google_books_api_key,
                timeout=settings.request_timeout,
            )
            matches = [found] if found else []
        if not matches and fields.get("title"):
            query = " ".join(part for part in (fields.get("title"), fields.get("author")) if part)
            matches = search_books(
                query,
                SCAN_MATCH_LIMIT,
                api_key=settings.google_books_api_key,
                timeout=settings.request_timeout,
            )

    return {
        "extraction": extraction.to_dict(),
        "item": extraction.to_result().to_dict(),
        "matches": [match.to_dict() for match in matches[:SCAN_MATCH_LIMIT]],
        "timestamp": utc_now(),
    }


# -----------------------------------------------------------------------------
# Library collection
# -----------------------------------------------------------------------------


@app.get("/api/library", response_model=LibraryResponse)
def list_items(library: LibraryState = Depends(get_library)) -> LibraryResponse:
    return LibraryResponse(
        items=library.export_items(),
        total=len(library.items),
        source=library.source,
        notifications=_notifications(library),
    )


@app.post("/api/library", status_code=status.HTTP_201_CREATED)
def create_item(payload: ItemCreate, library: LibraryState = Depends(get_library)) -> Dict[str, Any]:
    try:
        item = library.add_item(payload.model_dump(exclude_none=True))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return item.to_dict()


@app.put("/api/library/{item_id}")
def update_item(
    item_id: str,
    payload: ItemUpdate,
    library: LibraryState = Depends(get_library),
) -> Dict[str, Any]:
    try:
        item = library.update_item(item_id, payload.model_dump(exclude_unset=True))
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return item.to_dict()


@app.delete("/api/library/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: str, library: LibraryState = Depends(get_library)) -> Response:
    try:
        library.delete_item(item_id)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/api/library", status_code=status.HTTP_204_NO_CONTENT)
def clear_library(library: LibraryState = Depends(get_library)) -> Response:
    try:
        library.clear()
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/library/filter")
def filter_items(
    type: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    rating: Optional[str] = Query(None),
    difficulty: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    library: LibraryState = Depends(get_library),
) -> Dict[str, Any]:
    _apply_filters(library, _filter_values(type, status_, rating, difficulty, language, category))
    visible = library.visible_items()
    return {
        "items": [item.to_dict() for item in visible],
        "total": len(library.items),
        "shown": len(visible),
        "filters": library.filters.as_dict(),
        "message": filter_summary(len(library.items), len(visible), library.filters),
        "notifications": _notifications(library),
    }


@app.get("/api/library/search")
def search_library(q: Optional[str] = Query(None), library: LibraryState = Depends(get_library)) -> Dict[str, Any]:
    matches = library.search(q)
    return {"query": q or "", "items": [item.to_dict() for item in matches], "total": len(matches)}


@app.get("/api/library/highlight")
def highlight_library(q: Optional[str] = Query(None), library: LibraryState = Depends(get_library)) -> Dict[str, Any]:
    indices = library.highlight(q)
    ids = None if indices is None else [library.items[index].id for index in indices]
    return {"query": q or "", "highlight": indices is not None, "indices": indices, "ids": ids}


@app.get("/api/library/categories")
def library_categories(library: LibraryState = Depends(get_library)) -> List[str]:
    return library.categories()


@app.get("/api/library/view")
def library_view(
    mode: str = Query("masonry", pattern="^(" + "|".join(VIEW_MODES) + ")$"),
    type: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    rating: Optional[str] = Query(None),
    difficulty: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    library: LibraryState = Depends(get_library),
) -> Dict[str, Any]:
    _apply_filters(library, _filter_values(type, status_, rating, difficulty, language, category))
    nodes = library.render(mode)
    return {"mode": mode, "nodes": nodes, "total": len(nodes)}


@app.get("/api/library/export")
def export_library(library: LibraryState = Depends(get_library)) -> JSONResponse:
    return JSONResponse(
        content=library.export_items(),
        headers={"Content-Disposition": 'attachment; filename="digital-library-backup.json"'},
    )


@app.post("/api/library/import")
def import_library(payload: Any = Body(...), library: LibraryState = Depends(get_library)) -> Dict[str, Any]:
    try:
        items = library.import_items(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return {"imported": len(items), "items": [item.to_dict() for item in items]}
