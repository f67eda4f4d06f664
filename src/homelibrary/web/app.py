"""FastAPI web application for the home library."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .. import __version__
from ..core.batch import BatchScanQueue
from ..core.config import Settings, configure_logging
from ..core.errors import InvalidTransitionError, ItemNotFoundError, QueueBusyError
from ..core.export import export_filename, generate_csv_bytes
from ..core.filters import (
    ALL_SHELVES,
    filter_books,
    genre_counts,
    unique_authors,
    unique_publishers,
)
from ..core.identifier import GeminiIdentifier, Identifier
from ..core.library import (
    BOOK_REQUIRED_MESSAGE,
    SHELF_IN_USE_MESSAGE,
    CatalogStore,
    validate_book,
    validate_shelf_name,
)
from ..core.models import FALLBACK_GENRE_COLOR, GENRE_COLORS, BookDraft
from ..core.scan import scan_single
from ..core.storage import KeyValueStorage

log = structlog.get_logger()

MAX_BODY_BYTES = 10_000_000  # one base64 photo with headroom


@dataclass
class LibraryState:
    """Everything a request handler may touch, owned in one place."""

    catalog: CatalogStore
    identifier: Identifier
    queue: BatchScanQueue


_state: LibraryState | None = None


def build_state(settings: Settings) -> LibraryState:
    catalog = CatalogStore(KeyValueStorage(settings.db_path))
    catalog.load()
    identifier = GeminiIdentifier(
        api_key=settings.gemini_api_key,
        vision_model=settings.vision_model,
        text_model=settings.text_model,
        language=settings.metadata_language,
    )
    return LibraryState(catalog=catalog, identifier=identifier, queue=BatchScanQueue(identifier, catalog))


async def get_state() -> LibraryState:
    global _state
    if _state is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        _state = build_state(settings)
    return _state


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> dict | JSONResponse:
    """Parse a JSON object body, or return the error response to send."""
    content_length = request.headers.get("content-length")
    try:
        if content_length and int(content_length) > MAX_BODY_BYTES:
            return _error("Request too large.", 413)
        body = await request.json()
    except ValueError:
        # covers bad JSON, invalid UTF-8 and a non-numeric content-length
        return _error("Request body must be JSON.", 400)
    if not isinstance(body, dict):
        return _error("Request body must be a JSON object.", 400)
    return body


app = FastAPI(title="Home Library", docs_url=None, redoc_url=None)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


# -- books -----------------------------------------------------------------


@app.get("/api/books")
async def list_books(q: str = "", shelf: str = ALL_SHELVES, state: LibraryState = Depends(get_state)):
    books = filter_books(state.catalog.books, q, shelf)
    return {
        "books": [
            {**b.to_dict(), "shelfName": state.catalog.shelf_name(b.shelf_id)} for b in books
        ],
        "total": len(state.catalog.books),
    }


@app.post("/api/books")
async def create_book(request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    draft = BookDraft.from_dict(body)
    errors = validate_book(draft)
    if errors:
        return _error(errors[0], 400)
    book = state.catalog.add_book(draft)
    return JSONResponse(book.to_dict(), status_code=201)


@app.put("/api/books/{book_id}")
async def update_book(book_id: str, request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    current = state.catalog.get_book(book_id)
    if current is None:
        return _error("Book not found.", 404)
    book = state.catalog.update_book(book_id, body)
    if book is None:
        return _error(BOOK_REQUIRED_MESSAGE, 400)
    return book.to_dict()


@app.delete("/api/books/{book_id}")
async def delete_book(book_id: str, state: LibraryState = Depends(get_state)):
    if not state.catalog.remove_book(book_id):
        return _error("Book not found.", 404)
    return Response(status_code=204)


# -- shelves ---------------------------------------------------------------


def _shelf_payload(state: LibraryState) -> list[dict]:
    return [
        {**s.to_dict(), "bookCount": state.catalog.count_books(s.id)}
        for s in state.catalog.shelves
    ]


@app.get("/api/shelves")
async def list_shelves(state: LibraryState = Depends(get_state)):
    return {"shelves": _shelf_payload(state)}


@app.post("/api/shelves")
async def create_shelf(request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    name = str(body.get("name") or "").strip()
    errors = validate_shelf_name(name)
    if errors:
        return _error(errors[0], 400)
    shelf = state.catalog.add_shelf(name, str(body.get("description") or "").strip())
    return JSONResponse(shelf.to_dict(), status_code=201)


@app.put("/api/shelves/{shelf_id}")
async def update_shelf(shelf_id: str, request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    if state.catalog.get_shelf(shelf_id) is None:
        return _error("Shelf not found.", 404)
    name = str(body.get("name") or "").strip()
    errors = validate_shelf_name(name)
    if errors:
        return _error(errors[0], 400)
    shelf = state.catalog.update_shelf(shelf_id, name, str(body.get("description") or "").strip())
    return shelf.to_dict()


@app.delete("/api/shelves/{shelf_id}")
async def delete_shelf(shelf_id: str, state: LibraryState = Depends(get_state)):
    if state.catalog.get_shelf(shelf_id) is None:
        return _error("Shelf not found.", 404)
    if not state.catalog.remove_shelf(shelf_id):
        return _error(SHELF_IN_USE_MESSAGE, 409)
    return Response(status_code=204)


@app.post("/api/shelves/{shelf_id}/move")
async def move_shelf(shelf_id: str, request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    if state.catalog.get_shelf(shelf_id) is None:
        return _error("Shelf not found.", 404)
    direction = body.get("direction")
    if direction not in ("up", "down"):
        return _error("Direction must be 'up' or 'down'.", 400)
    moved = state.catalog.reorder_shelf(shelf_id, direction)
    return {"moved": moved, "shelves": _shelf_payload(state)}


# -- dashboard, suggestions, export -----------------------------------------


@app.get("/api/stats")
async def stats(state: LibraryState = Depends(get_state)):
    books = state.catalog.books
    return {
        "totalBooks": len(books),
        "totalShelves": len(state.catalog.shelves),
        "genres": [
            {"name": name, "value": count, "color": GENRE_COLORS.get(name, FALLBACK_GENRE_COLOR)}
            for name, count in genre_counts(books).items()
        ],
    }


@app.get("/api/suggestions")
async def suggestions(state: LibraryState = Depends(get_state)):
    books = state.catalog.books
    return {
        "authors": unique_authors(books),
        "publishers": unique_publishers(books),
        "genres": list(GENRE_COLORS),
    }


@app.get("/api/export/csv")
async def export_csv(q: str = "", shelf: str = ALL_SHELVES, state: LibraryState = Depends(get_state)):
    books = filter_books(state.catalog.books, q, shelf)
    csv_bytes = generate_csv_bytes(books, state.catalog.shelves)
    return Response(
        content=csv_bytes,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


# -- scanning --------------------------------------------------------------


def _image_from(body: dict) -> str:
    return str(body.get("image") or "").strip()


@app.post("/api/scan")
async def scan(request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    image = _image_from(body)
    if not image:
        return _error("An image is required.", 400)
    outcome = await scan_single(state.identifier, image, state.catalog.default_shelf_id())
    if outcome.error:
        return _error(outcome.error, 422)
    return {"draft": outcome.draft.to_dict()}


def _batch_payload(queue: BatchScanQueue) -> dict:
    return {
        "open": queue.is_open,
        "canCommit": queue.can_commit,
        "summary": queue.summary(),
        "items": [i.to_dict() for i in queue.items],
    }


@app.get("/api/batch")
async def batch_status(state: LibraryState = Depends(get_state)):
    return _batch_payload(state.queue)


@app.post("/api/batch/items")
async def batch_add(request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    image = _image_from(body)
    if not image:
        return _error("An image is required.", 400)
    item = state.queue.add(image)
    return JSONResponse(item.to_dict(), status_code=201)


@app.delete("/api/batch/items/{item_id}")
async def batch_remove(item_id: str, state: LibraryState = Depends(get_state)):
    try:
        state.queue.remove(item_id)
    except ItemNotFoundError:
        return _error("Batch item not found.", 404)
    return Response(status_code=204)


@app.patch("/api/batch/items/{item_id}")
async def batch_edit(item_id: str, request: Request, state: LibraryState = Depends(get_state)):
    body = await _read_json(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        item = state.queue.update_draft(item_id, body)
    except ItemNotFoundError:
        return _error("Batch item not found.", 404)
    except InvalidTransitionError:
        return _error("Only identified items can be edited.", 409)
    return item.to_dict()


@app.post("/api/batch/review")
async def batch_review(state: LibraryState = Depends(get_state)):
    if not state.queue.open_review():
        return _error("No photos queued.", 400)
    return _batch_payload(state.queue)


@app.post("/api/batch/commit")
async def batch_commit(state: LibraryState = Depends(get_state)):
    queued = len(state.queue.items)
    try:
        books = state.queue.commit_all()
    except QueueBusyError:
        return _error("Wait until every photo has been processed.", 409)
    if not books:
        return _error("No processed books to save.", 400)
    return {"added": len(books), "skipped": queued - len(books), "books": [b.to_dict() for b in books]}


@app.post("/api/batch/close")
async def batch_close(state: LibraryState = Depends(get_state)):
    state.queue.close()
    return _batch_payload(state.queue)


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "homelibrary.web.app:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.is_dev,
    )
