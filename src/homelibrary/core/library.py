"""In-memory book and shelf catalog mirrored to key-value storage."""

from __future__ import annotations

import json
import uuid
from dataclasses import fields, replace
from datetime import datetime, timezone

import structlog

from .models import DEFAULT_SHELVES, UNKNOWN_SHELF, Book, BookDraft, Shelf, from_json_key
from .storage import BOOKS_KEY, SHELVES_KEY, KeyValueStorage

log = structlog.get_logger()

BOOK_REQUIRED_MESSAGE = "Please enter at least a title and a shelf."
SHELF_NAME_REQUIRED_MESSAGE = "Shelf name cannot be empty."
SHELF_IN_USE_MESSAGE = "Cannot delete a shelf that still holds books."

# Fields a patch may not overwrite.
_IMMUTABLE_BOOK_FIELDS = {"id", "added_at"}


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_book(record: Book | BookDraft) -> list[str]:
    """Return validation errors for a book record (empty list when valid)."""
    if not record.title or not record.shelf_id:
        return [BOOK_REQUIRED_MESSAGE]
    return []


def validate_shelf_name(name: str) -> list[str]:
    if not name:
        return [SHELF_NAME_REQUIRED_MESSAGE]
    return []


class CatalogStore:
    """Single owner of the book and shelf collections.

    Every mutation swaps in a new list and immediately re-serializes both
    collections. Validation failures do not raise: the mutation returns
    None or False and leaves state untouched.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._books: list[Book] = []
        self._shelves: list[Shelf] = [replace(s) for s in DEFAULT_SHELVES]

    @property
    def books(self) -> list[Book]:
        return list(self._books)

    @property
    def shelves(self) -> list[Shelf]:
        return list(self._shelves)

    def load(self) -> None:
        """Replace in-memory state with whatever storage holds."""
        raw_books = self.storage.get(BOOKS_KEY)
        raw_shelves = self.storage.get(SHELVES_KEY)
        if raw_books:
            self._books = [Book.from_dict(d) for d in json.loads(raw_books)]
        if raw_shelves:
            self._shelves = [Shelf.from_dict(d) for d in json.loads(raw_shelves)]
        log.info("catalog_loaded", books=len(self._books), shelves=len(self._shelves))

    def _persist(self) -> None:
        self.storage.set_many(
            {
                BOOKS_KEY: json.dumps([b.to_dict() for b in self._books], ensure_ascii=False),
                SHELVES_KEY: json.dumps([s.to_dict() for s in self._shelves], ensure_ascii=False),
            }
        )

    # -- lookups -----------------------------------------------------------

    def get_book(self, book_id: str) -> Book | None:
        return next((b for b in self._books if b.id == book_id), None)

    def get_shelf(self, shelf_id: str) -> Shelf | None:
        return next((s for s in self._shelves if s.id == shelf_id), None)

    def shelf_name(self, shelf_id: str) -> str:
        shelf = self.get_shelf(shelf_id)
        return shelf.name if shelf else UNKNOWN_SHELF

    def count_books(self, shelf_id: str) -> int:
        return sum(1 for b in self._books if b.shelf_id == shelf_id)

    def default_shelf_id(self) -> str:
        return self._shelves[0].id if self._shelves else ""

    # -- books -------------------------------------------------------------

    def add_book(self, draft: BookDraft) -> Book | None:
        """Create a book from a draft and put it at the front of the catalog."""
        if validate_book(draft):
            log.info("book_rejected", title=draft.title, shelf_id=draft.shelf_id)
            return None
        book = Book.from_draft(draft, book_id=new_id(), added_at=now_iso())
        self._books = [book, *self._books]
        self._persist()
        log.info("book_added", book_id=book.id, title=book.title)
        return book

    def add_books(self, books: list[Book]) -> None:
        """Put already-built books at the front of the catalog, keeping their order."""
        if not books:
            return
        self._books = [*books, *self._books]
        self._persist()
        log.info("books_added", count=len(books))

    def update_book(self, book_id: str, patch: dict) -> Book | None:
        """Merge patch over the stored record; None if missing or invalid."""
        current = self.get_book(book_id)
        if current is None:
            return None
        known = {f.name for f in fields(Book)} - _IMMUTABLE_BOOK_FIELDS
        changes = {}
        for key, value in patch.items():
            name = from_json_key(key)
            if name in known:
                changes[name] = value if name == "cover_description" else str(value or "")
        updated = replace(current, **changes)
        if validate_book(updated):
            log.info("book_update_rejected", book_id=book_id)
            return None
        self._books = [updated if b.id == book_id else b for b in self._books]
        self._persist()
        log.info("book_updated", book_id=book_id)
        return updated

    def remove_book(self, book_id: str) -> bool:
        if self.get_book(book_id) is None:
            return False
        self._books = [b for b in self._books if b.id != book_id]
        self._persist()
        log.info("book_removed", book_id=book_id)
        return True

    # -- shelves -----------------------------------------------------------

    def add_shelf(self, name: str, description: str = "") -> Shelf | None:
        if validate_shelf_name(name):
            return None
        shelf = Shelf(id=f"shelf-{new_id()}", name=name, description=description)
        self._shelves = [*self._shelves, shelf]
        self._persist()
        log.info("shelf_added", shelf_id=shelf.id, name=name)
        return shelf

    def update_shelf(self, shelf_id: str, name: str, description: str = "") -> Shelf | None:
        current = self.get_shelf(shelf_id)
        if current is None or validate_shelf_name(name):
            return None
        updated = replace(current, name=name, description=description)
        self._shelves = [updated if s.id == shelf_id else s for s in self._shelves]
        self._persist()
        log.info("shelf_updated", shelf_id=shelf_id)
        return updated

    def remove_shelf(self, shelf_id: str) -> bool:
        """Delete an empty shelf. A shelf that still holds books is left alone."""
        if self.get_shelf(shelf_id) is None:
            return False
        count = self.count_books(shelf_id)
        if count > 0:
            log.warning("shelf_remove_blocked", shelf_id=shelf_id, books=count)
            return False
        self._shelves = [s for s in self._shelves if s.id != shelf_id]
        self._persist()
        log.info("shelf_removed", shelf_id=shelf_id)
        return True

    def reorder_shelf(self, shelf_id: str, direction: str) -> bool:
        """Swap a shelf with its neighbour. Returns False when nothing moved."""
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        index = next((i for i, s in enumerate(self._shelves) if s.id == shelf_id), None)
        if index is None:
            return False
        target = index - 1 if direction == "up" else index + 1
        if target < 0 or target >= len(self._shelves):
            return False
        shelves = list(self._shelves)
        shelves[index], shelves[target] = shelves[target], shelves[index]
        self._shelves = shelves
        self._persist()
        log.debug("shelf_moved", shelf_id=shelf_id, direction=direction)
        return True
