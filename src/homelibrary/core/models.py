"""Data models for the home library catalog."""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields

UNKNOWN_AUTHOR = "Unknown"
DEFAULT_GENRE = "Other"
UNKNOWN_SHELF = "Unknown Shelf"

GENRE_COLORS: dict[str, str] = {
    "Science Fiction": "#8884d8",
    "Novel": "#82ca9d",
    "History": "#ffc658",
    "Philosophy": "#ff8042",
    "Comics": "#0088FE",
    "Other": "#a0a0a0",
}
FALLBACK_GENRE_COLOR = "#9ca3af"

# Storage uses the camelCase keys of the original browser records.
_JSON_KEYS = {
    "shelf_id": "shelfId",
    "added_at": "addedAt",
    "cover_description": "coverDescription",
}
_FIELD_NAMES = {v: k for k, v in _JSON_KEYS.items()}


def to_json_key(name: str) -> str:
    return _JSON_KEYS.get(name, name)


def from_json_key(key: str) -> str:
    return _FIELD_NAMES.get(key, key)


@dataclass
class Shelf:
    id: str
    name: str
    description: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict) -> Shelf:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", "") or "",
            description=data.get("description", "") or "",
        )


DEFAULT_SHELVES: tuple[Shelf, ...] = (
    Shelf("shelf-1", "Billy Left - Shelf 1", "Left bookcase, top shelf"),
    Shelf("shelf-2", "Billy Left - Shelf 2", "Left bookcase, 2nd shelf"),
    Shelf("shelf-3", "Billy Middle - Shelf 1", "Middle bookcase, top shelf"),
)


@dataclass
class BookDraft:
    """Unsaved, editable book record produced by a form or a scan."""

    isbn: str = ""
    title: str = ""
    author: str = ""
    publisher: str = ""
    year: str = ""
    genre: str = ""
    shelf_id: str = ""
    cover_description: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> BookDraft:
        """Build a draft from a JSON object, accepting camelCase or snake_case keys."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = from_json_key(key)
            if name in known and value is not None:
                values[name] = str(value)
        return cls(**values)

    def to_dict(self) -> dict:
        out = {to_json_key(f.name): getattr(self, f.name) for f in fields(self)}
        if self.cover_description is None:
            out.pop("coverDescription")
        return out


@dataclass
class Book:
    id: str
    title: str
    shelf_id: str
    added_at: str
    isbn: str = ""
    author: str = ""
    publisher: str = ""
    year: str = ""
    genre: str = ""
    cover_description: str | None = None

    @classmethod
    def from_draft(cls, draft: BookDraft, book_id: str, added_at: str) -> Book:
        """Create a Book from a validated draft, applying the creation defaults."""
        return cls(
            id=book_id,
            title=draft.title,
            shelf_id=draft.shelf_id,
            added_at=added_at,
            isbn=draft.isbn,
            author=draft.author or UNKNOWN_AUTHOR,
            publisher=draft.publisher,
            year=draft.year,
            genre=draft.genre or DEFAULT_GENRE,
            cover_description=draft.cover_description,
        )

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "year": self.year,
            "genre": self.genre,
            "shelfId": self.shelf_id,
            "addedAt": self.added_at,
        }
        if self.cover_description is not None:
            out["coverDescription"] = self.cover_description
        return out

    @classmethod
    def from_dict(cls, data: dict) -> Book:
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", "") or "",
            shelf_id=data.get("shelfId", "") or "",
            added_at=data.get("addedAt", "") or "",
            isbn=data.get("isbn", "") or "",
            author=data.get("author", "") or "",
            publisher=data.get("publisher", "") or "",
            year=str(data.get("year", "") or ""),
            genre=data.get("genre", "") or "",
            cover_description=data.get("coverDescription"),
        )


@dataclass
class IdentifiedBook:
    """Best-effort identification read from a photo."""

    isbn: str = ""
    title: str = ""
    author: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.isbn or self.title or self.author)


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
