"""Pure derivations over the book list: search, shelf filter, dashboard data."""

from __future__ import annotations

from .models import DEFAULT_GENRE, Book

ALL_SHELVES = "ALL"


def matches_search(book: Book, query: str) -> bool:
    """Case-insensitive substring match against title or author."""
    needle = query.casefold()
    return needle in book.title.casefold() or needle in book.author.casefold()


def matches_shelf(book: Book, shelf_id: str) -> bool:
    return shelf_id == ALL_SHELVES or book.shelf_id == shelf_id


def filter_books(books: list[Book], query: str = "", shelf_id: str = ALL_SHELVES) -> list[Book]:
    return [b for b in books if matches_search(b, query) and matches_shelf(b, shelf_id)]


def genre_counts(books: list[Book]) -> dict[str, int]:
    """Count books per genre in first-seen order."""
    counts: dict[str, int] = {}
    for book in books:
        genre = book.genre or DEFAULT_GENRE
        counts[genre] = counts.get(genre, 0) + 1
    return counts


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def unique_authors(books: list[Book]) -> list[str]:
    return _unique([b.author for b in books])


def unique_publishers(books: list[Book]) -> list[str]:
    return _unique([b.publisher for b in books])
