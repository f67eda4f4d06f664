"""Generate a CSV export of the book list."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime

import structlog

from .models import Book, Shelf

log = structlog.get_logger()

CSV_COLUMNS = ["Title", "Author", "Publisher", "Year", "Genre", "ISBN", "Shelf", "Added"]
UNKNOWN_SHELF_LABEL = "Unknown"


def format_date(value: date) -> str:
    return value.strftime("%d.%m.%Y")


def _added_date(added_at: str) -> str:
    try:
        return format_date(datetime.fromisoformat(added_at.replace("Z", "+00:00")))
    except ValueError:
        return added_at


def _book_to_row(book: Book, shelf_names: dict[str, str]) -> list[str]:
    return [
        book.title,
        book.author,
        book.publisher,
        book.year,
        book.genre,
        book.isbn,
        shelf_names.get(book.shelf_id, UNKNOWN_SHELF_LABEL),
        _added_date(book.added_at),
    ]


def export_filename(today: date | None = None) -> str:
    return f"library_export_{format_date(today or date.today())}.csv"


def generate_csv_bytes(books: list[Book], shelves: list[Shelf]) -> bytes:
    """Generate CSV content as bytes (for web download).

    Every value is quoted. The UTF-8 BOM lets spreadsheet apps detect the
    encoding of non-ASCII titles.
    """
    shelf_names = {s.id: s.name for s in shelves}
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for book in books:
        writer.writerow(_book_to_row(book, shelf_names))
    log.info("csv_generated", books=len(books))
    return ("\ufeff" + buf.getvalue()).encode("utf-8")
