"""Turn identification results into book drafts."""

from __future__ import annotations

from dataclasses import dataclass, replace

import structlog

from .errors import IdentificationError
from .identifier import Identifier
from .models import DEFAULT_GENRE, BookDraft, IdentifiedBook

log = structlog.get_logger()

MIN_QUERY_LENGTH = 3

NOTHING_READABLE_MESSAGE = "No barcode or readable text found in the image."
DETAILS_NOT_FOUND_MESSAGE = "Book details not found. Please take a clearer photo."
SCAN_CONNECTION_MESSAGE = "Connection error. Please try again."


def enrichment_query(identified: IdentifiedBook) -> str:
    """Prefer the ISBN; otherwise search by title and author."""
    return identified.isbn or f"{identified.title} {identified.author}"


def should_enrich(query: str) -> bool:
    return len(query.strip()) >= MIN_QUERY_LENGTH


def merge_details(draft: BookDraft, details: dict[str, str]) -> BookDraft:
    """Lay looked-up details over a draft.

    Looked-up values win, except an empty looked-up ISBN never replaces the
    one already on the draft.
    """
    changes = dict(details)
    if not changes.get("isbn"):
        changes.pop("isbn", None)
    return replace(draft, **changes)


async def draft_from_identification(
    identifier: Identifier, identified: IdentifiedBook, shelf_id: str
) -> BookDraft:
    """Build a batch draft: identified fields, then enrichment over them."""
    draft = BookDraft(
        shelf_id=shelf_id,
        genre=DEFAULT_GENRE,
        title=identified.title,
        author=identified.author,
        isbn=identified.isbn,
    )
    query = enrichment_query(identified)
    if should_enrich(query):
        details = await identifier.fetch_metadata(query)
        if details:
            draft = merge_details(draft, details)
    return draft


@dataclass
class ScanOutcome:
    draft: BookDraft | None = None
    error: str | None = None


async def scan_single(identifier: Identifier, image: str, shelf_id: str = "") -> ScanOutcome:
    """Identify one photo and prefill an add-book form from it."""
    try:
        identified = await identifier.identify_from_image(image)
        if identified is None:
            return ScanOutcome(error=NOTHING_READABLE_MESSAGE)

        query = enrichment_query(identified)
        details = await identifier.fetch_metadata(query) if should_enrich(query) else None
    except IdentificationError as e:
        log.warning("scan_failed", error=str(e))
        return ScanOutcome(error=SCAN_CONNECTION_MESSAGE)

    if not details and not identified.title:
        return ScanOutcome(error=DETAILS_NOT_FOUND_MESSAGE)

    details = details or {}
    draft = replace(BookDraft(shelf_id=shelf_id), **details)
    draft.title = details.get("title") or identified.title
    draft.author = details.get("author") or identified.author
    draft.isbn = details.get("isbn") or identified.isbn
    log.info("scan_found", title=draft.title, isbn=draft.isbn)
    return ScanOutcome(draft=draft)
