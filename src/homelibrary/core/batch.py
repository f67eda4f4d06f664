"""Batch scan queue: captured photos drained one at a time into book drafts.

Items move ``pending -> processing -> done`` or ``pending -> processing ->
error``. A single asyncio worker drains the queue while the review is open,
always taking the earliest pending item and never starting one while another
is processing. There is no retry: a failed item stays failed until the user
removes it or closes the review.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, fields, replace

import structlog

from .errors import IdentificationError, InvalidTransitionError, ItemNotFoundError, QueueBusyError
from .identifier import Identifier
from .library import CatalogStore, now_iso
from .models import Book, BookDraft, ItemStatus, from_json_key
from .scan import draft_from_identification

log = structlog.get_logger()

NO_BOOK_DETECTED_MESSAGE = "No book detected in image."
CONNECTION_ERROR_MESSAGE = "Connection error."

_ALLOWED_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.DONE, ItemStatus.ERROR},
    ItemStatus.DONE: set(),
    ItemStatus.ERROR: set(),
}


@dataclass
class BatchItem:
    """One captured photo and what identification made of it."""

    id: str
    image: str
    status: ItemStatus = ItemStatus.PENDING
    error_message: str | None = None
    draft: BookDraft | None = field(default=None, repr=False)

    def _move(self, status: ItemStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"{self.id}: {self.status.value} -> {status.value}")
        self.status = status

    def start(self) -> None:
        self._move(ItemStatus.PROCESSING)

    def finish(self, draft: BookDraft) -> None:
        self._move(ItemStatus.DONE)
        self.draft = draft

    def fail(self, message: str) -> None:
        self._move(ItemStatus.ERROR)
        self.error_message = message

    @property
    def committable(self) -> bool:
        return self.status is ItemStatus.DONE and self.draft is not None and bool(self.draft.title)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "data": self.draft.to_dict() if self.draft else None,
        }


class BatchScanQueue:
    """Sequential identification queue feeding a catalog.

    Capture adds pending items. Opening the review starts the worker. Closing
    the review throws everything away, including finished drafts, and
    abandons any identification call still in flight.
    """

    def __init__(self, identifier: Identifier, catalog: CatalogStore):
        self.identifier = identifier
        self.catalog = catalog
        self.is_open = False
        self._items: list[BatchItem] = []
        self._worker: asyncio.Task | None = None
        self._generation = 0

    @property
    def items(self) -> list[BatchItem]:
        return list(self._items)

    def get(self, item_id: str) -> BatchItem:
        for item in self._items:
            if item.id == item_id:
                return item
        raise ItemNotFoundError(item_id)

    def next_pending(self) -> BatchItem | None:
        return next((i for i in self._items if i.status is ItemStatus.PENDING), None)

    def processing_item(self) -> BatchItem | None:
        return next((i for i in self._items if i.status is ItemStatus.PROCESSING), None)

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        for item in self._items:
            counts[item.status.value] += 1
        return counts

    @property
    def can_commit(self) -> bool:
        return not any(
            i.status in (ItemStatus.PENDING, ItemStatus.PROCESSING) for i in self._items
        )

    # -- queue edits -------------------------------------------------------

    def add(self, image: str) -> BatchItem:
        """Queue a captured photo."""
        item = BatchItem(id=uuid.uuid4().hex[:12], image=image)
        self._items.append(item)
        log.debug("batch_item_added", item_id=item.id, queued=len(self._items))
        self._kick()
        return item

    def remove(self, item_id: str) -> None:
        item = self.get(item_id)
        self._items = [i for i in self._items if i.id != item_id]
        log.debug("batch_item_removed", item_id=item_id, status=item.status.value)

    def update_draft(self, item_id: str, changes: dict) -> BatchItem:
        """Apply user edits to a finished item's draft."""
        item = self.get(item_id)
        if item.status is not ItemStatus.DONE or item.draft is None:
            raise InvalidTransitionError(f"{item_id}: only finished items can be edited")
        known = {f.name for f in fields(BookDraft)}
        values = {}
        for key, value in changes.items():
            name = from_json_key(key)
            if name in known:
                values[name] = None if value is None and name == "cover_description" else str(value or "")
        item.draft = replace(item.draft, **values)
        return item

    # -- review lifecycle --------------------------------------------------

    def open_review(self) -> bool:
        """Open the review and start draining. False if there is nothing queued."""
        if not self._items:
            return False
        self.is_open = True
        log.info("batch_review_opened", queued=len(self._items))
        self._kick()
        return True

    def close(self) -> None:
        """Discard the whole queue and abandon any in-flight call."""
        discarded = len(self._items)
        self._generation += 1
        self.is_open = False
        self._items = []
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
        log.info("batch_review_closed", discarded=discarded)

    async def wait_idle(self) -> None:
        """Wait until the worker has nothing left to do."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    # -- draining ----------------------------------------------------------

    def _kick(self) -> None:
        if not self.is_open or self.next_pending() is None:
            return
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.get_running_loop().create_task(self._drain(self._generation))

    async def _drain(self, generation: int) -> None:
        while self.is_open and generation == self._generation:
            item = self.next_pending()
            if item is None:
                break
            await self.process(item, generation)

    async def process(self, item: BatchItem, generation: int | None = None) -> None:
        """Identify and enrich one pending item."""
        if generation is None:
            generation = self._generation
        busy = self.processing_item()
        if busy is not None:
            raise InvalidTransitionError(f"{busy.id} is already processing")
        item.start()
        log.info("batch_item_processing", item_id=item.id)

        draft: BookDraft | None = None
        error: str | None = None
        try:
            identified = await self.identifier.identify_from_image(item.image)
            if identified is None:
                error = NO_BOOK_DETECTED_MESSAGE
            else:
                draft = await draft_from_identification(
                    self.identifier, identified, self.catalog.default_shelf_id()
                )
        except IdentificationError as e:
            log.warning("batch_item_connection_error", item_id=item.id, error=str(e))
            error = CONNECTION_ERROR_MESSAGE
        except Exception:  # noqa: BLE001
            log.exception("batch_item_crashed", item_id=item.id)
            error = CONNECTION_ERROR_MESSAGE

        if generation != self._generation or not any(i is item for i in self._items):
            log.debug("batch_result_abandoned", item_id=item.id)
            return

        if error is not None:
            item.fail(error)
            log.info("batch_item_error", item_id=item.id, error=error)
        else:
            item.finish(draft)
            log.info("batch_item_done", item_id=item.id, title=draft.title)

    # -- commit ------------------------------------------------------------

    def commit_all(self) -> list[Book]:
        """Save every finished, titled draft and clear the queue.

        Failed items are dropped without further notice. Nothing is written
        when no item qualifies.
        """
        if not self.can_commit:
            raise QueueBusyError("batch items are still being identified")
        ready = [i for i in self._items if i.committable]
        if not ready:
            log.info("batch_commit_empty", queued=len(self._items))
            return []

        added_at = now_iso()
        default_shelf = self.catalog.default_shelf_id()
        books = []
        for item in ready:
            draft = replace(item.draft, shelf_id=item.draft.shelf_id or default_shelf)
            books.append(Book.from_draft(draft, book_id=item.id, added_at=added_at))

        skipped = len(self._items) - len(ready)
        self.catalog.add_books(books)
        self.close()
        log.info("batch_committed", added=len(books), skipped=skipped)
        return books
