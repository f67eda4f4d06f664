"""Tests for the batch scan queue."""

import asyncio

import pytest

from homelibrary.core.batch import (
    CONNECTION_ERROR_MESSAGE,
    NO_BOOK_DETECTED_MESSAGE,
    BatchItem,
    BatchScanQueue,
)
from homelibrary.core.errors import (
    IdentificationError,
    InvalidTransitionError,
    ItemNotFoundError,
    QueueBusyError,
)
from homelibrary.core.library import CatalogStore
from homelibrary.core.models import BookDraft, IdentifiedBook, ItemStatus


class TestBatchItem:
    """Tests for item status transitions."""

    def test_happy_path(self):
        item = BatchItem(id="a", image="img")
        item.start()
        item.finish(BookDraft(title="Dune"))

        assert item.status is ItemStatus.DONE
        assert item.draft.title == "Dune"

    def test_failure_path(self):
        item = BatchItem(id="a", image="img")
        item.start()
        item.fail("boom")

        assert item.status is ItemStatus.ERROR
        assert item.error_message == "boom"

    def test_cannot_skip_processing(self):
        item = BatchItem(id="a", image="img")

        with pytest.raises(InvalidTransitionError):
            item.finish(BookDraft(title="Dune"))

    def test_no_retry_from_error(self):
        item = BatchItem(id="a", image="img")
        item.start()
        item.fail("boom")

        with pytest.raises(InvalidTransitionError):
            item.start()


class TestDraining:
    """Tests for the single-worker drain loop."""

    @pytest.mark.asyncio
    async def test_nothing_runs_until_review_opens(self, queue: BatchScanQueue, identifier):
        queue.add("img-a")
        await asyncio.sleep(0)

        assert identifier.image_calls == []
        assert queue.items[0].status is ItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_three_image_scenario(self, queue: BatchScanQueue, identifier, catalog: CatalogStore):
        """No detection, too-short query and full enrichment end up as expected."""
        identifier.images = {
            "img-a": None,
            "img-b": IdentifiedBook(title="O", author=""),
            "img-c": IdentifiedBook(isbn="9789750738609", title="Sefiller", author="Hugo"),
        }
        identifier.details = {
            "9789750738609": {
                "title": "Sefiller",
                "author": "Victor Hugo",
                "publisher": "İş Bankası",
                "year": "1862",
                "genre": "Novel",
                "isbn": "",
                "cover_description": "red cover gold letters",
            }
        }
        a = queue.add("img-a")
        b = queue.add("img-b")
        c = queue.add("img-c")

        assert queue.open_review() is True
        await queue.wait_idle()

        assert queue.summary() == {"pending": 0, "processing": 0, "done": 2, "error": 1}
        assert queue.get(a.id).status is ItemStatus.ERROR
        assert queue.get(a.id).error_message == NO_BOOK_DETECTED_MESSAGE

        draft_b = queue.get(b.id).draft
        assert draft_b == BookDraft(title="O", shelf_id="shelf-1", genre="Other")

        draft_c = queue.get(c.id).draft
        assert draft_c.author == "Victor Hugo"
        assert draft_c.publisher == "İş Bankası"
        assert draft_c.genre == "Novel"
        assert draft_c.isbn == "9789750738609"
        assert draft_c.shelf_id == "shelf-1"
        assert identifier.queries == ["9789750738609"]

        books = queue.commit_all()

        assert len(books) == 2
        assert len(catalog.books) == 2
        assert queue.items == []
        assert queue.is_open is False

    @pytest.mark.asyncio
    async def test_title_author_query(self, queue: BatchScanQueue, identifier):
        """Without an ISBN the query is title and author."""
        identifier.images = {"img": IdentifiedBook(title="Dune", author="Frank Herbert")}
        identifier.details = {"Dune Frank Herbert": {"isbn": "9780441013593", "year": "1965"}}
        item = queue.add("img")

        queue.open_review()
        await queue.wait_idle()

        assert identifier.queries == ["Dune Frank Herbert"]
        assert queue.get(item.id).draft.isbn == "9780441013593"
        assert queue.get(item.id).draft.year == "1965"

    @pytest.mark.asyncio
    async def test_connection_error(self, queue: BatchScanQueue, identifier):
        identifier.images = {"img": IdentificationError("offline")}
        item = queue.add("img")

        queue.open_review()
        await queue.wait_idle()

        assert queue.get(item.id).status is ItemStatus.ERROR
        assert queue.get(item.id).error_message == CONNECTION_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_enrichment_failure_marks_error(self, queue: BatchScanQueue, identifier):
        identifier.images = {"img": IdentifiedBook(isbn="123456")}
        identifier.details = {"123456": IdentificationError("timeout")}
        item = queue.add("img")

        queue.open_review()
        await queue.wait_idle()

        assert queue.get(item.id).status is ItemStatus.ERROR
        assert queue.get(item.id).draft is None

    @pytest.mark.asyncio
    async def test_one_at_a_time_in_capture_order(self, queue: BatchScanQueue, identifier):
        """Only one item is ever processing, and items go in capture order."""
        identifier.delay = 0.01
        identifier.images = {f"img-{n}": IdentifiedBook(isbn=f"isbn-{n}") for n in range(5)}
        for n in range(5):
            queue.add(f"img-{n}")

        queue.open_review()
        seen_processing = []
        while not all(i.status is ItemStatus.DONE for i in queue.items):
            processing = [i for i in queue.items if i.status is ItemStatus.PROCESSING]
            assert len(processing) <= 1
            seen_processing.extend(i.image for i in processing)
            await asyncio.sleep(0.002)

        assert identifier.max_in_flight == 1
        assert identifier.image_calls == [f"img-{n}" for n in range(5)]
        assert list(dict.fromkeys(seen_processing)) == sorted(set(seen_processing))

    @pytest.mark.asyncio
    async def test_items_added_while_open_are_drained(self, queue: BatchScanQueue, identifier):
        identifier.images = {"a": IdentifiedBook(isbn="111"), "b": IdentifiedBook(isbn="222")}
        queue.add("a")
        queue.open_review()
        await queue.wait_idle()

        queue.add("b")
        await queue.wait_idle()

        assert [i.status for i in queue.items] == [ItemStatus.DONE, ItemStatus.DONE]

    @pytest.mark.asyncio
    async def test_process_refuses_second_item(self, queue: BatchScanQueue, identifier):
        identifier.delay = 0.05
        identifier.images = {"a": IdentifiedBook(isbn="111"), "b": IdentifiedBook(isbn="222")}
        first = queue.add("a")
        second = queue.add("b")

        task = asyncio.create_task(queue.process(first))
        await asyncio.sleep(0)

        with pytest.raises(InvalidTransitionError):
            await queue.process(second)
        assert second.status is ItemStatus.PENDING
        await task

    def test_open_empty_queue(self, queue: BatchScanQueue):
        assert queue.open_review() is False
        assert queue.is_open is False


class TestQueueEdits:
    """Tests for removing and editing queued items."""

    @pytest.mark.asyncio
    async def test_remove_item(self, queue: BatchScanQueue):
        item = queue.add("img")

        queue.remove(item.id)

        assert queue.items == []
        with pytest.raises(ItemNotFoundError):
            queue.remove(item.id)

    @pytest.mark.asyncio
    async def test_removed_processing_item_result_is_dropped(self, queue: BatchScanQueue, identifier):
        identifier.delay = 0.02
        identifier.images = {"a": IdentifiedBook(isbn="111"), "b": IdentifiedBook(isbn="222")}
        first = queue.add("a")
        queue.add("b")
        queue.open_review()
        await asyncio.sleep(0)
        assert first.status is ItemStatus.PROCESSING

        queue.remove(first.id)
        await queue.wait_idle()

        assert len(queue.items) == 1
        assert queue.items[0].status is ItemStatus.DONE
        assert identifier.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_update_draft(self, queue: BatchScanQueue, identifier):
        identifier.images = {"img": IdentifiedBook(title="Dun", author="Herbert")}
        item = queue.add("img")
        queue.open_review()
        await queue.wait_idle()

        queue.update_draft(item.id, {"title": "Dune", "shelfId": "shelf-3"})

        assert item.draft.title == "Dune"
        assert item.draft.shelf_id == "shelf-3"
        assert item.draft.author == "Herbert"

    @pytest.mark.asyncio
    async def test_update_draft_requires_done(self, queue: BatchScanQueue):
        item = queue.add("img")

        with pytest.raises(InvalidTransitionError):
            queue.update_draft(item.id, {"title": "x"})


class TestCommitAndClose:
    """Tests for committing and discarding the queue."""

    @pytest.mark.asyncio
    async def test_commit_blocked_while_pending(self, queue: BatchScanQueue, catalog: CatalogStore):
        queue.add("img")

        assert queue.can_commit is False
        with pytest.raises(QueueBusyError):
            queue.commit_all()
        assert catalog.books == []

    @pytest.mark.asyncio
    async def test_commit_builds_books(self, queue: BatchScanQueue, identifier, catalog: CatalogStore):
        catalog.add_book(BookDraft(title="Existing", shelf_id="shelf-2"))
        identifier.images = {
            "a": IdentifiedBook(title="First"),
            "b": IdentifiedBook(title="Second"),
        }
        a = queue.add("a")
        b = queue.add("b")
        queue.open_review()
        await queue.wait_idle()
        queue.update_draft(b.id, {"shelfId": ""})

        books = queue.commit_all()

        assert [bk.title for bk in catalog.books] == ["First", "Second", "Existing"]
        assert [bk.id for bk in books] == [a.id, b.id]
        assert all(bk.author == "Unknown" for bk in books)
        assert all(bk.genre == "Other" for bk in books)
        assert books[1].shelf_id == "shelf-1"
        assert books[0].added_at

    @pytest.mark.asyncio
    async def test_commit_skips_untitled(self, queue: BatchScanQueue, identifier, catalog: CatalogStore):
        identifier.images = {"a": IdentifiedBook(isbn="12")}
        queue.add("a")
        queue.open_review()
        await queue.wait_idle()

        assert queue.commit_all() == []
        assert catalog.books == []
        assert catalog.storage.get("library_books") is None

    @pytest.mark.asyncio
    async def test_second_commit_is_noop(self, queue: BatchScanQueue, identifier, catalog: CatalogStore):
        identifier.images = {"a": IdentifiedBook(title="Dune")}
        queue.add("a")
        queue.open_review()
        await queue.wait_idle()
        queue.commit_all()
        snapshot = catalog.storage.get("library_books")

        assert queue.commit_all() == []
        assert len(catalog.books) == 1
        assert catalog.storage.get("library_books") == snapshot

    @pytest.mark.asyncio
    async def test_close_discards_everything(self, queue: BatchScanQueue, identifier, catalog: CatalogStore):
        identifier.images = {"a": IdentifiedBook(title="Dune")}
        queue.add("a")
        queue.open_review()
        await queue.wait_idle()

        queue.close()

        assert queue.items == []
        assert queue.is_open is False
        assert catalog.books == []

    @pytest.mark.asyncio
    async def test_close_abandons_in_flight_call(self, queue: BatchScanQueue, identifier):
        identifier.delay = 0.05
        identifier.images = {"a": IdentifiedBook(title="Dune")}
        queue.add("a")
        queue.open_review()
        await asyncio.sleep(0)

        queue.close()
        queue.add("b")
        await asyncio.sleep(0.1)

        assert [i.status for i in queue.items] == [ItemStatus.PENDING]
        assert identifier.in_flight == 0
