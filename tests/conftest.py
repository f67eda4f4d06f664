"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from homelibrary.core.batch import BatchScanQueue
from homelibrary.core.library import CatalogStore
from homelibrary.core.storage import KeyValueStorage
from homelibrary.web.app import LibraryState, app, get_state


class FakeIdentifier:
    """Scripted stand-in for the identification service.

    ``images`` maps an image payload to an IdentifiedBook, None, or an
    exception to raise; ``details`` maps a query to a metadata dict.
    """

    def __init__(self, images=None, details=None, delay: float = 0):
        self.images = images or {}
        self.details = details or {}
        self.delay = delay
        self.image_calls: list[str] = []
        self.queries: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _call(self, table, key):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            result = table.get(key)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1

    async def identify_from_image(self, image):
        self.image_calls.append(image)
        return await self._call(self.images, image)

    async def fetch_metadata(self, query):
        self.queries.append(query)
        return await self._call(self.details, query)


@pytest.fixture
def storage() -> KeyValueStorage:
    store = KeyValueStorage(":memory:")
    yield store
    store.close()


@pytest.fixture
def catalog(storage: KeyValueStorage) -> CatalogStore:
    return CatalogStore(storage)


@pytest.fixture
def identifier() -> FakeIdentifier:
    return FakeIdentifier()


@pytest.fixture
def queue(identifier: FakeIdentifier, catalog: CatalogStore) -> BatchScanQueue:
    return BatchScanQueue(identifier, catalog)


@pytest.fixture
def state(catalog: CatalogStore, identifier: FakeIdentifier, queue: BatchScanQueue) -> LibraryState:
    return LibraryState(catalog=catalog, identifier=identifier, queue=queue)


@pytest_asyncio.fixture
async def client(state: LibraryState) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client bound to an in-memory library."""

    async def override_get_state() -> LibraryState:
        return state

    app.dependency_overrides[get_state] = override_get_state

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
