"""Test fixtures — fresh core objects and an app per test.

The HTTP client runs the app's lifespan itself (ASGITransport does not),
so every test gets its own HistoryStore and SubscriptionManager.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from livetrack.broadcast import SubscriptionManager
from livetrack.config import Settings
from livetrack.history import HistoryStore
from livetrack.ingest import IngestService
from livetrack.models import LocationSample
from server import create_app


def _sample(n: int = 0, identity: str = "A", when: str | None = None) -> LocationSample:
    return LocationSample(
        identity=identity,
        lat=(n % 180) - 89.5,
        lon=(n % 360) - 179.5,
        when=when or f"t{n}",
    )


@pytest.fixture()
def make_sample():
    """Factory for valid samples; ``when`` defaults to ``t<n>``."""
    return _sample


@pytest.fixture()
def store():
    return HistoryStore()


@pytest.fixture()
def subscribers():
    return SubscriptionManager(queue_size=16)


@pytest.fixture()
def ingest(store, subscribers):
    return IngestService(store, subscribers)


@pytest.fixture()
def settings():
    return Settings(history_limit=200, queue_size=16)


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest_asyncio.fixture()
async def client(app):
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
