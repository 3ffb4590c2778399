"""Shared pytest fixtures for forkchat tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from forkchat.conversations.router import get_conversation_service
from forkchat.conversations.service import ConversationService
from forkchat.main import app
from forkchat.storage.memory import InMemoryKeyValueStore
from forkchat.storage.sqlite import SqliteKeyValueStore
from forkchat.tree.store import ConversationStore
from tests.fixtures import FakeCompletionClient


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
async def sqlite_kv():
    """SQLite key-value store in memory."""
    store = await SqliteKeyValueStore.connect(":memory:")
    yield store
    await store.close()


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def store(kv, fake_client) -> ConversationStore:
    """An initialized conversation with no handle (memory only)."""
    s = ConversationStore(kv, fake_client)
    s.initialize()
    return s


@pytest.fixture
async def saved_store(kv, fake_client) -> ConversationStore:
    """An initialized conversation persisted under the handle ``test-convo``."""
    s = ConversationStore(kv, fake_client)
    s.initialize()
    await s.attach("test-convo")
    return s


@pytest.fixture
def service(kv, fake_client) -> ConversationService:
    return ConversationService(kv, fake_client)


@pytest.fixture
async def client(service):
    """Async test client with the in-memory service wired into the app."""
    app.dependency_overrides[get_conversation_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
