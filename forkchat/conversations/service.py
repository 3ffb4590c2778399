"""Conversation service: one ConversationStore per open conversation."""

import asyncio
import logging

from forkchat.conversations.ids import new_conversation_id
from forkchat.conversations.index import ConversationListIndex
from forkchat.models import ConversationSummary
from forkchat.providers.base import CompletionClient
from forkchat.storage.base import KeyValueStore
from forkchat.tree.store import ConversationStore

logger = logging.getLogger(__name__)


class ConversationService:
    """Opens, creates, lists and deletes conversations backed by one key-value store."""

    def __init__(self, kv: KeyValueStore, client: CompletionClient | None = None) -> None:
        self._kv = kv
        self._client = client
        self._index = ConversationListIndex(kv)
        self._stores: dict[str, ConversationStore] = {}
        self._loading: dict[str, asyncio.Task] = {}

    async def create_conversation(self) -> ConversationStore:
        conversation_id = new_conversation_id()
        store = ConversationStore(self._kv, self._client)
        store.initialize()
        await store.attach(conversation_id)
        self._stores[conversation_id] = store
        return store

    async def get_conversation(self, conversation_id: str) -> ConversationStore | None:
        """The open store for ``conversation_id``, loading it on first access."""
        store = self._stores.get(conversation_id)
        if store is not None:
            return store

        # Concurrent first requests for one handle share a single in-flight load
        task = self._loading.get(conversation_id)
        if task is None:
            task = asyncio.create_task(self._load(conversation_id))
            self._loading[conversation_id] = task
            task.add_done_callback(lambda _: self._loading.pop(conversation_id, None))
        return await asyncio.shield(task)

    async def _load(self, conversation_id: str) -> ConversationStore | None:
        store = ConversationStore(self._kv, self._client)
        if not await store.load(conversation_id):
            return None
        self._stores[conversation_id] = store
        return store

    async def list_conversations(self) -> list[ConversationSummary]:
        return await self._index.list_conversations()

    async def delete_conversation(self, conversation_id: str) -> bool:
        store = self._stores.pop(conversation_id, None)
        if store is not None:
            store.detach()
            await store.wait_for_background_tasks()
        return await self._index.delete_conversation(conversation_id)

    async def shutdown(self) -> None:
        for conversation_id, store in self._stores.items():
            logger.debug("Waiting for background work on %s", conversation_id)
            await store.wait_for_background_tasks()
        self._stores.clear()
        if self._client is not None:
            await self._client.close()
