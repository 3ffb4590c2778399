"""Conversation store: the single owner of one conversation's state.

Each operation computes its next state with a pure function from
``forkchat.tree.operations``, swaps it in without suspending, and only then
performs the effects (autosave, background title generation). Callers on the
same event loop therefore never observe a half-applied mutation.
"""

import asyncio
import logging
from collections.abc import Mapping
from types import MappingProxyType

from forkchat.conversations.ids import conversation_key
from forkchat.models import Conversation, Node
from forkchat.providers.base import CompletionClient, ConfigurationError
from forkchat.storage.base import KeyValueStore
from forkchat.tree import operations
from forkchat.tree.context import build_messages_from_tree
from forkchat.tree.operations import (
    CallCompletion,
    CallTitle,
    Persist,
    ScheduleTitle,
    Transition,
)
from forkchat.tree.serialization import StateFormatError, deserialize_state, serialize_state

logger = logging.getLogger(__name__)


class ConversationStore:
    """Owns the node graph, enforces structure, and drives autosave."""

    def __init__(
        self,
        kv: KeyValueStore,
        client: CompletionClient | None = None,
        *,
        conversation_id: str | None = None,
    ) -> None:
        self._kv = kv
        self._client = client
        self._conversation_id = conversation_id
        self._state = Conversation()
        self._title_task: asyncio.Task | None = None

    @classmethod
    async def open(
        cls,
        kv: KeyValueStore,
        conversation_id: str,
        client: CompletionClient | None = None,
    ) -> "ConversationStore":
        """Load ``conversation_id``, or start (and save) a new one under that handle.

        Only an absent record starts a new conversation. Read failures and
        StateFormatError propagate, leaving the stored record untouched.
        """
        store = cls(kv, client)
        state = await store._read(conversation_id)
        if state is None:
            store.initialize()
            await store.attach(conversation_id)
        else:
            store._state = state
            store._conversation_id = conversation_id
        return store

    # -- Read side --

    @property
    def state(self) -> Conversation:
        return self._state

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    # Node getters hand out copies; committed nodes change only through operations.

    @property
    def nodes(self) -> list[Node]:
        return [node.model_copy(deep=True) for node in self._state.nodes]

    @property
    def nodes_by_id(self) -> Mapping[str, Node]:
        return MappingProxyType({node.id: node for node in self.nodes})

    @property
    def generating_nodes(self) -> frozenset[str]:
        return self._state.generating_nodes

    @property
    def root(self) -> Node | None:
        root = self._state.root
        return root.model_copy(deep=True) if root is not None else None

    def get_node(self, node_id: str) -> Node | None:
        node = self._state.get_node(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def can_add_llm_child(self, node_id: str) -> bool:
        return self._state.can_add_llm_child(node_id)

    def is_generating(self, node_id: str) -> bool:
        return node_id in self._state.generating_nodes

    def build_messages_from_tree(self, target_node_id: str) -> list[dict[str, str]]:
        return build_messages_from_tree(self._state, target_node_id)

    # -- Structure --

    def initialize(self) -> None:
        """Start over with a fresh root system node. Does not save."""
        self._state = operations.initialize()

    async def add_child(self, parent_id: str, child_type: str) -> str:
        return await self._commit(operations.add_child(self._state, parent_id, child_type))

    async def update_text(self, node_id: str, text: str) -> None:
        await self._commit(operations.update_text(self._state, node_id, text))

    async def delete_node(self, node_id: str) -> list[str]:
        """Delete a node and its subtree. Returns the removed ids, descendants first."""
        return await self._commit(operations.delete_node(self._state, node_id))

    # -- Generation --

    async def generate_llm_response(self, node_id: str) -> str:
        """Fill an llm node with a completion for the path leading to it.

        On failure the node text becomes an error marker and the error is
        re-raised. Either way the node leaves ``generating_nodes``.
        """
        transition = operations.begin_generation(self._state, node_id)
        if self._client is None:
            raise ConfigurationError("No completion client configured")
        call: CallCompletion = transition.find(CallCompletion)
        await self._commit(transition)

        try:
            content = await self._client.complete(call.messages)
        except Exception as e:
            logger.warning("Generation failed for node %s: %s", node_id, e)
            await self._commit(operations.fail_generation(self._state, node_id, str(e)))
            raise
        else:
            written = await self._commit(
                operations.complete_generation(self._state, node_id, content)
            )
            if not written:
                logger.info("Node %s was deleted during generation; dropping result", node_id)
            return content
        finally:
            self._state = operations.release_generation(self._state, node_id)

    async def generate_conversation_title(self) -> str | None:
        """Best-effort title generation. Never raises; returns the title or None."""
        call: CallTitle | None = operations.begin_title(self._state).find(CallTitle)
        if call is None:
            return None
        if self._client is None:
            logger.warning("Skipping title generation: no completion client configured")
            return None

        try:
            title = await self._client.generate_title(call.transcript)
        except Exception:
            logger.exception("Title generation failed")
            return None

        if not title:
            logger.warning("Title generation returned an empty title")
            return None
        if self._state.title_generated:
            return self._state.title
        await self._commit(operations.apply_title(self._state, title))
        return title

    async def wait_for_background_tasks(self) -> None:
        if self._title_task is not None:
            await asyncio.gather(self._title_task, return_exceptions=True)

    def _schedule_title(self) -> None:
        if self._title_task is not None and not self._title_task.done():
            return
        self._title_task = asyncio.create_task(self.generate_conversation_title())

    # -- Persistence --

    def serialize_state(self) -> bytes:
        return serialize_state(self._state)

    def deserialize_state(self, raw: bytes | str) -> None:
        """Replace the in-memory state. Raises StateFormatError on bad input."""
        self._state = deserialize_state(raw)

    async def save(self) -> bool:
        """Refresh ``updated_at`` and write the record. Failures are logged, not raised."""
        if self._conversation_id is None:
            return False
        try:
            self._state = operations.touch(self._state)
            payload = serialize_state(self._state)
            await self._kv.set(conversation_key(self._conversation_id), payload)
        except Exception:
            logger.exception("Failed to save conversation %s", self._conversation_id)
            return False
        return True

    async def load(self, conversation_id: str) -> bool:
        """Adopt a persisted conversation. Returns False (state unchanged) if unavailable."""
        try:
            state = await self._read(conversation_id)
        except StateFormatError as e:
            logger.warning("Ignoring unreadable conversation %s: %s", conversation_id, e)
            return False
        except Exception:
            logger.exception("Failed to read conversation %s", conversation_id)
            return False
        if state is None:
            return False

        self._state = state
        self._conversation_id = conversation_id
        return True

    async def _read(self, conversation_id: str) -> Conversation | None:
        """The persisted conversation, or None when no record exists."""
        raw = await self._kv.get(conversation_key(conversation_id))
        if raw is None:
            return None
        return deserialize_state(raw)

    async def attach(self, conversation_id: str) -> bool:
        """Give an in-memory conversation a handle and persist it."""
        self._conversation_id = conversation_id
        return await self.save()

    def detach(self) -> None:
        """Drop the handle; later mutations stay in memory only."""
        self._conversation_id = None

    async def autosave(self) -> None:
        if self._conversation_id is None:
            return
        await self.save()

    async def _commit(self, transition: Transition):
        self._state = transition.state
        for effect in transition.effects:
            if isinstance(effect, Persist):
                await self.autosave()
            elif isinstance(effect, ScheduleTitle):
                self._schedule_title()
        return transition.result
