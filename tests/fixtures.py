"""Shared test helpers: fake completion clients, storage doubles, tree builders."""

import asyncio
import json
from typing import Any

from forkchat.models import Conversation, Node
from forkchat.providers.base import CompletionClient
from forkchat.storage.memory import InMemoryKeyValueStore
from forkchat.tree import operations


class FakeCompletionClient(CompletionClient):
    """Returns canned content and records every call."""

    def __init__(
        self,
        content: str = "Generated reply",
        *,
        title: str = "A Generated Title",
        error: Exception | None = None,
        title_error: Exception | None = None,
    ) -> None:
        self.content = content
        self.title = title
        self.error = error
        self.title_error = title_error
        self.calls: list[list[dict[str, str]]] = []
        self.title_calls: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.content

    async def generate_title(self, transcript: str) -> str:
        self.title_calls.append(transcript)
        if self.title_error is not None:
            raise self.title_error
        return self.title


class GatedCompletionClient(FakeCompletionClient):
    """Blocks inside complete() until the test sets ``release``."""

    def __init__(self, content: str = "Gated reply", **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.content


class FailingKeyValueStore(InMemoryKeyValueStore):
    """Every write fails, reads work."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        super().__init__(initial)
        self.write_attempts = 0

    async def set(self, key: str, value: bytes) -> None:
        self.write_attempts += 1
        raise OSError("disk full")


class FlakyReadKeyValueStore(InMemoryKeyValueStore):
    """The first read fails, later reads work."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        super().__init__(initial)
        self.read_attempts = 0

    async def get(self, key: str) -> bytes | None:
        self.read_attempts += 1
        if self.read_attempts == 1:
            raise OSError("I/O error")
        return await super().get(key)


class SlowKeyValueStore(InMemoryKeyValueStore):
    """Reads suspend before answering, so callers interleave."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        super().__init__(initial)
        self.read_attempts = 0

    async def get(self, key: str) -> bytes | None:
        self.read_attempts += 1
        await asyncio.sleep(0.01)
        return await super().get(key)


def build_branching_tree() -> tuple[Conversation, dict[str, str]]:
    """system → user(a) → llm(a) → {user(b1) → llm(b1), user(b2)}.

    Returns the conversation and a name → id map.
    """
    conv = operations.initialize()
    ids = {"root": conv.root.id}

    def add(parent: str, child_type: str, name: str, text: str) -> None:
        nonlocal conv
        t = operations.add_child(conv, ids[parent], child_type)
        conv = operations.update_text(t.state, t.result, text).state
        ids[name] = t.result

    conv = operations.update_text(conv, ids["root"], "Be concise.").state
    add("root", "user", "user_a", "What is a tree?")
    add("user_a", "llm", "llm_a", "A connected acyclic graph.")
    add("llm_a", "user", "user_b1", "Give an example.")
    add("user_b1", "llm", "llm_b1", "A family tree.")
    add("llm_a", "user", "user_b2", "Why acyclic?")
    return conv, ids


def make_record(**fields: Any) -> bytes:
    """A minimal valid persisted record with overrides."""
    root = {"id": "n0", "type": "system", "parentId": None, "children": [], "text": "Sys"}
    record: dict[str, Any] = {
        "version": 1,
        "nodes": [root],
        "nodesById": {"n0": root},
        "seq": 1,
        "title": "",
        "titleGenerated": False,
        "createdAt": "2026-01-01T00:00:00+00:00",
        "updatedAt": "2026-01-01T00:00:00+00:00",
    }
    record.update(fields)
    return json.dumps({k: v for k, v in record.items() if v is not ...}).encode()


def build_chain(length: int) -> Conversation:
    """A single alternating user/llm path of ``length`` nodes under the root."""
    nodes = [Node(id="n0", type="system", text="Sys")]
    for i in range(1, length + 1):
        nodes[-1].children.append(f"n{i}")
        nodes.append(
            Node(id=f"n{i}", type="user" if i % 2 else "llm", parent_id=f"n{i - 1}", text=f"t{i}")
        )
    return Conversation(nodes=nodes, seq=length + 1)
