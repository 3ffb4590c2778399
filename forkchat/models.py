"""Canonical data structures for forkchat.

Defined once here, referenced everywhere else. Attribute names are snake_case;
the camelCase aliases are the persisted and wire names.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

NodeType = Literal["system", "user", "llm"]
Role = Literal["system", "user", "assistant"]

SYSTEM = "system"
USER = "user"
LLM = "llm"

# Which child type each parent type accepts, and how many.
# None means unbounded.
CHILD_RULES: dict[str, tuple[str, int | None]] = {
    SYSTEM: (USER, None),
    LLM: (USER, None),
    USER: (LLM, 1),
}

PLACEHOLDER_TEXT: dict[str, str] = {
    SYSTEM: "System instructions:",
    USER: "New prompt...",
    LLM: "LLM response...",
}

NODE_TYPE_LABELS: dict[str, str] = {
    SYSTEM: "System",
    USER: "User Prompt",
    LLM: "LLM Response",
}

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

STATE_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (older records) as UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def node_type_label(node_type: str | None) -> str:
    return NODE_TYPE_LABELS.get(node_type or "", "Unknown")


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


class Node(BaseModel):
    """A single turn in the conversation tree."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: NodeType = Field(frozen=True)
    parent_id: str | None = Field(default=None, alias="parentId")
    children: list[str] = Field(default_factory=list)
    text: str = ""


class Conversation(BaseModel):
    """The aggregate root: every node of one tree plus its metadata.

    ``nodes`` is the source of truth (creation order). ``nodes_by_id`` is an
    index over the same Node objects, rebuilt whenever a Conversation is
    constructed, so the two can never disagree.
    """

    model_config = ConfigDict(populate_by_name=True)

    nodes: list[Node] = Field(default_factory=list)
    seq: int = 0
    title: str = ""
    title_generated: bool = Field(default=False, alias="titleGenerated")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    generating_nodes: frozenset[str] = Field(
        default_factory=frozenset, alias="generatingNodes", exclude=True
    )

    _nodes_by_id: dict[str, Node] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "Conversation":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return self

    def model_post_init(self, __context: Any) -> None:
        self._nodes_by_id = {node.id: node for node in self.nodes}

    @property
    def nodes_by_id(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes_by_id)

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes_by_id.get(node_id)

    @property
    def root(self) -> Node | None:
        """The parentless system node, if the conversation is initialized."""
        return next(
            (n for n in self.nodes if n.type == SYSTEM and n.parent_id is None),
            None,
        )

    def can_add_llm_child(self, node_id: str) -> bool:
        node = self.get_node(node_id)
        return node is not None and node.type == USER and not node.children

    def clone(self, **updates: Any) -> "Conversation":
        """Deep copy with optional field overrides. The index is rebuilt."""
        fields = {
            "nodes": [node.model_copy(deep=True) for node in self.nodes],
            "seq": self.seq,
            "title": self.title,
            "title_generated": self.title_generated,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "generating_nodes": self.generating_nodes,
        }
        fields.update(updates)
        return Conversation(**fields)


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class SamplingParams(BaseModel):
    temperature: float | None = None
    max_tokens: int = 1000


class ConversationSummary(BaseModel):
    """One row of the conversation list."""

    uuid: str
    title: str = "Untitled"
    created_at: datetime
    updated_at: datetime
    node_count: int = 0
