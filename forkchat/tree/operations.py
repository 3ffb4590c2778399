"""Pure tree operations.

Every function takes a Conversation and returns a Transition: the next
Conversation plus the effects the owner must perform (persist, call the
model, schedule title generation). Inputs are never mutated, and a function
that raises leaves no trace, so validation failures cannot leave partial state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from forkchat.models import (
    CHILD_RULES,
    LLM,
    PLACEHOLDER_TEXT,
    SYSTEM,
    Conversation,
    Node,
    utcnow,
)
from forkchat.tree.context import build_messages_from_tree, build_transcript

# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Persist:
    """Write the conversation to the key-value store (if it has a handle)."""


@dataclass(frozen=True)
class CallCompletion:
    node_id: str
    messages: list[dict[str, str]]


@dataclass(frozen=True)
class ScheduleTitle:
    """Start best-effort title generation in the background."""


@dataclass(frozen=True)
class CallTitle:
    transcript: str


Effect = Persist | CallCompletion | ScheduleTitle | CallTitle


@dataclass
class Transition:
    state: Conversation
    effects: list[Effect] = field(default_factory=list)
    result: Any = None

    def find(self, effect_type: type) -> Any:
        return next((e for e in self.effects if isinstance(e, effect_type)), None)


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


def initialize(now: datetime | None = None) -> Conversation:
    """Create a fresh conversation holding only the root system node."""
    now = now or utcnow()
    root = Node(id="n0", type=SYSTEM, parent_id=None, text=PLACEHOLDER_TEXT[SYSTEM])
    return Conversation(nodes=[root], seq=1, created_at=now, updated_at=now)


def check_child(conversation: Conversation, parent_id: str, child_type: str) -> Node:
    """Validate that ``parent_id`` may receive a ``child_type`` child.

    Returns the parent node. Raises a StructuralViolationError subclass otherwise.
    """
    parent = conversation.get_node(parent_id)
    if parent is None:
        raise NodeNotFoundError(parent_id)

    allowed, limit = CHILD_RULES[parent.type]
    if child_type != allowed:
        raise InvalidChildTypeError(parent_id, parent.type, child_type)
    if limit is not None and len(parent.children) >= limit:
        raise ChildLimitError(parent_id, parent.type, limit)
    return parent


def add_child(conversation: Conversation, parent_id: str, child_type: str) -> Transition:
    check_child(conversation, parent_id, child_type)

    state = conversation.clone()
    node_id = f"n{state.seq}"
    state.seq += 1
    node = Node(
        id=node_id,
        type=child_type,
        parent_id=parent_id,
        text=PLACEHOLDER_TEXT[child_type],
    )
    state.get_node(parent_id).children.append(node_id)
    state = state.clone(nodes=[*state.nodes, node])
    return Transition(state, [Persist()], result=node_id)


def update_text(conversation: Conversation, node_id: str, text: str) -> Transition:
    if conversation.get_node(node_id) is None:
        raise NodeNotFoundError(node_id)

    state = conversation.clone()
    state.get_node(node_id).text = text
    return Transition(state, [Persist()])


def collect_subtree(conversation: Conversation, node_id: str) -> list[str]:
    """Ids of ``node_id`` and all its descendants, descendants first (post-order)."""
    order: list[str] = []
    stack: list[tuple[str, bool]] = [(node_id, False)]
    while stack:
        current, expanded = stack.pop()
        if expanded:
            order.append(current)
            continue
        stack.append((current, True))
        node = conversation.get_node(current)
        for child_id in reversed(node.children if node else []):
            stack.append((child_id, False))
    return order


def delete_node(conversation: Conversation, node_id: str) -> Transition:
    """Remove a node and its whole subtree. ``result`` is the removed ids."""
    node = conversation.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if node.type == SYSTEM and node.parent_id is None:
        raise ProtectedRootError(node_id)

    removed = collect_subtree(conversation, node_id)
    doomed = set(removed)

    state = conversation.clone()
    parent = state.get_node(node.parent_id) if node.parent_id else None
    if parent is not None:
        parent.children = [c for c in parent.children if c != node_id]

    state = state.clone(
        nodes=[n for n in state.nodes if n.id not in doomed],
        generating_nodes=state.generating_nodes - doomed,
    )
    return Transition(state, [Persist()], result=removed)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def begin_generation(conversation: Conversation, node_id: str) -> Transition:
    """Mark ``node_id`` as generating and describe the completion call to make."""
    node = conversation.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if node.type != LLM:
        raise InvalidNodeTypeError(node_id, node.type)
    if node_id in conversation.generating_nodes:
        raise AlreadyGeneratingError(node_id)

    messages = build_messages_from_tree(conversation, node_id)
    state = conversation.clone(generating_nodes=conversation.generating_nodes | {node_id})
    return Transition(state, [CallCompletion(node_id, messages)])


def complete_generation(
    conversation: Conversation, node_id: str, content: str
) -> Transition:
    """Write generated content into the node.

    If the node was deleted while the call was in flight, nothing changes and
    ``result`` is False.
    """
    if conversation.get_node(node_id) is None:
        return Transition(conversation, result=False)

    state = conversation.clone()
    state.get_node(node_id).text = content
    effects: list[Effect] = [Persist()]
    if not state.title_generated:
        effects.append(ScheduleTitle())
    return Transition(state, effects, result=True)


def fail_generation(conversation: Conversation, node_id: str, message: str) -> Transition:
    """Write a visible error marker into the node text."""
    if conversation.get_node(node_id) is None:
        return Transition(conversation, result=False)

    state = conversation.clone()
    state.get_node(node_id).text = format_error_marker(message)
    return Transition(state, [Persist()], result=True)


def release_generation(conversation: Conversation, node_id: str) -> Conversation:
    if node_id not in conversation.generating_nodes:
        return conversation
    return conversation.clone(generating_nodes=conversation.generating_nodes - {node_id})


def format_error_marker(message: str) -> str:
    return f"[Error: {message}]"


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------


def begin_title(conversation: Conversation) -> Transition:
    """Describe the title call to make, or nothing if a title already exists."""
    if conversation.title_generated:
        return Transition(conversation)
    return Transition(conversation, [CallTitle(build_transcript(conversation))])


def apply_title(conversation: Conversation, title: str) -> Transition:
    state = conversation.clone(title=title, title_generated=True)
    return Transition(state, [Persist()])


def touch(conversation: Conversation, now: datetime | None = None) -> Conversation:
    # Shares nodes with the input; committed states are never mutated
    return conversation.model_copy(update={"updated_at": now or utcnow()})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StructuralViolationError(Exception):
    """A mutation that would break the node-typing rules."""


class NodeNotFoundError(StructuralViolationError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class InvalidChildTypeError(StructuralViolationError):
    def __init__(self, parent_id: str, parent_type: str, child_type: str) -> None:
        self.parent_id = parent_id
        self.parent_type = parent_type
        self.child_type = child_type
        allowed = CHILD_RULES[parent_type][0]
        super().__init__(
            f"Node {parent_id} of type {parent_type} can only have {allowed} children,"
            f" not {child_type}"
        )


class ChildLimitError(StructuralViolationError):
    def __init__(self, parent_id: str, parent_type: str, limit: int) -> None:
        self.parent_id = parent_id
        self.limit = limit
        noun = "child" if limit == 1 else "children"
        super().__init__(
            f"Node {parent_id} already has a child ({parent_type} nodes allow"
            f" {limit} {noun})"
        )


class ProtectedRootError(StructuralViolationError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"The root system node cannot be deleted: {node_id}")


class InvalidNodeTypeError(Exception):
    def __init__(self, node_id: str, node_type: str) -> None:
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(
            f"Only {LLM} nodes can be generated; node {node_id} is {node_type}"
        )


class AlreadyGeneratingError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node {node_id} is already generating")
