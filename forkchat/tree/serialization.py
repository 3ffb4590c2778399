"""Versioned persisted-state codec.

Record layout (JSON, UTF-8)::

    {
      "version": 1,
      "nodes": [{"id", "type", "parentId", "children", "text"}, ...],
      "nodesById": {"<id>": <node>, ...},
      "seq": int,
      "title": str,
      "titleGenerated": bool,
      "createdAt": ISO-8601,
      "updatedAt": ISO-8601
    }

Records written before timestamps were split carry a single ``timestamp``
field instead of ``createdAt``/``updatedAt``.
"""

import json
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from forkchat.models import (
    CHILD_RULES,
    STATE_VERSION,
    SYSTEM,
    Conversation,
    Node,
    as_utc,
    utcnow,
)

_ID_SUFFIX = re.compile(r"^n(\d+)$")


class ConversationRecord(BaseModel):
    """The persisted shape. Lenient on load, always complete on save."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = STATE_VERSION
    nodes: list[Node] = Field(default_factory=list)
    nodes_by_id: dict[str, Node] | None = Field(default=None, alias="nodesById")
    seq: int | None = None
    title: str | None = None
    title_generated: bool = Field(default=False, alias="titleGenerated")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    timestamp: datetime | None = None


def serialize_state(conversation: Conversation) -> bytes:
    nodes = [node.model_dump(by_alias=True) for node in conversation.nodes]
    record = {
        "version": STATE_VERSION,
        "nodes": nodes,
        "nodesById": {node["id"]: node for node in nodes},
        "seq": conversation.seq,
        "title": conversation.title,
        "titleGenerated": conversation.title_generated,
        "createdAt": conversation.created_at.isoformat(),
        "updatedAt": conversation.updated_at.isoformat(),
    }
    return json.dumps(record).encode("utf-8")


def deserialize_state(raw: bytes | str) -> Conversation:
    """Rebuild a Conversation from a persisted record.

    ``generating_nodes`` always comes back empty. Raises StateFormatError for
    anything that is not a readable, structurally sound version-1 record.
    """
    try:
        record = ConversationRecord.model_validate_json(raw)
    except ValidationError as e:
        raise StateFormatError(f"Malformed conversation record: {e}") from e

    if record.version != STATE_VERSION:
        raise StateFormatError(f"Unsupported state version: {record.version}")

    if record.nodes_by_id is not None:
        listed = {node.id for node in record.nodes}
        if set(record.nodes_by_id) != listed:
            raise StateFormatError("nodesById does not match nodes")

    fallback = record.timestamp or utcnow()
    try:
        conversation = Conversation(
            nodes=record.nodes,
            seq=_resolve_seq(record),
            title=record.title or "",
            title_generated=record.title_generated,
            created_at=as_utc(record.created_at or fallback),
            updated_at=as_utc(record.updated_at or fallback),
        )
    except ValidationError as e:
        raise StateFormatError(f"Malformed conversation record: {e}") from e

    check_structure(conversation)
    return conversation


def _resolve_seq(record: ConversationRecord) -> int:
    """Never hand out an id that is already in use, whatever ``seq`` says."""
    suffixes = [
        int(match.group(1))
        for match in (_ID_SUFFIX.match(node.id) for node in record.nodes)
        if match
    ]
    floor = max(suffixes) + 1 if suffixes else 0
    return max(record.seq or 0, floor)


def check_structure(conversation: Conversation) -> None:
    """Verify the root, parent/children links, child typing, and reachability."""
    roots = [n for n in conversation.nodes if n.parent_id is None]
    if len(roots) != 1 or roots[0].type != SYSTEM:
        raise StateFormatError("Expected exactly one parentless system node")

    for node in conversation.nodes:
        for child_id in node.children:
            child = conversation.get_node(child_id)
            if child is None or child.parent_id != node.id:
                raise StateFormatError(f"Broken child link {node.id} -> {child_id}")
        if node.parent_id is not None:
            parent = conversation.get_node(node.parent_id)
            if parent is None or node.id not in parent.children:
                raise StateFormatError(f"Broken parent link {node.id} -> {node.parent_id}")

        allowed, limit = CHILD_RULES[node.type]
        if limit is not None and len(node.children) > limit:
            raise StateFormatError(f"Node {node.id} has too many children")
        for child_id in node.children:
            if conversation.get_node(child_id).type != allowed:
                raise StateFormatError(f"Node {node.id} has an illegal {child_id} child")

    reachable: set[str] = set()
    stack = [roots[0].id]
    while stack:
        node_id = stack.pop()
        if node_id in reachable:
            raise StateFormatError(f"Node {node_id} is reachable twice")
        reachable.add(node_id)
        stack.extend(conversation.get_node(node_id).children)
    if len(reachable) != len(conversation.nodes):
        raise StateFormatError("Some nodes are not reachable from the root")


class StateFormatError(Exception):
    pass
