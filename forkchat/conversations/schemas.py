"""Request and response schemas for conversation and node endpoints."""

from typing import Literal

from pydantic import BaseModel

from forkchat.models import Conversation, ConversationSummary, Node, node_type_label

# -- Requests --


class CreateNodeRequest(BaseModel):
    parent_id: str
    type: Literal["user", "llm"]


class PatchNodeTextRequest(BaseModel):
    text: str


# -- Responses --


class NodeResponse(BaseModel):
    id: str
    type: str
    label: str
    parent_id: str | None = None
    children: list[str]
    text: str
    generating: bool = False

    @classmethod
    def from_node(cls, node: Node, *, generating: bool = False) -> "NodeResponse":
        return cls(
            id=node.id,
            type=node.type,
            label=node_type_label(node.type),
            parent_id=node.parent_id,
            children=list(node.children),
            text=node.text,
            generating=generating,
        )


class ConversationDetailResponse(BaseModel):
    uuid: str
    title: str
    title_generated: bool
    created_at: str
    updated_at: str
    seq: int
    nodes: list[NodeResponse]

    @classmethod
    def from_state(cls, uuid: str, state: Conversation) -> "ConversationDetailResponse":
        return cls(
            uuid=uuid,
            title=state.title,
            title_generated=state.title_generated,
            created_at=state.created_at.isoformat(),
            updated_at=state.updated_at.isoformat(),
            seq=state.seq,
            nodes=[
                NodeResponse.from_node(n, generating=n.id in state.generating_nodes)
                for n in state.nodes
            ],
        )


class ConversationSummaryResponse(BaseModel):
    uuid: str
    title: str
    created_at: str
    updated_at: str
    node_count: int
    relative_time: str

    @classmethod
    def from_summary(
        cls, summary: ConversationSummary, relative_time: str
    ) -> "ConversationSummaryResponse":
        return cls(
            uuid=summary.uuid,
            title=summary.title,
            created_at=summary.created_at.isoformat(),
            updated_at=summary.updated_at.isoformat(),
            node_count=summary.node_count,
            relative_time=relative_time,
        )


class ContextResponse(BaseModel):
    node_id: str
    messages: list[dict[str, str]]
