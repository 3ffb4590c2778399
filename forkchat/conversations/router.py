"""FastAPI routes for conversations, nodes, and generation."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from forkchat.conversations.index import format_relative_time
from forkchat.conversations.schemas import (
    ContextResponse,
    ConversationDetailResponse,
    ConversationSummaryResponse,
    CreateNodeRequest,
    NodeResponse,
    PatchNodeTextRequest,
)
from forkchat.conversations.service import ConversationService
from forkchat.providers.base import ConfigurationError, ProviderError
from forkchat.tree.operations import (
    AlreadyGeneratingError,
    InvalidNodeTypeError,
    NodeNotFoundError,
    ProtectedRootError,
    StructuralViolationError,
)
from forkchat.tree.store import ConversationStore

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_conversation_service() -> ConversationService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("ConversationService not initialized")


async def _require_store(service: ConversationService, uuid: str) -> ConversationStore:
    store = await service.get_conversation(uuid)
    if store is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {uuid}")
    return store


def _node_response(store: ConversationStore, node_id: str) -> NodeResponse:
    node = store.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return NodeResponse.from_node(node, generating=store.is_generating(node_id))


@router.get("")
async def list_conversations(
    service: ConversationService = Depends(get_conversation_service),
) -> list[ConversationSummaryResponse]:
    summaries = await service.list_conversations()
    return [
        ConversationSummaryResponse.from_summary(s, format_relative_time(s.updated_at))
        for s in summaries
    ]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailResponse:
    store = await service.create_conversation()
    return ConversationDetailResponse.from_state(store.conversation_id, store.state)


@router.get("/{uuid}")
async def get_conversation(
    uuid: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailResponse:
    store = await _require_store(service, uuid)
    return ConversationDetailResponse.from_state(uuid, store.state)


@router.delete("/{uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    uuid: str,
    service: ConversationService = Depends(get_conversation_service),
) -> Response:
    if not await service.delete_conversation(uuid):
        raise HTTPException(status_code=404, detail=f"Conversation not found: {uuid}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{uuid}/nodes", status_code=status.HTTP_201_CREATED)
async def create_node(
    uuid: str,
    request: CreateNodeRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> NodeResponse:
    store = await _require_store(service, uuid)
    try:
        node_id = await store.add_child(request.parent_id, request.type)
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail=f"Node not found: {request.parent_id}")
    except StructuralViolationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _node_response(store, node_id)


@router.patch("/{uuid}/nodes/{node_id}")
async def update_node_text(
    uuid: str,
    node_id: str,
    request: PatchNodeTextRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> NodeResponse:
    store = await _require_store(service, uuid)
    try:
        await store.update_text(node_id, request.text)
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return _node_response(store, node_id)


@router.delete("/{uuid}/nodes/{node_id}")
async def delete_node(
    uuid: str,
    node_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    store = await _require_store(service, uuid)
    try:
        removed = await store.delete_node(node_id)
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    except ProtectedRootError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"deleted": removed}


@router.get("/{uuid}/nodes/{node_id}/context")
async def get_context(
    uuid: str,
    node_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ContextResponse:
    store = await _require_store(service, uuid)
    if store.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return ContextResponse(node_id=node_id, messages=store.build_messages_from_tree(node_id))


@router.post("/{uuid}/nodes/{node_id}/generate")
async def generate(
    uuid: str,
    node_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> NodeResponse:
    store = await _require_store(service, uuid)
    try:
        await store.generate_llm_response(node_id)
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    except InvalidNodeTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AlreadyGeneratingError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _node_response(store, node_id)
