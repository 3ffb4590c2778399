"""Context assembly for LLM generation.

Turns the path from the root to a target node into the messages array sent
to the completion client, and flattens a whole conversation into a transcript
for title generation.
"""

from forkchat.models import (
    DEFAULT_SYSTEM_PROMPT,
    LLM,
    SYSTEM,
    USER,
    Conversation,
    Node,
    Role,
)

ROLE_FOR_TYPE: dict[str, Role] = {
    SYSTEM: "system",
    USER: "user",
    LLM: "assistant",
}


def find_path(conversation: Conversation, target_node_id: str) -> list[Node]:
    """Nodes from the root down to ``target_node_id``, inclusive.

    Depth-first over ``children`` with an explicit stack; the first match wins.
    Returns an empty list when the target is not reachable from the root.
    """
    root = conversation.root
    if root is None:
        return []

    stack: list[tuple[str, list[str]]] = [(root.id, [root.id])]
    while stack:
        node_id, path = stack.pop()
        if node_id == target_node_id:
            return [conversation.get_node(i) for i in path]
        node = conversation.get_node(node_id)
        if node is None:
            continue
        # Reversed so the first child is explored first.
        for child_id in reversed(node.children):
            stack.append((child_id, [*path, child_id]))
    return []


def build_messages_from_tree(
    conversation: Conversation, target_node_id: str
) -> list[dict[str, str]]:
    """Build the chat messages that precede ``target_node_id``.

    The system node always leads (default prompt when its text is empty). The
    target itself is left out when it is an llm node, since that is the
    response being generated.
    """
    messages: list[dict[str, str]] = []
    for node in find_path(conversation, target_node_id):
        if node.type == SYSTEM:
            messages.append({"role": "system", "content": node.text or DEFAULT_SYSTEM_PROMPT})
        elif node.type == USER:
            messages.append({"role": "user", "content": node.text})
        elif node.type == LLM and node.id != target_node_id:
            messages.append({"role": "assistant", "content": node.text})
    return messages


def build_transcript(conversation: Conversation) -> str:
    """Every node's text, role-tagged, in creation order."""
    return "\n\n".join(
        f"{ROLE_FOR_TYPE[node.type].upper()}: {node.text}" for node in conversation.nodes
    )
