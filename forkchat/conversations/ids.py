"""Conversation handles and their key-value store keys."""

from uuid import uuid4

CONVERSATION_KEY_PREFIX = "conversation_"


def new_conversation_id() -> str:
    return str(uuid4())


def conversation_key(conversation_id: str) -> str:
    return f"{CONVERSATION_KEY_PREFIX}{conversation_id}"


def conversation_id_from_key(key: str) -> str | None:
    """The handle inside a conversation key, or None for unrelated keys."""
    if not key.startswith(CONVERSATION_KEY_PREFIX):
        return None
    return key[len(CONVERSATION_KEY_PREFIX):] or None
