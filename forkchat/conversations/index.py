"""Conversation list: enumerate persisted conversations for the sidebar."""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from forkchat.conversations.ids import (
    CONVERSATION_KEY_PREFIX,
    conversation_id_from_key,
    conversation_key,
)
from forkchat.models import ConversationSummary, as_utc, utcnow
from forkchat.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


class _RecordHeader(BaseModel):
    """Just the fields the list needs; everything else in the record is ignored."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    timestamp: datetime | None = None
    nodes: list[Any] | None = None


class ConversationListIndex:
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def list_conversations(self) -> list[ConversationSummary]:
        """Summaries of every persisted conversation, most recently updated first.

        Records that cannot be read are logged and skipped.
        """
        summaries: list[ConversationSummary] = []
        for key in await self._kv.keys(CONVERSATION_KEY_PREFIX):
            conversation_id = conversation_id_from_key(key)
            if conversation_id is None:
                continue
            try:
                raw = await self._kv.get(key)
                if raw is None:
                    continue
                summaries.append(self._summarize(conversation_id, raw))
            except Exception as e:
                logger.warning("Skipping unreadable conversation %s: %s", key, e)

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation's record. False if it was missing or storage failed."""
        try:
            return await self._kv.delete(conversation_key(conversation_id))
        except Exception:
            logger.exception("Failed to delete conversation %s", conversation_id)
            return False

    @staticmethod
    def _summarize(conversation_id: str, raw: bytes) -> ConversationSummary:
        header = _RecordHeader.model_validate_json(raw)
        fallback = header.timestamp
        now = utcnow()
        return ConversationSummary(
            uuid=conversation_id,
            title=header.title or "Untitled",
            created_at=as_utc(header.created_at or fallback or now),
            updated_at=as_utc(header.updated_at or fallback or now),
            node_count=len(header.nodes) if header.nodes else 0,
        )


def format_relative_time(value: datetime | str, now: datetime | None = None) -> str:
    """Human-friendly age: "just now", "5 minutes ago", ... or a date past 30 days."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    value = as_utc(value)
    now = as_utc(now or utcnow())

    seconds = int((now - value).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if days < 30:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return value.date().isoformat()
