"""Append-only per-space message log."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import MessageNotFound
from .models import MESSAGE_TYPES, Message, ReplyReference, Song
from .store import MESSAGES_KEY, KeyValueStore, mutate, read

logger = logging.getLogger(__name__)


def reply_reference(target: Message, snippet_length: int = 120) -> ReplyReference:
    """Freeze the parts of ``target`` a reply displays."""
    content = target.content
    if len(content) > snippet_length:
        content = content[: snippet_length - 1].rstrip() + "…"
    return ReplyReference(id=target.id, content=content, sender_id=target.sender_id)


def compose_message(
    space_id: str,
    sender_id: str,
    content: str,
    *,
    type: str = "text",
    reply_to: Optional[Message] = None,
    song: Optional[Song] = None,
    image_url: Optional[str] = None,
    snippet_length: int = 120,
) -> Message:
    if type not in MESSAGE_TYPES:
        raise ValueError(f"Unknown message type {type!r}")
    return Message(
        space_id=space_id,
        sender_id=sender_id,
        content=content,
        type=type,
        song=song,
        image_url=image_url,
        reply_to=reply_reference(reply_to, snippet_length) if reply_to else None,
        read_by=[sender_id],
    )


class MessageLog:
    """Messages of every space in one ``messages`` collection.

    Storage order is the display order. Timestamps come from the sending
    client, so two clients' messages are ordered by when their appends
    landed, not by their clocks.
    """

    def __init__(self, store: KeyValueStore, *, attempts: int = 3) -> None:
        self.store = store
        self.attempts = attempts

    async def _mutate(self, fn):
        return await mutate(self.store, MESSAGES_KEY, fn, dict, self.attempts)

    async def append(self, message: Message) -> Message:
        blob = message.to_dict()

        def apply(collection: Dict[str, list]) -> None:
            collection.setdefault(message.space_id, []).append(blob)

        await self._mutate(apply)
        logger.debug("Appended message %s to space %s", message.id, message.space_id)
        return message

    async def list(self, space_id: str) -> List[Message]:
        collection = await read(self.store, MESSAGES_KEY, dict)
        return [Message.from_dict(data) for data in collection.get(space_id, [])]

    async def get(self, space_id: str, message_id: str) -> Message:
        for message in await self.list(space_id):
            if message.id == message_id:
                return message
        raise MessageNotFound(message_id)

    async def purge(self, space_id: str) -> None:
        await self._mutate(lambda collection: collection.pop(space_id, None))

    async def mark_read(self, space_id: str, user_id: str) -> int:
        """Add ``user_id`` to ``readBy`` of every message it has not seen yet."""

        def apply(collection: Dict[str, list]) -> int:
            marked = 0
            for data in collection.get(space_id, []):
                if user_id not in data["readBy"]:
                    data["readBy"].append(user_id)
                    marked += 1
            return marked

        return await self._mutate(apply)
