"""Commands shared by in-process clients and the HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .companion import Companion, FallbackCompanion, create_companion
from .config import Settings
from .errors import ConcurrencyConflict, NotAMember, UserNotFound
from .game import GameEngine
from .identity import UserDirectory
from .messages import MessageLog, compose_message
from .models import AI_SENDER_ID, GameState, Message, Song, Space, new_id
from .songs import SongFeed
from .spaces import SpaceRegistry
from .store import KeyValueStore, MemoryStore, create_store

logger = logging.getLogger(__name__)

COMPANION_TRIGGER = "@ai"


@dataclass
class SpaceSnapshot:
    """Everything a client renders for its space, fetched in one poll."""

    space: Optional[Space]
    messages: List[Message] = field(default_factory=list)
    songs: List[Song] = field(default_factory=list)


class DuoSpaceService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        settings: Optional[Settings] = None,
        companion: Optional[Companion] = None,
    ) -> None:
        self.settings = settings or Settings()
        attempts = self.settings.write_attempts
        self.store = store
        self.users = UserDirectory(store, attempts=attempts)
        self.messages = MessageLog(store, attempts=attempts)
        self.songs = SongFeed(store, self.messages, attempts=attempts)
        self.spaces = SpaceRegistry(
            store,
            attempts=attempts,
            code_length=self.settings.invite_code_length,
            max_code_attempts=self.settings.max_code_attempts,
            on_empty=[self.messages.purge, self.songs.purge],
        )
        self.games = GameEngine(self.spaces)
        self.companion = companion or FallbackCompanion()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DuoSpaceService":
        return cls(
            create_store(settings.store_path),
            settings=settings,
            companion=create_companion(
                settings.anthropic_api_key,
                settings.companion_model,
                settings.companion_timeout,
            ),
        )

    @classmethod
    def in_memory(cls, **kwargs) -> "DuoSpaceService":
        return cls(MemoryStore(), **kwargs)

    async def _member_space(self, space_id: str, user_id: str) -> Space:
        space = await self.spaces.get_space(space_id)
        if user_id not in space.members:
            raise NotAMember()
        return space

    async def _display_name(self, user_id: str) -> str:
        try:
            return (await self.users.get_user(user_id)).name
        except UserNotFound:
            return user_id

    async def _touch(self, user_id: str) -> None:
        try:
            await self.users.touch(user_id)
        except ConcurrencyConflict:
            logger.warning("Could not record activity for %s", user_id)

    async def current_space(self, user_id: str) -> Optional[Space]:
        spaces = await self.spaces.list_spaces(user_id)
        return spaces[0] if spaces else None

    async def send_message(
        self,
        space_id: str,
        sender_id: str,
        content: str,
        *,
        reply_to_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> List[Message]:
        """Store a text message; returns it plus any companion reply.

        Everything that can reject the send is checked before the message is
        stored, so a stored message is always reported as sent.
        """
        space = await self._member_space(space_id, sender_id)
        target = None
        if reply_to_id:
            target = await self.messages.get(space_id, reply_to_id)
        wants_reply = content.strip().lower().startswith(COMPANION_TRIGGER)
        names = []
        if wants_reply:
            names = [await self._display_name(member) for member in space.members]
        message = compose_message(
            space_id,
            sender_id,
            content,
            reply_to=target,
            snippet_length=self.settings.reply_snippet_length,
        )
        if message_id:
            message.id = message_id
        await self.messages.append(message)
        await self._touch(sender_id)
        sent = [message]
        if wants_reply:
            sent.append(await self._companion_reply(space, content, names))
        return sent

    async def _companion_reply(
        self, space: Space, content: str, names: List[str]
    ) -> Message:
        history = await self.messages.list(space.id)
        prompt = content.strip()[len(COMPANION_TRIGGER) :].strip() or content
        text = await self.companion.reply(prompt, history, names)
        reply = compose_message(space.id, AI_SENDER_ID, text)
        return await self.messages.append(reply)

    async def share_song(self, space_id: str, user_id: str, url: str) -> Message:
        await self._member_space(space_id, user_id)
        meta = await self.companion.extract_song_metadata(url)
        song = Song(
            id=new_id(),
            url=url,
            title=meta.title,
            artist=meta.artist,
            cover_art=meta.cover_art,
            added_by=user_id,
            platform=meta.platform,
        )
        message = compose_message(
            space_id,
            user_id,
            f"{song.title} by {song.artist}",
            type="music_card",
            song=song,
        )
        stored = await self.messages.append(message)
        await self._touch(user_id)
        return stored

    async def mark_read(self, space_id: str, user_id: str) -> int:
        await self._member_space(space_id, user_id)
        user = await self.users.get_user(user_id)
        await self._touch(user_id)
        if not user.settings.read_receipts:
            return 0
        return await self.messages.mark_read(space_id, user_id)

    async def make_move(self, space_id: str, user_id: str, cell: int) -> GameState:
        game = await self.games.make_move(space_id, user_id, cell)
        await self._touch(user_id)
        return game

    async def request_reset(self, space_id: str, user_id: str) -> Optional[GameState]:
        game = await self.games.request_reset(space_id, user_id)
        await self._touch(user_id)
        return game

    async def snapshot(self, user_id: str) -> SpaceSnapshot:
        space = await self.current_space(user_id)
        if space is None:
            return SpaceSnapshot(space=None)
        return SpaceSnapshot(
            space=space,
            messages=await self.messages.list(space.id),
            songs=await self.songs.list(space.id),
        )
