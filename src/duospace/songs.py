"""Shared-song feed derived from song-card messages."""

from __future__ import annotations

from typing import Dict, List, Optional

from .errors import InvalidReaction, SongNotFound
from .messages import MessageLog
from .models import REACTIONS, Song
from .store import SONG_REACTIONS_KEY, KeyValueStore, mutate, read


class SongFeed:
    """Songs are read out of the message log; reactions live in their own collection.

    Song-card messages are immutable, so a reaction never rewrites the
    message that shared the song.
    """

    def __init__(
        self, store: KeyValueStore, messages: MessageLog, *, attempts: int = 3
    ) -> None:
        self.store = store
        self.messages = messages
        self.attempts = attempts

    async def list(self, space_id: str) -> List[Song]:
        """Newest first, with current reactions applied."""
        reactions = await read(self.store, SONG_REACTIONS_KEY, dict)
        by_song = reactions.get(space_id, {})
        songs: List[Song] = []
        for message in reversed(await self.messages.list(space_id)):
            if message.type != "music_card" or message.song is None:
                continue
            song = message.song
            song.reactions = dict(by_song.get(song.id, {}))
            songs.append(song)
        return songs

    async def react(
        self, space_id: str, song_id: str, user_id: str, reaction: Optional[str]
    ) -> Dict[str, str]:
        """Set (or with ``None`` clear) ``user_id``'s reaction to a song."""
        if reaction is not None and reaction not in REACTIONS:
            raise InvalidReaction(f"Reaction must be one of {', '.join(REACTIONS)}")
        if not any(song.id == song_id for song in await self.list(space_id)):
            raise SongNotFound(song_id)

        def apply(collection: Dict[str, dict]) -> Dict[str, str]:
            song_reactions = collection.setdefault(space_id, {}).setdefault(song_id, {})
            if reaction is None:
                song_reactions.pop(user_id, None)
            else:
                song_reactions[user_id] = reaction
            return dict(song_reactions)

        return await mutate(self.store, SONG_REACTIONS_KEY, apply, dict, self.attempts)

    async def purge(self, space_id: str) -> None:
        await mutate(
            self.store,
            SONG_REACTIONS_KEY,
            lambda collection: collection.pop(space_id, None),
            dict,
            self.attempts,
        )
