"""Records shared through the store and their JSON blob codecs.

Blobs use camelCase keys so a stored collection reads the same whether it is
inspected on disk or returned by the HTTP API.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

AI_SENDER_ID = "ai"

GAME_ACTIVE = "active"
GAME_DRAW = "draw"
GAME_WINNER = "winner"

MESSAGE_TYPES = ("text", "image", "system", "music_card")
PLATFORMS = ("spotify", "youtube", "apple", "soundcloud", "other")
REACTIONS = ("like", "repeat", "skip")
THEMES = ("light", "dark")


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class UserSettings:
    read_receipts: bool = True
    last_seen: bool = True
    theme: str = "light"

    def to_dict(self) -> Dict[str, object]:
        return {
            "readReceipts": self.read_receipts,
            "lastSeen": self.last_seen,
            "theme": self.theme,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "UserSettings":
        return cls(
            read_receipts=bool(data.get("readReceipts", True)),
            last_seen=bool(data.get("lastSeen", True)),
            theme=str(data.get("theme", "light")),
        )


@dataclass
class User:
    id: str
    username: str
    name: str
    avatar_color: str
    settings: UserSettings = field(default_factory=UserSettings)
    last_seen_at: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "avatarColor": self.avatar_color,
            "settings": self.settings.to_dict(),
            "lastSeenAt": self.last_seen_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "User":
        return cls(
            id=data["id"],
            username=data["username"],
            name=data.get("name") or data["username"],
            avatar_color=data.get("avatarColor", ""),
            settings=UserSettings.from_dict(data.get("settings") or {}),
            last_seen_at=data.get("lastSeenAt"),
        )


@dataclass
class GameState:
    """Tic-tac-toe board owned by one space.

    ``board`` holds 'X', 'O' or None per cell. ``current_player`` and
    ``winner`` are user ids, never marks.
    """

    current_player: str
    id: str = field(default_factory=new_id)
    type: str = "tictactoe"
    board: List[Optional[str]] = field(default_factory=lambda: [None] * 9)
    status: str = GAME_ACTIVE
    winner: Optional[str] = None
    reset_requests: List[str] = field(default_factory=list)
    last_updated: int = field(default_factory=now_ms)

    def filled(self) -> int:
        return sum(1 for c in self.board if c is not None)

    def is_finished(self) -> bool:
        return self.status != GAME_ACTIVE

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "board": list(self.board),
            "currentPlayer": self.current_player,
            "status": self.status,
            "winner": self.winner,
            "resetRequests": list(self.reset_requests),
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "GameState":
        return cls(
            id=data["id"],
            type=data.get("type", "tictactoe"),
            board=list(data["board"]),
            current_player=data["currentPlayer"],
            status=data.get("status", GAME_ACTIVE),
            winner=data.get("winner"),
            reset_requests=list(data.get("resetRequests") or []),
            last_updated=data.get("lastUpdated", 0),
        )


@dataclass
class Space:
    id: str
    name: str
    code: str
    created_by: str
    members: List[str] = field(default_factory=list)
    theme: str = "violet"
    created_at: int = field(default_factory=now_ms)
    active_game: Optional[GameState] = None
    # Bumped on every stored mutation so pollers can tell snapshots apart.
    version: int = 0

    def is_playable(self) -> bool:
        return len(self.members) == 2

    def other_member(self, user_id: str) -> Optional[str]:
        for member in self.members:
            if member != user_id:
                return member
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "theme": self.theme,
            "members": list(self.members),
            "createdAt": self.created_at,
            "createdBy": self.created_by,
            "activeGame": self.active_game.to_dict() if self.active_game else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Space":
        game = data.get("activeGame")
        return cls(
            id=data["id"],
            name=data["name"],
            code=data["code"],
            theme=data.get("theme", "violet"),
            members=list(data.get("members") or []),
            created_at=data.get("createdAt", 0),
            created_by=data.get("createdBy", ""),
            active_game=GameState.from_dict(game) if game else None,
            version=data.get("version", 0),
        )


@dataclass
class Song:
    id: str
    url: str
    title: str
    artist: str
    cover_art: str
    added_by: str
    platform: str = "other"
    reactions: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "artist": self.artist,
            "coverArt": self.cover_art,
            "addedBy": self.added_by,
            "platform": self.platform,
            "reactions": dict(self.reactions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Song":
        return cls(
            id=data["id"],
            url=data["url"],
            title=data.get("title", ""),
            artist=data.get("artist", ""),
            cover_art=data.get("coverArt", ""),
            added_by=data.get("addedBy", ""),
            platform=data.get("platform", "other"),
            reactions=dict(data.get("reactions") or {}),
        )


@dataclass(frozen=True)
class ReplyReference:
    """Copy of the replied-to message taken at send time, never a live link."""

    id: str
    content: str
    sender_id: str

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "content": self.content, "senderId": self.sender_id}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ReplyReference":
        return cls(id=data["id"], content=data["content"], sender_id=data["senderId"])


@dataclass
class Message:
    space_id: str
    sender_id: str
    content: str
    type: str = "text"
    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)
    image_url: Optional[str] = None
    song: Optional[Song] = None
    reply_to: Optional[ReplyReference] = None
    read_by: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "id": self.id,
            "spaceId": self.space_id,
            "senderId": self.sender_id,
            "content": self.content,
            "type": self.type,
            "timestamp": self.timestamp,
            "readBy": list(self.read_by),
        }
        metadata: Dict[str, object] = {}
        if self.image_url:
            metadata["imageUrl"] = self.image_url
        if self.song:
            metadata["musicData"] = self.song.to_dict()
        if metadata:
            data["metadata"] = metadata
        if self.reply_to:
            data["replyTo"] = self.reply_to.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Message":
        metadata = data.get("metadata") or {}
        song = metadata.get("musicData")
        reply = data.get("replyTo")
        return cls(
            id=data["id"],
            space_id=data["spaceId"],
            sender_id=data["senderId"],
            content=data.get("content", ""),
            type=data.get("type", "text"),
            timestamp=data.get("timestamp", 0),
            image_url=metadata.get("imageUrl"),
            song=Song.from_dict(song) if song else None,
            reply_to=ReplyReference.from_dict(reply) if reply else None,
            read_by=list(data.get("readBy") or []),
        )
