"""AI companion replies and song-link metadata.

Two modes:
- AI-powered (Claude): conversational replies and URL metadata extraction.
- Fallback: fixed placeholder text and metadata, used when no API key is set
  and whenever the AI call fails, times out, or returns something unusable.

Neither mode ever raises to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence
from urllib.parse import urlparse

import anthropic

from .models import AI_SENDER_ID, PLATFORMS, Message

logger = logging.getLogger(__name__)

UNCONFIGURED_REPLY = (
    "I'm having trouble connecting to my brain right now. Please check the API key."
)
FAILED_REPLY = "I couldn't quite catch that. Try again?"
PLACEHOLDER_COVER_ART = "https://picsum.photos/200/200"
HISTORY_WINDOW = 10

COMPANION_SYSTEM_PROMPT = """\
You are the DuoSpace Assistant, a private, cozy and safe companion for two best friends.
The people in this space are: {users}.

Guidelines:
1. Be warm, friendly and casual. Keep it brief.
2. Do not act like a corporate bot. Act like a helpful mutual friend.
3. You can help with conversation starters, settling friendly debates, or planning hangouts.
4. Never reveal you are an AI unless asked directly.
5. This is NOT a real-time chat.

Recent conversation history:
{history}"""

METADATA_PROMPT = """\
Analyze this URL: {url}
Return only a JSON object with the keys "title", "artist", "platform" \
(one of spotify, youtube, apple, soundcloud, other) and "coverArt" \
(an image URL or a short generic description)."""

_PLATFORM_HOSTS = (
    ("spotify", "spotify"),
    ("youtube", "youtube"),
    ("youtu.be", "youtube"),
    ("music.apple", "apple"),
    ("itunes.apple", "apple"),
    ("soundcloud", "soundcloud"),
)


@dataclass(frozen=True)
class SongMetadata:
    title: str
    artist: str
    platform: str
    cover_art: str


def guess_platform(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    for needle, platform in _PLATFORM_HOSTS:
        if needle in host:
            return platform
    return "other"


def fallback_metadata(url: str) -> SongMetadata:
    return SongMetadata(
        title="Shared Link",
        artist="Unknown Source",
        platform=guess_platform(url),
        cover_art=PLACEHOLDER_COVER_ART,
    )


def format_history(history: Sequence[Message]) -> str:
    lines = []
    for message in list(history)[-HISTORY_WINDOW:]:
        speaker = "You" if message.sender_id == AI_SENDER_ID else "Friend"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)


def parse_metadata(text: str, url: str) -> SongMetadata:
    """Parse the model's JSON answer, filling gaps from the fallback."""
    raw = text.strip()
    if raw.startswith("```"):
        raw = raw.strip("`")
        raw = raw[raw.find("{") :]
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Metadata response is not an object")
    fallback = fallback_metadata(url)
    platform = str(data.get("platform") or "").lower()
    return SongMetadata(
        title=str(data.get("title") or fallback.title),
        artist=str(data.get("artist") or fallback.artist),
        platform=platform if platform in PLATFORMS else fallback.platform,
        cover_art=str(data.get("coverArt") or fallback.cover_art),
    )


class Companion(Protocol):
    async def reply(
        self, message: str, history: Sequence[Message], users: List[str]
    ) -> str:
        ...

    async def extract_song_metadata(self, url: str) -> SongMetadata:
        ...


class FallbackCompanion:
    """Deterministic stand-in used without an API key."""

    async def reply(
        self, message: str, history: Sequence[Message], users: List[str]
    ) -> str:
        return UNCONFIGURED_REPLY

    async def extract_song_metadata(self, url: str) -> SongMetadata:
        return fallback_metadata(url)


class AnthropicCompanion:
    """Companion backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str = "",
        *,
        model: str = "claude-haiku-4-5-20251001",
        timeout: float = 10.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        if client is None and api_key:
            client = anthropic.AsyncAnthropic(api_key=api_key)
        self._client = client

    async def _complete(self, system: Optional[str], prompt: str, max_tokens: int) -> str:
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        response = await asyncio.wait_for(
            self._client.messages.create(**kwargs), timeout=self.timeout
        )
        if not response.content:
            return ""
        return getattr(response.content[0], "text", "")

    async def reply(
        self, message: str, history: Sequence[Message], users: List[str]
    ) -> str:
        if self._client is None:
            logger.error("Companion API key is missing")
            return UNCONFIGURED_REPLY
        system = COMPANION_SYSTEM_PROMPT.format(
            users=", ".join(users), history=format_history(history)
        )
        try:
            text = await self._complete(system, message, max_tokens=300)
        except (anthropic.APIError, asyncio.TimeoutError) as exc:
            logger.warning("Companion reply failed: %s", exc)
            return FAILED_REPLY
        return text.strip() or "I'm thinking..."

    async def extract_song_metadata(self, url: str) -> SongMetadata:
        if self._client is None:
            return fallback_metadata(url)
        try:
            text = await self._complete(None, METADATA_PROMPT.format(url=url), max_tokens=200)
            return parse_metadata(text, url)
        except (anthropic.APIError, asyncio.TimeoutError) as exc:
            logger.warning("Song metadata lookup failed for %s: %s", url, exc)
        except (ValueError, TypeError) as exc:
            logger.warning("Unusable song metadata for %s: %s", url, exc)
        return fallback_metadata(url)


def create_companion(api_key: str = "", model: str = "", timeout: float = 10.0) -> Companion:
    if not api_key:
        logger.info("No companion API key set, using fallback companion")
        return FallbackCompanion()
    kwargs = {"timeout": timeout}
    if model:
        kwargs["model"] = model
    return AnthropicCompanion(api_key, **kwargs)
