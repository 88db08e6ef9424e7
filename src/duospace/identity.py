"""Users, the logged-in session, and session change notification."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from .errors import InvalidSettings, InvalidUsername, UserNotFound
from .models import THEMES, User, UserSettings, new_id, now_ms
from .store import USERS_KEY, KeyValueStore, mutate, read

logger = logging.getLogger(__name__)

AVATAR_COLORS = ("rose", "violet", "cyan", "amber", "fuchsia")

# Accepted keyword -> stored settings key
_SETTING_FIELDS = {
    "read_receipts": "readReceipts",
    "last_seen": "lastSeen",
    "theme": "theme",
}


@dataclass(frozen=True)
class Session:
    """Current authenticated user of one client process. Never persisted."""

    token: str
    user: User


def _normalize(username: str) -> str:
    return username.strip().lower()


def _find(users: Dict[str, dict], username: str) -> Optional[dict]:
    wanted = _normalize(username)
    for data in users.values():
        if _normalize(data["username"]) == wanted:
            return data
    return None


class UserDirectory:
    """User records stored in the ``users`` collection, keyed by id."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        attempts: int = 3,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.attempts = attempts
        self._rng = rng or random.Random()

    async def _mutate(self, fn):
        return await mutate(self.store, USERS_KEY, fn, dict, self.attempts)

    async def is_username_available(self, username: str) -> bool:
        users = await read(self.store, USERS_KEY, dict)
        return _find(users, username) is None

    async def get_user(self, user_id: str) -> User:
        users = await read(self.store, USERS_KEY, dict)
        data = users.get(user_id)
        if data is None:
            raise UserNotFound(user_id)
        return User.from_dict(data)

    async def login(self, username: str) -> Session:
        """Log in as ``username``, creating the user on first use.

        Usernames are bare claims; there is no password.
        """

        name = username.strip()
        if not name:
            raise InvalidUsername("Username must not be empty")
        color = self._rng.choice(AVATAR_COLORS)

        def apply(users: Dict[str, dict]) -> dict:
            existing = _find(users, name)
            if existing is not None:
                if existing["settings"].get("lastSeen", True):
                    existing["lastSeenAt"] = now_ms()
                return existing
            user = User(
                id=new_id(),
                username=name,
                name=name,
                avatar_color=color,
                last_seen_at=now_ms(),
            )
            users[user.id] = user.to_dict()
            logger.info("Created user %s (%s)", user.id, name)
            return users[user.id]

        data = await self._mutate(apply)
        return Session(token=new_id(), user=User.from_dict(data))

    async def update_settings(self, user_id: str, **changes: object) -> User:
        unknown = set(changes) - set(_SETTING_FIELDS)
        if unknown:
            raise InvalidSettings(f"Unknown settings: {', '.join(sorted(unknown))}")
        theme = changes.get("theme")
        if theme is not None and theme not in THEMES:
            raise InvalidSettings(f"Theme must be one of {', '.join(THEMES)}")
        for flag in ("read_receipts", "last_seen"):
            value = changes.get(flag)
            if value is not None and not isinstance(value, bool):
                raise InvalidSettings(f"{flag} must be true or false")

        def apply(users: Dict[str, dict]) -> dict:
            data = users.get(user_id)
            if data is None:
                raise UserNotFound(user_id)
            for field_name, value in changes.items():
                if value is None:
                    continue
                data["settings"][_SETTING_FIELDS[field_name]] = value
            return data

        return User.from_dict(await self._mutate(apply))

    async def touch(self, user_id: str) -> None:
        """Record activity, unless the user hides their last-seen time.

        Ids with no user record (the companion, say) are ignored.
        """

        def apply(users: Dict[str, dict]) -> None:
            data = users.get(user_id)
            if data is None:
                return
            if data["settings"].get("lastSeen", True):
                data["lastSeenAt"] = now_ms()

        await self._mutate(apply)

    @staticmethod
    def visible_last_seen(user: User) -> Optional[int]:
        return user.last_seen_at if user.settings.last_seen else None


SessionListener = Callable[[Optional[Session]], None]


class SessionContext:
    """Holds the session of one client and tells subscribers when it changes."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session
        self._listeners: List[SessionListener] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._session.user if self._session else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, session: Session) -> None:
        self._session = session
        self._notify()

    def update_user(self, user: User) -> None:
        if self._session is not None and self._session.user.id == user.id:
            self.set(replace(self._session, user=user))

    def clear(self) -> None:
        self._session = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._session)
            except Exception:
                logger.exception("Session listener %r failed", listener)


__all__ = ["Session", "SessionContext", "UserDirectory", "UserSettings"]
