"""Space membership, invite codes, and the one-space-per-user rule."""

from __future__ import annotations

import logging
import secrets
import string
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .errors import (
    AlreadyInSpace,
    CodeAllocationError,
    InvalidInviteCode,
    SpaceFull,
    SpaceNotFound,
)
from .models import Space, new_id
from .store import SPACES_KEY, KeyValueStore, mutate, read

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_SPACE_NAME = "Cozy Corner"
MAX_MEMBERS = 2

T = TypeVar("T")


def generate_invite_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _space_of(spaces: Dict[str, dict], user_id: str) -> Optional[dict]:
    for data in spaces.values():
        if user_id in data["members"]:
            return data
    return None


class SpaceRegistry:
    """Owns the ``spaces`` collection.

    The membership check and the write it guards happen in one
    compare-and-swap cycle, so two racing create/join calls by the same user
    cannot both commit against the same snapshot; the loser re-runs the check
    on fresh state and fails with :class:`AlreadyInSpace`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        attempts: int = 3,
        code_length: int = 6,
        max_code_attempts: int = 10,
        code_factory: Optional[Callable[[int], str]] = None,
        on_empty: Sequence[Callable[[str], Awaitable[None]]] = (),
    ) -> None:
        self.store = store
        self.attempts = attempts
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self._code_factory = code_factory or generate_invite_code
        # Cascade run once a space loses its last member, e.g. purging its messages.
        self.on_empty = list(on_empty)

    async def _mutate(self, fn: Callable[[Dict[str, dict]], T]) -> T:
        return await mutate(self.store, SPACES_KEY, fn, dict, self.attempts)

    def _allocate_code(self, spaces: Dict[str, dict]) -> str:
        taken = {data["code"] for data in spaces.values()}
        for _ in range(self.max_code_attempts):
            code = normalize_code(self._code_factory(self.code_length))
            if code not in taken:
                return code
            logger.debug("Invite code collision on %s, regenerating", code)
        raise CodeAllocationError("Unable to allocate an invite code")

    async def create_space(self, user_id: str, name: str = "") -> Space:
        def apply(spaces: Dict[str, dict]) -> dict:
            if _space_of(spaces, user_id) is not None:
                raise AlreadyInSpace("creating a new one")
            space = Space(
                id=new_id(),
                name=name.strip() or DEFAULT_SPACE_NAME,
                code=self._allocate_code(spaces),
                created_by=user_id,
                members=[user_id],
                version=1,
            )
            spaces[space.id] = space.to_dict()
            return spaces[space.id]

        space = Space.from_dict(await self._mutate(apply))
        logger.info("User %s created space %s (%s)", user_id, space.id, space.code)
        return space

    async def join_space(self, user_id: str, code: str) -> Space:
        wanted = normalize_code(code)

        def apply(spaces: Dict[str, dict]) -> dict:
            current = _space_of(spaces, user_id)
            target = next(
                (data for data in spaces.values() if data["code"] == wanted), None
            )
            if current is not None:
                if target is not None and current["id"] == target["id"]:
                    return current
                raise AlreadyInSpace("joining another")
            if target is None:
                raise InvalidInviteCode(code)
            if len(target["members"]) >= MAX_MEMBERS:
                raise SpaceFull()
            target["members"].append(user_id)
            target["version"] = target.get("version", 0) + 1
            return target

        space = Space.from_dict(await self._mutate(apply))
        logger.info("User %s joined space %s", user_id, space.id)
        return space

    async def leave_space(self, user_id: str, space_id: str) -> None:
        def apply(spaces: Dict[str, dict]) -> bool:
            data = spaces.get(space_id)
            if data is None or user_id not in data["members"]:
                return False
            data["members"].remove(user_id)
            if not data["members"]:
                del spaces[space_id]
                return True
            game = data.get("activeGame")
            if game:
                if user_id in game["resetRequests"]:
                    game["resetRequests"].remove(user_id)
                if game["currentPlayer"] == user_id:
                    game["currentPlayer"] = data["members"][0]
            data["version"] = data.get("version", 0) + 1
            return False

        emptied = await self._mutate(apply)
        if emptied:
            for purge in self.on_empty:
                await purge(space_id)
            logger.info("Space %s emptied and purged", space_id)

    async def list_spaces(self, user_id: str) -> List[Space]:
        spaces = await read(self.store, SPACES_KEY, dict)
        return [
            Space.from_dict(data)
            for data in spaces.values()
            if user_id in data["members"]
        ]

    async def get_space(self, space_id: str) -> Space:
        spaces = await read(self.store, SPACES_KEY, dict)
        data = spaces.get(space_id)
        if data is None:
            raise SpaceNotFound(space_id)
        return Space.from_dict(data)

    async def update_space(self, space_id: str, fn: Callable[[Space], T]) -> T:
        """Apply ``fn`` to one space and store it, bumping its version.

        ``fn`` mutates the :class:`Space` it receives and may raise to abort.
        A space ``fn`` leaves untouched is not written back.
        """

        def apply(spaces: Dict[str, dict]) -> T:
            data = spaces.get(space_id)
            if data is None:
                raise SpaceNotFound(space_id)
            space = Space.from_dict(data)
            result = fn(space)
            if space.to_dict() != data:
                space.version += 1
                spaces[space_id] = space.to_dict()
            return result

        return await self._mutate(apply)
