"""One client process: session, local view, commands, and its pollers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

from .errors import NotLoggedIn
from .identity import Session, SessionContext
from .messages import compose_message
from .models import GameState, Message, Song, Space, User
from .service import DuoSpaceService, SpaceSnapshot
from .sync import SyncPoller

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientView:
    """What the rendering layer draws. Replaced, never edited in place."""

    space: Optional[Space] = None
    messages: List[Message] = field(default_factory=list)
    songs: List[Song] = field(default_factory=list)

    @property
    def game(self) -> Optional[GameState]:
        return self.space.active_game if self.space else None


ViewListener = Callable[[ClientView], None]


class DuoClient:
    """Commands write through the service immediately; reads come from polls.

    The only local speculation is a just-sent message, shown before the
    message poll confirms it and dropped if the next poll does not have it.
    """

    def __init__(
        self,
        service: DuoSpaceService,
        context: Optional[SessionContext] = None,
    ) -> None:
        self.service = service
        self.context = context or SessionContext()
        self.view = ClientView()
        self._listeners: List[ViewListener] = []
        settings = service.settings
        self.message_poller: SyncPoller[List[Message]] = SyncPoller(
            self._fetch_messages,
            self._apply_messages,
            interval=settings.message_poll_interval,
            jitter=settings.poll_jitter,
            max_retries=settings.poll_max_retries,
            backoff=settings.poll_backoff,
            name="message-poller",
        )
        self.space_poller: SyncPoller[SpaceSnapshot] = SyncPoller(
            self._fetch_space,
            self._apply_space,
            interval=settings.space_poll_interval,
            jitter=settings.poll_jitter,
            max_retries=settings.poll_max_retries,
            backoff=settings.poll_backoff,
            name="space-poller",
        )

    # ---- session ----

    @property
    def session(self) -> Optional[Session]:
        return self.context.session

    @property
    def user(self) -> User:
        user = self.context.user
        if user is None:
            raise NotLoggedIn()
        return user

    async def login(self, username: str) -> Session:
        session = await self.service.users.login(username)
        self.context.set(session)
        return session

    async def logout(self) -> None:
        await self.stop_sync()
        self.context.clear()
        self._set_view(ClientView())

    async def update_settings(self, **changes: object) -> User:
        user = await self.service.users.update_settings(self.user.id, **changes)
        self.context.update_user(user)
        return user

    # ---- view ----

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_view(self, view: ClientView) -> None:
        self.view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("View listener %r failed", listener)

    def _space_id(self) -> str:
        if self.view.space is None:
            raise LookupError("No current space")
        return self.view.space.id

    async def _fetch_space(self) -> SpaceSnapshot:
        return await self.service.snapshot(self.user.id)

    def _apply_space(self, snapshot: SpaceSnapshot) -> None:
        self._set_view(
            ClientView(
                space=snapshot.space,
                messages=snapshot.messages,
                songs=snapshot.songs,
            )
        )

    async def _fetch_messages(self) -> List[Message]:
        if self.view.space is None:
            return []
        return await self.service.messages.list(self.view.space.id)

    def _apply_messages(self, messages: List[Message]) -> None:
        self._set_view(replace(self.view, messages=messages))

    async def refresh(self) -> ClientView:
        """Run one space poll now instead of waiting for the next tick."""
        await self.space_poller.tick()
        return self.view

    # ---- spaces ----

    async def create_space(self, name: str = "") -> Space:
        space = await self.service.spaces.create_space(self.user.id, name)
        await self.refresh()
        return space

    async def join_space(self, code: str) -> Space:
        space = await self.service.spaces.join_space(self.user.id, code)
        await self.refresh()
        return space

    async def leave_space(self) -> None:
        await self.service.spaces.leave_space(self.user.id, self._space_id())
        await self.refresh()

    # ---- messages ----

    async def send_message(self, content: str, reply_to_id: Optional[str] = None) -> Message:
        space_id = self._space_id()
        reply_target = None
        if reply_to_id:
            reply_target = next(
                (m for m in self.view.messages if m.id == reply_to_id), None
            )
        optimistic = compose_message(
            space_id,
            self.user.id,
            content,
            reply_to=reply_target,
            snippet_length=self.service.settings.reply_snippet_length,
        )
        self._set_view(replace(self.view, messages=[*self.view.messages, optimistic]))
        try:
            sent = await self.service.send_message(
                space_id,
                self.user.id,
                content,
                reply_to_id=reply_to_id,
                message_id=optimistic.id,
            )
        except Exception:
            self._set_view(
                replace(
                    self.view,
                    messages=[m for m in self.view.messages if m.id != optimistic.id],
                )
            )
            raise
        return sent[0]

    async def share_song(self, url: str) -> Message:
        return await self.service.share_song(self._space_id(), self.user.id, url)

    async def react_to_song(self, song_id: str, reaction: Optional[str]) -> None:
        await self.service.songs.react(self._space_id(), song_id, self.user.id, reaction)

    async def mark_read(self) -> int:
        return await self.service.mark_read(self._space_id(), self.user.id)

    # ---- game ----

    async def make_move(self, cell: int) -> GameState:
        game = await self.service.make_move(self._space_id(), self.user.id, cell)
        await self.refresh()
        return game

    async def request_reset(self) -> Optional[GameState]:
        game = await self.service.request_reset(self._space_id(), self.user.id)
        await self.refresh()
        return game

    # ---- polling ----

    def start_sync(self) -> None:
        self.space_poller.start()
        self.message_poller.start()

    async def stop_sync(self) -> None:
        await self.message_poller.stop()
        await self.space_poller.stop()
