"""FastAPI surface over the DuoSpace commands and read snapshots."""

from __future__ import annotations

import logging
from typing import Annotated, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import Settings
from .errors import (
    CodeAllocationError,
    ConcurrencyConflict,
    DuoSpaceError,
    NotFoundError,
    StoreUnavailable,
)
from .models import REACTIONS, THEMES
from .service import DuoSpaceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_service(request: Request) -> DuoSpaceService:
    return request.app.state.service


ServiceDep = Annotated[DuoSpaceService, Depends(get_service)]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(CamelModel):
    username: str = Field(min_length=1, max_length=40)

    @field_validator("username")
    @classmethod
    def ensure_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Username must not be blank")
        return value


class SettingsRequest(CamelModel):
    read_receipts: Optional[bool] = Field(default=None, alias="readReceipts")
    last_seen: Optional[bool] = Field(default=None, alias="lastSeen")
    theme: Optional[str] = None

    @field_validator("theme")
    @classmethod
    def ensure_supported_theme(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in THEMES:
            raise ValueError(f"Unsupported theme {value}. Choose one of {', '.join(THEMES)}.")
        return value


class CreateSpaceRequest(CamelModel):
    user_id: str = Field(alias="userId")
    name: str = Field(default="", max_length=60)


class JoinSpaceRequest(CamelModel):
    user_id: str = Field(alias="userId")
    code: str = Field(min_length=1, max_length=12)


class MemberRequest(CamelModel):
    """Request payload naming the acting member."""

    user_id: str = Field(alias="userId")


class MoveRequest(CamelModel):
    """Request payload for a move on the space's board."""

    user_id: str = Field(alias="userId")
    cell: int = Field(ge=0, le=8)


class SendMessageRequest(CamelModel):
    sender_id: str = Field(alias="senderId")
    content: str = Field(min_length=1, max_length=4000)
    reply_to_id: Optional[str] = Field(default=None, alias="replyToId")


class ShareSongRequest(CamelModel):
    user_id: str = Field(alias="userId")
    url: str = Field(min_length=1, max_length=2000)


class ReactionRequest(CamelModel):
    user_id: str = Field(alias="userId")
    reaction: Optional[str] = None

    @field_validator("reaction")
    @classmethod
    def ensure_supported_reaction(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in REACTIONS:
            raise ValueError(f"Unsupported reaction {value}. Choose one of {', '.join(REACTIONS)}.")
        return value


def _status_for(exc: DuoSpaceError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConcurrencyConflict):
        return 409
    if isinstance(exc, StoreUnavailable):
        return 503
    if isinstance(exc, CodeAllocationError):
        return 500
    return 400


async def _handle_domain_error(request: Request, exc: DuoSpaceError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# ---- users ----


@router.post("/login")
async def login(request: LoginRequest, service: ServiceDep) -> Dict[str, object]:
    session = await service.users.login(request.username)
    return {"token": session.token, "user": session.user.to_dict()}


@router.get("/users/availability")
async def username_availability(username: str, service: ServiceDep) -> Dict[str, bool]:
    return {"available": await service.users.is_username_available(username)}


@router.patch("/users/{user_id}/settings")
async def update_settings(
    user_id: str, request: SettingsRequest, service: ServiceDep
) -> Dict[str, object]:
    changes = request.model_dump(exclude_none=True)
    user = await service.users.update_settings(user_id, **changes)
    return user.to_dict()


@router.get("/users/{user_id}/spaces")
async def list_spaces(user_id: str, service: ServiceDep) -> List[Dict[str, object]]:
    return [space.to_dict() for space in await service.spaces.list_spaces(user_id)]


# ---- spaces ----


@router.post("/spaces")
async def create_space(request: CreateSpaceRequest, service: ServiceDep) -> Dict[str, object]:
    space = await service.spaces.create_space(request.user_id, request.name)
    return space.to_dict()


@router.post("/spaces/join")
async def join_space(request: JoinSpaceRequest, service: ServiceDep) -> Dict[str, object]:
    space = await service.spaces.join_space(request.user_id, request.code)
    return space.to_dict()


@router.get("/spaces/{space_id}")
async def get_space(space_id: str, service: ServiceDep) -> Dict[str, object]:
    return (await service.spaces.get_space(space_id)).to_dict()


@router.post("/spaces/{space_id}/leave")
async def leave_space(
    space_id: str, request: MemberRequest, service: ServiceDep
) -> Dict[str, bool]:
    await service.spaces.leave_space(request.user_id, space_id)
    return {"ok": True}


# ---- game ----


@router.post("/spaces/{space_id}/game/move")
async def make_move(
    space_id: str, request: MoveRequest, service: ServiceDep
) -> Dict[str, object]:
    game = await service.make_move(space_id, request.user_id, request.cell)
    return game.to_dict()


@router.post("/spaces/{space_id}/game/reset")
async def request_reset(
    space_id: str, request: MemberRequest, service: ServiceDep
) -> Dict[str, object]:
    game = await service.request_reset(space_id, request.user_id)
    return {"game": game.to_dict() if game else None}


# ---- messages & songs ----


@router.get("/spaces/{space_id}/messages")
async def list_messages(space_id: str, service: ServiceDep) -> List[Dict[str, object]]:
    return [message.to_dict() for message in await service.messages.list(space_id)]


@router.post("/spaces/{space_id}/messages")
async def send_message(
    space_id: str, request: SendMessageRequest, service: ServiceDep
) -> List[Dict[str, object]]:
    sent = await service.send_message(
        space_id, request.sender_id, request.content, reply_to_id=request.reply_to_id
    )
    return [message.to_dict() for message in sent]


@router.post("/spaces/{space_id}/messages/read")
async def mark_read(
    space_id: str, request: MemberRequest, service: ServiceDep
) -> Dict[str, int]:
    return {"marked": await service.mark_read(space_id, request.user_id)}


@router.get("/spaces/{space_id}/songs")
async def list_songs(space_id: str, service: ServiceDep) -> List[Dict[str, object]]:
    return [song.to_dict() for song in await service.songs.list(space_id)]


@router.post("/spaces/{space_id}/songs")
async def share_song(
    space_id: str, request: ShareSongRequest, service: ServiceDep
) -> Dict[str, object]:
    message = await service.share_song(space_id, request.user_id, request.url)
    return message.to_dict()


@router.post("/spaces/{space_id}/songs/{song_id}/reactions")
async def react_to_song(
    space_id: str, song_id: str, request: ReactionRequest, service: ServiceDep
) -> Dict[str, object]:
    reactions = await service.songs.react(
        space_id, song_id, request.user_id, request.reaction
    )
    return {"songId": song_id, "reactions": reactions}


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


def create_app(
    settings: Optional[Settings] = None, service: Optional[DuoSpaceService] = None
) -> FastAPI:
    """Create the DuoSpace application around one shared store."""

    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(
        title="DuoSpace",
        description="Private two-person spaces with chat, shared songs and tic-tac-toe",
    )
    app.state.settings = settings
    app.state.service = service or DuoSpaceService.from_settings(settings)
    app.add_exception_handler(DuoSpaceError, _handle_domain_error)
    app.include_router(router)
    return app


app = create_app()
