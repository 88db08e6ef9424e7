"""Tic-tac-toe rules and the per-space game engine."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .errors import (
    CellOccupied,
    GameNotReady,
    GameOver,
    InvalidCell,
    NotAMember,
    NotYourTurn,
)
from .models import GAME_DRAW, GAME_WINNER, GameState, Space, now_ms
from .spaces import SpaceRegistry

logger = logging.getLogger(__name__)

Mark = str  # "X" or "O"

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


# ---------- Board rules ----------


def next_mark(board: List[Optional[Mark]]) -> Mark:
    """Marks alternate by filled-cell parity, whoever moved first."""
    filled = sum(1 for c in board if c is not None)
    return "X" if filled % 2 == 0 else "O"


def winning_mark(board: List[Optional[Mark]]) -> Optional[Mark]:
    for a, b, c in WINNING_LINES:
        v = board[a]
        if v is not None and v == board[b] == board[c]:
            return v
    return None


def is_full(board: List[Optional[Mark]]) -> bool:
    return all(c is not None for c in board)


def apply_move(space: Space, user_id: str, cell: int) -> GameState:
    """Play ``cell`` for ``user_id`` on the space's game, starting one if needed.

    Mutates and returns ``space.active_game``.
    """

    if user_id not in space.members:
        raise NotAMember()
    if not space.is_playable():
        raise GameNotReady()
    if not 0 <= cell < 9:
        raise InvalidCell(cell)

    game = space.active_game
    if game is None:
        # First move of a new game: whoever moves is X.
        game = GameState(current_player=user_id)
    if game.is_finished():
        raise GameOver()
    if game.current_player != user_id:
        raise NotYourTurn()
    if game.board[cell] is not None:
        raise CellOccupied(cell)

    game.board[cell] = next_mark(game.board)
    game.current_player = space.other_member(user_id)
    game.last_updated = now_ms()

    if winning_mark(game.board) is not None:
        game.status = GAME_WINNER
        game.winner = user_id
    elif is_full(game.board):
        game.status = GAME_DRAW

    space.active_game = game
    return game


def apply_reset_request(space: Space, user_id: str) -> Optional[GameState]:
    """Record ``user_id``'s consent to reset; clear the board once every member agrees."""

    if user_id not in space.members:
        raise NotAMember()
    game = space.active_game
    if game is None:
        return None
    if user_id not in game.reset_requests:
        game.reset_requests.append(user_id)
    if len(game.reset_requests) >= len(space.members):
        game = GameState(current_player=game.current_player)
        space.active_game = game
    return game


# ---------- Engine ----------


class GameEngine:
    """Moves and resets as compare-and-swap updates of the owning space."""

    def __init__(self, registry: SpaceRegistry) -> None:
        self.registry = registry

    async def get_game(self, space_id: str) -> Optional[GameState]:
        space = await self.registry.get_space(space_id)
        return space.active_game

    async def make_move(self, space_id: str, user_id: str, cell: int) -> GameState:
        game = await self.registry.update_space(
            space_id, lambda space: apply_move(space, user_id, cell)
        )
        if game.is_finished():
            logger.info(
                "Game %s in space %s finished: %s", game.id, space_id, game.status
            )
        return game

    async def request_reset(self, space_id: str, user_id: str) -> Optional[GameState]:
        game = await self.registry.update_space(
            space_id, lambda space: apply_reset_request(space, user_id)
        )
        if game is not None and not game.reset_requests and game.filled() == 0:
            logger.info("Game in space %s reset by agreement", space_id)
        return game
