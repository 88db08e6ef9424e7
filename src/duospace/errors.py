"""Exception taxonomy shared by the store, the services and the HTTP layer."""

from __future__ import annotations


class DuoSpaceError(Exception):
    """Root of every error raised by DuoSpace."""


class PreconditionError(DuoSpaceError, ValueError):
    """An expected, user-facing rejection. The action left no trace in the store."""


class AlreadyInSpace(PreconditionError):
    def __init__(self, action: str = "joining another") -> None:
        super().__init__(
            f"You are already in a space. You must leave it before {action}."
        )


class InvalidInviteCode(PreconditionError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Invalid invite code {code!r}")
        self.code = code


class SpaceFull(PreconditionError):
    def __init__(self) -> None:
        super().__init__("This space already has two members")


class NotAMember(PreconditionError):
    def __init__(self) -> None:
        super().__init__("You are not a member of this space")


class GameNotReady(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Waiting for a second member to join before playing")


class NotYourTurn(PreconditionError):
    def __init__(self) -> None:
        super().__init__("It is not your turn")


class CellOccupied(PreconditionError):
    def __init__(self, cell: int) -> None:
        super().__init__(f"Cell {cell} is already occupied")
        self.cell = cell


class InvalidCell(PreconditionError):
    def __init__(self, cell: int) -> None:
        super().__init__(f"Cell {cell} is outside the board")
        self.cell = cell


class GameOver(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Game already finished, request a reset to play again")


class InvalidUsername(PreconditionError):
    pass


class InvalidSettings(PreconditionError):
    pass


class InvalidReaction(PreconditionError):
    pass


class NotLoggedIn(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Log in first")


class NotFoundError(PreconditionError):
    """A referenced record does not exist."""


class UserNotFound(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__("User not found")
        self.user_id = user_id


class SpaceNotFound(NotFoundError):
    def __init__(self, space_id: str) -> None:
        super().__init__("Space not found")
        self.space_id = space_id


class MessageNotFound(NotFoundError):
    def __init__(self, message_id: str) -> None:
        super().__init__("Message not found")
        self.message_id = message_id


class SongNotFound(NotFoundError):
    def __init__(self, song_id: str) -> None:
        super().__init__("Song not found")
        self.song_id = song_id


class CodeAllocationError(DuoSpaceError):
    """No unused invite code could be generated."""


class VersionConflict(DuoSpaceError):
    """A compare-and-swap write saw a different version than expected."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Version conflict on {key!r}: expected {expected}, found {actual}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class ConcurrencyConflict(DuoSpaceError):
    """Repeated version conflicts; the action was valid but lost every race."""

    def __init__(self, key: str, attempts: int) -> None:
        super().__init__("State changed, please retry")
        self.key = key
        self.attempts = attempts


class StoreUnavailable(DuoSpaceError):
    """Transient failure reading or writing the backing store."""
