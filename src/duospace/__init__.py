"""DuoSpace package exposing the shared-state engine, the client, and the web application."""

from .client import DuoClient
from .game import GameEngine
from .service import DuoSpaceService
from .spaces import SpaceRegistry
from .sync import SyncPoller

__all__ = ["DuoClient", "DuoSpaceService", "GameEngine", "SpaceRegistry", "SyncPoller"]
