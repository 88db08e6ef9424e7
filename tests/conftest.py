"""Shared test fixtures."""

import pytest

from duospace.config import Settings
from duospace.service import DuoSpaceService
from duospace.store import MemoryStore


@pytest.fixture
def settings() -> Settings:
    """Test settings with fast, jitter-free polling."""
    return Settings(
        message_poll_interval=0.01,
        space_poll_interval=0.01,
        poll_jitter=0.0,
        poll_backoff=0.0,
        anthropic_api_key="",
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def service(store: MemoryStore, settings: Settings) -> DuoSpaceService:
    return DuoSpaceService(store, settings=settings)
