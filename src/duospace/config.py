"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """DuoSpace configuration.

    Every value can be overridden with a ``DUOSPACE_``-prefixed environment
    variable, e.g. ``DUOSPACE_MESSAGE_POLL_INTERVAL=1.5``.
    """

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Persistence: empty means an in-memory store
    store_path: str = ""
    write_attempts: int = Field(default=3, ge=1)

    # Spaces
    invite_code_length: int = Field(default=6, ge=4, le=12)
    max_code_attempts: int = Field(default=10, ge=1)

    # Polling
    message_poll_interval: float = Field(default=2.0, gt=0)
    space_poll_interval: float = Field(default=5.0, gt=0)
    poll_jitter: float = Field(default=0.5, ge=0)
    poll_max_retries: int = Field(default=3, ge=0)
    poll_backoff: float = Field(default=0.5, ge=0)

    # Messages
    reply_snippet_length: int = Field(default=120, ge=1)

    # Companion / metadata enrichment
    anthropic_api_key: str = ""
    companion_model: str = "claude-haiku-4-5-20251001"
    companion_timeout: float = Field(default=10.0, gt=0)

    model_config = {"env_prefix": "DUOSPACE_", "env_file": ".env", "extra": "ignore"}
