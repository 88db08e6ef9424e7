"""Entry point for running DuoSpace via ``python -m duospace``."""

from __future__ import annotations

import uvicorn

from .config import Settings


def main() -> None:
    """Start the FastAPI-powered DuoSpace server."""

    settings = Settings()
    uvicorn.run(
        "duospace.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
