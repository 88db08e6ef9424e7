"""Polling loop that keeps a client's view in step with the shared store.

There is no push channel. Each poller re-fetches its slice of state on a
fixed cadence and replaces the previous snapshot wholesale; nothing from an
older snapshot is merged into a newer one. Staleness is bounded by the poll
interval plus store latency.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncPoller(Generic[T]):
    """Fetch a snapshot every ``interval`` (+ up to ``jitter``) seconds.

    A tick is skipped while the previous fetch is still running, so slow
    reads never pile up. Reads failing with :class:`StoreUnavailable` are
    retried ``max_retries`` times with exponential ``backoff``; after that
    the previous snapshot stays in place until the next tick.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        on_snapshot: Optional[Callable[[T], None]] = None,
        *,
        interval: float = 2.0,
        jitter: float = 0.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        name: str = "poller",
        rng: Optional[random.Random] = None,
    ) -> None:
        self.fetch = fetch
        self.on_snapshot = on_snapshot
        self.interval = interval
        self.jitter = jitter
        self.max_retries = max_retries
        self.backoff = backoff
        self.name = name
        self._rng = rng or random.Random()

        self.snapshot: Optional[T] = None
        self.ticks = 0
        self.skipped = 0
        self.failures = 0
        self._generation = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def next_delay(self) -> float:
        return self.interval + (self._rng.uniform(0, self.jitter) if self.jitter else 0.0)

    async def _fetch_with_retry(self) -> T:
        attempt = 0
        while True:
            try:
                return await self.fetch()
            except StoreUnavailable:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff * (2**attempt)
                attempt += 1
                logger.debug(
                    "%s read failed, retry %d/%d in %.2fs",
                    self.name,
                    attempt,
                    self.max_retries,
                    delay,
                )
                await asyncio.sleep(delay)

    async def tick(self) -> bool:
        """Fetch once and publish the result. Returns whether a snapshot landed."""
        generation = self._generation
        self.ticks += 1
        try:
            snapshot = await self._fetch_with_retry()
        except StoreUnavailable as exc:
            self.failures += 1
            logger.warning("%s giving up on this tick: %s", self.name, exc)
            return False
        except Exception:
            # Anything else is not worth retrying; keep polling on the old snapshot.
            self.failures += 1
            logger.exception("%s fetch failed", self.name)
            return False
        if generation != self._generation:
            # Stopped while the fetch was in flight; the result is stale.
            logger.debug("%s discarding result fetched before stop", self.name)
            return False
        self.replace(snapshot)
        return True

    def replace(self, snapshot: T) -> None:
        self.snapshot = snapshot
        if self.on_snapshot is not None:
            self.on_snapshot(snapshot)

    async def _run(self) -> None:
        while True:
            if self.busy:
                self.skipped += 1
                logger.debug("%s skipping tick, previous fetch still running", self.name)
            else:
                self._inflight = asyncio.create_task(self.tick())
            await asyncio.sleep(self.next_delay())

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run())
        logger.debug("%s started (interval %.2fs)", self.name, self.interval)

    async def stop(self) -> None:
        """Stop polling. An in-flight fetch may finish but its result is dropped."""
        self._generation += 1
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("%s stopped", self.name)
