"""Versioned key-value persistence shared by every client.

Keys are whole collections (``users``, ``spaces``, ``messages``...), so every
write serializes an entire collection. Without a version check two overlapping
read-modify-write cycles lose one of the updates; :func:`mutate` closes that
window with compare-and-swap and a bounded retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, TypeVar

from .errors import ConcurrencyConflict, StoreUnavailable, VersionConflict

logger = logging.getLogger(__name__)

USERS_KEY = "users"
SPACES_KEY = "spaces"
MESSAGES_KEY = "messages"
SONG_REACTIONS_KEY = "song_reactions"

T = TypeVar("T")


@dataclass(frozen=True)
class Versioned:
    value: Any
    version: int


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Versioned]:
        ...

    async def put(
        self, key: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        ...


def _copy(value: Any) -> Any:
    # Round-trip through JSON: rejects non-serializable blobs and breaks aliasing.
    return json.loads(json.dumps(value))


class MemoryStore:
    """Process-local store. Safe to share between threads and event loops."""

    def __init__(self) -> None:
        self._data: Dict[str, Tuple[int, str]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[Versioned]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        version, raw = entry
        return Versioned(value=json.loads(raw), version=version)

    async def put(
        self, key: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        raw = json.dumps(value)
        with self._lock:
            current = self._data.get(key, (0, ""))[0]
            if expected_version is not None and expected_version != current:
                raise VersionConflict(key, expected_version, current)
            self._data[key] = (current + 1, raw)
            return current + 1


class JsonFileStore:
    """One JSON document per key inside ``directory``.

    Writes go to a temporary file that replaces the target atomically. The
    version check is serialized by an in-process lock only. File I/O runs in
    a worker thread so the event loop keeps polling while the disk works.
    """

    def __init__(self, directory: str) -> None:
        self.directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def _read(self, key: str) -> Optional[Versioned]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as fh:
                doc = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StoreUnavailable(f"Cannot read {key!r}: {exc}") from exc
        return Versioned(value=doc["value"], version=int(doc["version"]))

    def _locked_read(self, key: str) -> Optional[Versioned]:
        with self._lock:
            return self._read(key)

    def _write(self, key: str, value: Any, expected_version: Optional[int]) -> int:
        with self._lock:
            existing = self._read(key)
            current = existing.version if existing else 0
            if expected_version is not None and expected_version != current:
                raise VersionConflict(key, expected_version, current)
            # Serialize first: an unserializable value fails before any file exists.
            raw = json.dumps({"version": current + 1, "value": value})
            tmp = None
            try:
                fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(raw)
                os.replace(tmp, self._path(key))
                tmp = None
            except OSError as exc:
                raise StoreUnavailable(f"Cannot write {key!r}: {exc}") from exc
            finally:
                if tmp is not None and os.path.exists(tmp):
                    os.unlink(tmp)
            return current + 1

    async def get(self, key: str) -> Optional[Versioned]:
        return await asyncio.to_thread(self._locked_read, key)

    async def put(
        self, key: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        return await asyncio.to_thread(self._write, key, value, expected_version)


async def read(store: KeyValueStore, key: str, default: Callable[[], T]) -> T:
    current = await store.get(key)
    return current.value if current is not None else default()


async def mutate(
    store: KeyValueStore,
    key: str,
    fn: Callable[[Any], T],
    default: Callable[[], Any],
    attempts: int = 3,
) -> T:
    """Read ``key``, apply ``fn`` to the value in place, and write it back.

    The write only lands if nobody else wrote ``key`` since it was read.
    On conflict ``fn`` is re-applied to the fresh value. An exception from
    ``fn`` aborts without writing anything, and so does an ``fn`` that
    leaves the value as it found it.
    """

    for attempt in range(1, attempts + 1):
        current = await store.get(key)
        if current is None:
            value, version = default(), 0
            original = default()
        else:
            value, version = _copy(current.value), current.version
            original = current.value
        result = fn(value)
        if value == original:
            return result
        try:
            await store.put(key, value, expected_version=version)
        except VersionConflict as exc:
            logger.info(
                "store_write_conflict key=%s attempt=%d/%d found_version=%d",
                key,
                attempt,
                attempts,
                exc.actual,
            )
            continue
        return result
    raise ConcurrencyConflict(key, attempts)


def create_store(path: str = "") -> KeyValueStore:
    if path:
        logger.info("Using JSON file store at %s", path)
        return JsonFileStore(path)
    return MemoryStore()
