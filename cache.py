"""In-process TTL cache for read-path aggregates."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class TTLCache:
    """Keyed values that expire `ttl_seconds` after they were computed."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get_or_compute(self, key: str, compute: Callable[[], T], ttl_seconds: float | None = None) -> T:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and now - entry[0] < ttl:
            LOGGER.debug("Cache hit for %s", key)
            return entry[1]

        LOGGER.debug("Cache miss for %s", key)
        value = compute()
        with self._lock:
            self._entries[key] = (now, value)
        return value

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
        LOGGER.info("Cache cleared%s", f" for {key}" if key else "")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
