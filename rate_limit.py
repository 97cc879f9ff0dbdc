"""Minimum-spacing rate limiter shared by every annotation call in a process."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable

DEFAULT_MIN_INTERVAL_SECONDS = 1.0

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum delay between consecutive calls.

    The last-call timestamp is guarded by a lock that is held while sleeping,
    so callers on different threads are serialized and spaced as well.
    """

    def __init__(
        self,
        min_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval is None:
            min_interval = float(os.getenv("ANNOTATION_MIN_INTERVAL_SECONDS", DEFAULT_MIN_INTERVAL_SECONDS))
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next call is allowed; return the seconds slept."""
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    LOGGER.debug("Rate limiter sleeping %.3fs", remaining)
                    self._sleep(remaining)
                    waited = remaining
            self._last_call = self._clock()
            return waited
