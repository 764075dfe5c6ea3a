# ridernotify/infra/read_cache.py
from __future__ import annotations

import time
from typing import Awaitable, Callable, Optional

from ridernotify.core.domain import Assignment
from ridernotify.infra.logging_config import get_logger
from ridernotify.infra.metrics import inc_counter

logger = get_logger(__name__)


class AssignmentReadCache:
    """
    TTL cache over the full assignment listing.

    Selection presets and stats read the whole collection; repeated dispatch
    calls inside the TTL reuse one snapshot.  Every successful write through
    the Status Recorder calls ``invalidate()`` so the next read is fresh.
    """

    def __init__(
            self,
            loader: Callable[[], Awaitable[list[Assignment]]],
            ttl_seconds: float = 30.0,
            clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[list[Assignment]] = None
        self._loaded_at: float = 0.0

    async def list(self) -> list[Assignment]:
        now = self._clock()
        if self._snapshot is not None and now - self._loaded_at < self._ttl:
            inc_counter("assignment_cache_hits")
            return list(self._snapshot)

        inc_counter("assignment_cache_misses")
        self._snapshot = await self._loader()
        self._loaded_at = now
        return list(self._snapshot)

    def invalidate(self) -> None:
        if self._snapshot is not None:
            logger.debug("Assignment read cache invalidated")
        self._snapshot = None
