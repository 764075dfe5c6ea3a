# ridernotify/infra/backoff.py
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Retry schedule for a single provider send.

    delay(n) = base_delay * n (+ up to ``jitter`` seconds), where n is the
    number of the attempt that just failed.  With max_retries=3 a call makes
    at most 4 attempts and waits 1x, 2x, 3x base_delay in between.
    """
    max_retries: int = 3
    base_delay: float = 2.0
    jitter: float = 0.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        delay = self.base_delay * attempt
        if self.jitter > 0:
            delay += self.jitter * rand()
        return delay
