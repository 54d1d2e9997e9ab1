"""
Work Queue - Single-flight delivery of reconcile keys.

Semantics follow the Kubernetes client-go work queue:
- a key is handed to at most one worker at a time;
- adding a key that is already queued coalesces into one delivery;
- adding a key that is being processed re-queues it once the worker
  calls done();
- failed keys are retried with per-key exponential backoff and jitter.
"""

import asyncio
import logging
import random
from collections import deque
from typing import Deque, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Per-key exponential backoff.

    The n-th consecutive failure of a key waits
    ``min(base_delay * 2**n, max_delay)`` seconds, scaled by a random
    factor in ``[1 - jitter_factor, 1 + jitter_factor]``.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
        jitter_factor: float = 0.1,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_factor = jitter_factor
        self._failures: Dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        """Record a failure of ``key`` and return how long to wait before retrying."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** min(failures, 10)), self.max_delay)
        jitter = random.uniform(-self.jitter_factor, self.jitter_factor)
        return max(0.0, delay * (1 + jitter))

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        return self._failures.get(key, 0)


class WorkQueue:
    """Async work queue of reconcile keys."""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None):
        self.rate_limiter = rate_limiter or RateLimiter()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._has_items = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        """Queue a key unless it is already waiting to be processed."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._has_items.set()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, key: Hashable) -> None:
        """Queue a key after its backoff delay."""
        delay = self.rate_limiter.when(key)
        logger.debug(f"Retrying {key} in {delay:.2f}s")
        self.add_after(key, delay)

    def forget(self, key: Hashable) -> None:
        """Reset the backoff of a key after a successful pass."""
        self.rate_limiter.forget(key)

    async def get(self) -> Optional[Hashable]:
        """
        Wait for the next key and mark it as processing.

        Returns:
            The key, or None once the queue is shut down.
        """
        while not self._queue:
            if self._shutting_down:
                return None
            self._has_items.clear()
            await self._has_items.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: Hashable) -> None:
        """Mark a key as processed; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._has_items.set()

    def shutdown(self) -> None:
        """Stop accepting keys, drop pending timers and wake all waiters."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._queue.clear()
        self._dirty.clear()
        self._has_items.set()
