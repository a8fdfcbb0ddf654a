"""Deduplicating, rate-limited work queue keyed by VirtualCluster.

Semantics:

- A key is held at most once in the queue; repeated adds coalesce.
- A key being processed is never handed to a second worker. Adds that
  arrive meanwhile mark it dirty and it is re-queued on ``done``.
- ``add_rate_limited`` delays a key by ``base * 2**failures`` seconds,
  capped at ``max_delay``; ``forget`` resets the failure count.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ShutDown(Exception):
    """Raised by ``get`` once the queue is shut down and drained."""


class WorkQueue:
    def __init__(self, base_delay=1.0, max_delay=300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue = asyncio.Queue()
        self._queued = set()
        self._processing = set()
        self._dirty = set()
        self._failures = {}
        self._timers = {}
        self._shutting_down = False

    def __len__(self):
        return len(self._queued)

    def add(self, key):
        """Enqueue ``key`` unless it is already waiting."""
        if self._shutting_down:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key, delay):
        """Enqueue ``key`` after ``delay`` seconds; an earlier pending timer wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key):
        self._timers.pop(key, None)
        self.add(key)

    def backoff_for(self, key):
        failures = self._failures.get(key, 0)
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def add_rate_limited(self, key):
        delay = self.backoff_for(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        logger.debug(f"Requeue {key} in {delay:.1f}s (failure {self._failures[key]})")
        self.add_after(key, delay)

    def forget(self, key):
        self._failures.pop(key, None)

    def num_requeues(self, key):
        return self._failures.get(key, 0)

    async def get(self):
        """Wait for the next key and mark it as processing."""
        while True:
            if self._shutting_down and self._queue.empty():
                raise ShutDown()
            key = await self._queue.get()
            if key is None:
                raise ShutDown()
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key):
        """Release ``key``; re-queue it if it was added while processing."""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self, workers=1):
        """Stop accepting keys and wake ``workers`` blocked getters."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)
