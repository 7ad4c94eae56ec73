"""Deduplicating, rate-limited work queue.

An item is queued at most once at any time and is never handed to two
workers at once: an item added while being processed is queued again only
once the worker calls :meth:`WorkQueue.done`.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Hashable
from typing import Any


class WorkQueue:
    """FIFO queue with per-item deduplication."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False

    def add(self, item: Hashable) -> None:
        """Queue an item unless it is already waiting."""
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> tuple[Hashable | None, bool]:
        """Take the next item, blocking while the queue is empty.

        Returns:
            ``(item, shutdown)``. Once the queue is shut down, queued items are
            no longer handed out. ``item`` is None when the timeout elapsed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._queue and not self._shutting_down:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None, False
                self._cond.wait(remaining)

            if self._shutting_down:
                return None, True

            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark an item as processed, requeueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shut_down(self) -> None:
        """Stop accepting items and release blocked workers."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down


class ExponentialBackoffRateLimiter:
    """Per-item exponential backoff: ``base * 2**failures``, capped."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        """Return the delay before the next attempt and record a failure."""
        with self._lock:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        return min(self._base_delay * 2**failures, self._max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue(WorkQueue):
    """Work queue with delayed and rate-limited additions.

    Delayed items are held by a background thread until they are due. An item
    waiting with several delays is released at the earliest one.
    """

    def __init__(self, rate_limiter: ExponentialBackoffRateLimiter | None = None) -> None:
        super().__init__()
        self._rate_limiter = rate_limiter or ExponentialBackoffRateLimiter()
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._counter = itertools.count()
        self._waiting_cond = threading.Condition()
        self._waiter: threading.Thread | None = None

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue an item once ``delay`` seconds elapsed."""
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = time.monotonic() + delay
        with self._waiting_cond:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._counter), item))
            self._ensure_waiter()
            self._waiting_cond.notify()

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue an item after its backoff delay."""
        self.add_after(item, self._rate_limiter.when(item))

    def num_requeues(self, item: Hashable) -> int:
        """Number of rate-limited additions since the last :meth:`forget`."""
        return self._rate_limiter.num_requeues(item)

    def forget(self, item: Hashable) -> None:
        """Reset the backoff of an item."""
        self._rate_limiter.forget(item)

    def shut_down(self) -> None:
        super().shut_down()
        with self._waiting_cond:
            self._waiting_cond.notify_all()

    def _ensure_waiter(self) -> None:
        # Caller holds _waiting_cond.
        if self._waiter is None:
            self._waiter = threading.Thread(
                target=self._release_due_items, name="workqueue-delay", daemon=True
            )
            self._waiter.start()

    def _release_due_items(self) -> None:
        while not self.shutting_down:
            due: list[Any] = []
            with self._waiting_cond:
                now = time.monotonic()
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    if self._ready_at.get(item) == ready_at:
                        del self._ready_at[item]
                        due.append(item)
                if not due:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._waiting_cond.wait(timeout)
                    continue
            for item in due:
                self.add(item)
