"""Admission quota for secured routes.

A :class:`Quota` bounds the number of units (domains) that may be secured at
once across all resources. Capacity is reserved with a two-phase
:class:`QuotaTransaction`: the reservation is held as *pending* until it is
committed, which turns it into the resource's *acquired* amount, or rolled
back, which discards it.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

logger = structlog.get_logger()


class QuotaError(Exception):
    """Base exception for quota admission failures."""


class QuotaDisabledError(QuotaError):
    """Raised when the quota ceiling is not positive."""

    def __init__(self) -> None:
        super().__init__("feature disabled")


class PendingTransactionError(QuotaError):
    """Raised when a resource already holds an unfinished transaction."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"found pending quota transaction for resource {resource_id!r}")
        self.resource_id = resource_id


class QuotaExceededError(QuotaError):
    """Raised when a reservation would overshoot the ceiling."""

    def __init__(self, want: int, taken: int, left: int) -> None:
        super().__init__(f"quota exceeded: want {want}; taken {taken}; {left} left")
        self.want = want
        self.taken = taken
        self.left = left


class ReadWriteLock:
    """Lock allowing many concurrent readers or a single writer.

    Waiting writers take precedence over new readers.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Quota:
    """Thread-safe admission controller with a global ceiling.

    Usage is the sum of every acquired and every pending amount. A resource
    re-reserving only needs room for the difference to what it already
    acquired; committing makes the pending amount the acquired one.

    Args:
        max_units: Ceiling. Zero or less disables admission entirely.
    """

    def __init__(self, max_units: int) -> None:
        self._max = max_units
        self._acquired: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._lock = ReadWriteLock()

    @property
    def max(self) -> int:
        return self._max

    def tx(self, resource_id: str, amount: int) -> QuotaTransaction:
        """Reserve ``amount`` units for ``resource_id``.

        Raises:
            QuotaDisabledError: The ceiling is zero or less, whatever the amount.
            PendingTransactionError: The resource already has a pending transaction.
            QuotaExceededError: The reservation does not fit under the ceiling.
        """
        with self._lock.read():
            if self._max <= 0:
                raise QuotaDisabledError()

            if resource_id in self._pending:
                raise PendingTransactionError(resource_id)

            if amount > 0:
                if amount > self._max:
                    taken = self._taken()
                    raise QuotaExceededError(
                        amount, taken, self._max - taken + self._acquired.get(resource_id, 0)
                    )
                self._check_allowed(amount - self._acquired.get(resource_id, 0))

        with self._lock.write():
            # State may have changed while no lock was held.
            if resource_id in self._pending:
                raise PendingTransactionError(resource_id)
            if amount > 0:
                self._check_allowed(amount - self._acquired.get(resource_id, 0))
            self._pending[resource_id] = amount

        return QuotaTransaction(self, resource_id)

    def used(self) -> int:
        """Sum of all acquired amounts."""
        with self._lock.read():
            return sum(self._acquired.values())

    def acquired(self, resource_id: str) -> int:
        """Amount acquired by a resource."""
        with self._lock.read():
            return self._acquired.get(resource_id, 0)

    def has_pending(self, resource_id: str) -> bool:
        """Whether a resource holds a pending transaction."""
        with self._lock.read():
            return resource_id in self._pending

    def _taken(self) -> int:
        # Caller holds the lock.
        return sum(self._acquired.values()) + sum(self._pending.values())

    def _check_allowed(self, diff: int) -> None:
        taken = self._taken()
        if taken + diff > self._max:
            raise QuotaExceededError(diff, taken, self._max - taken)

    def _commit(self, resource_id: str) -> None:
        with self._lock.write():
            amount = self._pending.pop(resource_id, 0)
            if amount:
                self._acquired[resource_id] = amount
            else:
                self._acquired.pop(resource_id, None)

    def _rollback(self, resource_id: str) -> None:
        with self._lock.write():
            self._pending.pop(resource_id, None)


class QuotaTransaction:
    """Handle over one pending reservation.

    Exactly one of :meth:`commit` or :meth:`rollback` takes effect; any later
    call is a no-op.
    """

    def __init__(self, quota: Quota, resource_id: str) -> None:
        self._quota = quota
        self.resource_id = resource_id
        self._done = threading.Lock()

    @property
    def done(self) -> bool:
        return self._done.locked()

    def commit(self) -> None:
        """Turn the pending amount into the resource's acquired amount."""
        if not self._done.acquire(blocking=False):
            return
        self._quota._commit(self.resource_id)

    def rollback(self) -> None:
        """Discard the pending amount."""
        if not self._done.acquire(blocking=False):
            return
        self._quota._rollback(self.resource_id)
