"""Startup barrier between cache population and reconciliation."""

from __future__ import annotations

import enum
import threading
from typing import Any

import structlog

from cert_agent.integrations.kubernetes.informer import ResourceEventHandler

logger = structlog.get_logger()


class SyncState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    READY = "ready"


class CacheSyncGate:
    """One-shot barrier opened once every cache completed its initial sync.

    The state only moves forward: Uninitialized, Syncing, then Ready. Repeated
    or backward transitions are ignored.
    """

    _ORDER = (SyncState.UNINITIALIZED, SyncState.SYNCING, SyncState.READY)

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = SyncState.UNINITIALIZED
        self._ready = threading.Event()

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def start_syncing(self) -> None:
        self._advance(SyncState.SYNCING)

    def mark_ready(self) -> None:
        """Open the gate and release every waiting handler."""
        if self._advance(SyncState.READY):
            logger.debug("cache_sync_gate_ready")
            self._ready.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the gate is open or the timeout elapsed."""
        return self._ready.wait(timeout)

    def _advance(self, target: SyncState) -> bool:
        with self._lock:
            if self._ORDER.index(target) <= self._ORDER.index(self._state):
                return False
            self._state = target
            return True


class GatedEventHandler:
    """Holds every notification until the gate opens.

    Notifications are dropped when ``stop`` is set before the gate opens.
    """

    def __init__(
        self,
        gate: CacheSyncGate,
        handler: ResourceEventHandler,
        stop: threading.Event,
        poll_interval: float = 0.5,
    ) -> None:
        self._gate = gate
        self._handler = handler
        self._stop = stop
        self._poll_interval = poll_interval

    def _wait_ready(self) -> bool:
        while not self._gate.wait(self._poll_interval):
            if self._stop.is_set():
                return False
        return True

    def on_add(self, obj: Any) -> None:
        if self._wait_ready():
            self._handler.on_add(obj)

    def on_update(self, old_obj: Any, new_obj: Any) -> None:
        if self._wait_ready():
            self._handler.on_update(old_obj, new_obj)

    def on_delete(self, obj: Any) -> None:
        if self._wait_ready():
            self._handler.on_delete(obj)
