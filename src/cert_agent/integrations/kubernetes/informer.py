"""List-then-watch resource caches.

An :class:`Informer` keeps a thread-safe, point-in-time view of one resource
kind and notifies registered handlers of additions, updates and deletions.
Each informer runs two threads: a watcher that keeps the store current and a
dispatcher that delivers events to handlers strictly in the order they were
observed. Handlers of different informers therefore run concurrently, while
handlers of the same informer never overlap.
"""

from __future__ import annotations

import queue
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

import structlog

from cert_agent.integrations.kubernetes.models.base import K8sResource

logger = structlog.get_logger()

T = TypeVar("T", bound=K8sResource)

# Upper bound for a single watch request, so that stop requests are honored.
MAX_WATCH_SECONDS = 60
MAX_BACKOFF_SECONDS = 30


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone delivered when an object vanished while the watch was down.

    ``obj`` is the last state known to the cache.
    """

    key: str
    obj: Any


class ResourceEventHandler(Protocol):
    """Receiver of informer notifications."""

    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old_obj: Any, new_obj: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


class ResourceEventHandlerFuncs:
    """Adapts plain callables to :class:`ResourceEventHandler`.

    Missing callables turn the matching notification into a no-op.
    """

    def __init__(
        self,
        add_func: Callable[[Any], None] | None = None,
        update_func: Callable[[Any, Any], None] | None = None,
        delete_func: Callable[[Any], None] | None = None,
    ) -> None:
        self._add_func = add_func
        self._update_func = update_func
        self._delete_func = delete_func

    def on_add(self, obj: Any) -> None:
        if self._add_func is not None:
            self._add_func(obj)

    def on_update(self, old_obj: Any, new_obj: Any) -> None:
        if self._update_func is not None:
            self._update_func(old_obj, new_obj)

    def on_delete(self, obj: Any) -> None:
        if self._delete_func is not None:
            self._delete_func(obj)


class FilteringEventHandler:
    """Forwards only the notifications whose object passes a predicate.

    An update where only the new object matches is delivered as an add, and an
    update where only the old object matches is delivered as a delete.
    """

    def __init__(self, filter_func: Callable[[Any], bool], handler: ResourceEventHandler) -> None:
        self._filter = filter_func
        self._handler = handler

    def on_add(self, obj: Any) -> None:
        if self._filter(obj):
            self._handler.on_add(obj)

    def on_update(self, old_obj: Any, new_obj: Any) -> None:
        newer = self._filter(new_obj)
        older = self._filter(old_obj)
        if newer and older:
            self._handler.on_update(old_obj, new_obj)
        elif newer:
            self._handler.on_add(new_obj)
        elif older:
            self._handler.on_delete(old_obj)

    def on_delete(self, obj: Any) -> None:
        target = obj.obj if isinstance(obj, DeletedFinalStateUnknown) else obj
        if self._filter(target):
            self._handler.on_delete(obj)


def _list_items(result: Any) -> tuple[list[Any], str | None]:
    """Extract items and the list resource version from a typed or raw list."""
    if isinstance(result, dict):
        metadata = result.get("metadata") or {}
        return list(result.get("items") or []), metadata.get("resourceVersion")
    metadata = getattr(result, "metadata", None)
    return list(getattr(result, "items", None) or []), getattr(metadata, "resource_version", None)


class Informer(Generic[T]):
    """Cache and change notifier for one resource kind.

    Args:
        name: Kind name used in logs and sync reports.
        normalize: Converts raw API objects into the canonical model.
        list_func: Cluster-wide list function of the kubernetes client.
        *list_args: Positional arguments of ``list_func``.
        resync_seconds: Period at which every cached object is redelivered as
            an update with an unchanged resource version.
        **list_kwargs: Keyword arguments of ``list_func`` (e.g. label_selector).
    """

    def __init__(
        self,
        name: str,
        normalize: Callable[[Any], T],
        list_func: Callable[..., Any],
        *list_args: Any,
        resync_seconds: float = 300,
        **list_kwargs: Any,
    ) -> None:
        self.name = name
        self._normalize = normalize
        self._list_func = list_func
        self._list_args = list_args
        self._list_kwargs = list_kwargs
        self._resync_seconds = resync_seconds

        self._lock = threading.RLock()
        self._store: dict[str, T] = {}
        self._handlers: list[ResourceEventHandler] = []
        self._events: queue.Queue[tuple[str, Any, Any]] = queue.Queue()
        self._synced = threading.Event()
        self._threads: list[threading.Thread] = []
        self._active_watcher: Any = None
        self._log = logger.bind(entity="informer", kind=name)

    # =========================================================================
    # Handlers and reads
    # =========================================================================

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        """Register a handler. Must be called before :meth:`start`."""
        self._handlers.append(handler)

    def get(self, namespace: str, name: str) -> T | None:
        """Return the cached object, or None when it does not exist."""
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            return self._store.get(key)

    def list(
        self,
        namespace: str | None = None,
        predicate: Callable[[T], bool] | None = None,
    ) -> list[T]:
        """Return cached objects, optionally limited to a namespace."""
        with self._lock:
            items = list(self._store.values())
        if namespace is not None:
            items = [i for i in items if i.namespace == namespace]
        if predicate is not None:
            items = [i for i in items if predicate(i)]
        return items

    @property
    def has_synced(self) -> bool:
        """Whether the initial list has populated the store."""
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        """Block until the initial list completed or the timeout elapsed."""
        return self._synced.wait(timeout)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, stop: threading.Event) -> None:
        """Start the watcher and dispatcher threads."""
        if self._threads:
            return
        self._threads = [
            threading.Thread(
                target=self._run_watcher, args=(stop,), name=f"{self.name}-watch", daemon=True
            ),
            threading.Thread(
                target=self._run_dispatcher,
                args=(stop,),
                name=f"{self.name}-dispatch",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        self._log.debug("informer_started")

    def stop(self) -> None:
        """Interrupt the open watch stream, if any."""
        watcher = self._active_watcher
        if watcher is not None:
            watcher.stop()

    def _run_watcher(self, stop: threading.Event) -> None:
        from kubernetes.client import ApiException

        resource_version: str | None = None
        backoff = 1.0
        next_resync = time.monotonic() + self._resync_seconds

        while not stop.is_set():
            try:
                if resource_version is None:
                    resource_version = self.relist()

                now = time.monotonic()
                if now >= next_resync:
                    self.resync()
                    next_resync = now + self._resync_seconds

                timeout = max(1, min(MAX_WATCH_SECONDS, int(next_resync - now)))
                resource_version = self._watch(resource_version, timeout, stop)
                backoff = 1.0
            except ApiException as e:
                if e.status == 410:
                    self._log.debug("watch_expired_relisting")
                    resource_version = None
                    continue
                self._log.error("watch_failed", status=e.status, reason=e.reason)
                stop.wait(backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
            except Exception:
                self._log.exception("watch_failed_unexpectedly")
                stop.wait(backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)

    def _watch(self, resource_version: str, timeout: int, stop: threading.Event) -> str:
        from kubernetes import watch
        from kubernetes.client import ApiException

        watcher = watch.Watch()
        self._active_watcher = watcher
        try:
            stream = watcher.stream(
                self._list_func,
                *self._list_args,
                resource_version=resource_version,
                timeout_seconds=timeout,
                allow_watch_bookmarks=True,
                **self._list_kwargs,
            )
            for event in stream:
                if stop.is_set():
                    break

                event_type = str(event.get("type", ""))
                raw = event.get("raw_object") or event.get("object")

                if event_type == "ERROR":
                    code = raw.get("code") if isinstance(raw, dict) else None
                    raise ApiException(status=code or 500, reason=str(raw))

                if event_type == "BOOKMARK":
                    version = (raw.get("metadata") or {}).get("resourceVersion") if isinstance(
                        raw, dict
                    ) else None
                    resource_version = version or resource_version
                    continue

                obj = self._normalize(event.get("object"))
                if obj.resource_version:
                    resource_version = obj.resource_version
                self._apply(event_type, obj)
        finally:
            watcher.stop()
            self._active_watcher = None

        return resource_version

    def _apply(self, event_type: str, obj: T) -> None:
        with self._lock:
            old = self._store.get(obj.key)
            if event_type == "DELETED":
                self._store.pop(obj.key, None)
            else:
                self._store[obj.key] = obj

        if event_type == "DELETED":
            self._events.put(("delete", obj, None))
        elif old is None:
            self._events.put(("add", obj, None))
        else:
            self._events.put(("update", old, obj))

    def relist(self) -> str:
        """Replace the store with a fresh list and emit the differences.

        Objects that disappeared since the previous state are delivered as
        :class:`DeletedFinalStateUnknown` tombstones.

        Returns:
            The list resource version to resume watching from.
        """
        result = self._list_func(*self._list_args, **self._list_kwargs)
        raw_items, resource_version = _list_items(result)
        fresh = {obj.key: obj for obj in (self._normalize(item) for item in raw_items)}

        with self._lock:
            previous = self._store
            self._store = fresh

        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._events.put(("add", obj, None))
            elif old.resource_version != obj.resource_version:
                self._events.put(("update", old, obj))
        for key, old in previous.items():
            if key not in fresh:
                self._events.put(("delete", DeletedFinalStateUnknown(key, old), None))

        self._synced.set()
        self._log.debug("listed", count=len(fresh), resource_version=resource_version)
        return resource_version or ""

    def resync(self) -> None:
        """Redeliver every cached object as an update to itself."""
        with self._lock:
            items = list(self._store.values())
        for obj in items:
            self._events.put(("update", obj, obj))

    def _run_dispatcher(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                kind, first, second = self._events.get(timeout=0.5)
            except queue.Empty:
                continue
            self.dispatch(kind, first, second)

    def dispatch(self, kind: str, first: Any, second: Any = None) -> None:
        """Deliver one notification to every handler, in registration order."""
        for handler in self._handlers:
            try:
                if kind == "add":
                    handler.on_add(first)
                elif kind == "update":
                    handler.on_update(first, second)
                else:
                    handler.on_delete(first)
            except Exception:
                self._log.exception("event_handler_failed", event=kind)


class InformerFactory:
    """Creates informers and manages their common lifecycle."""

    def __init__(self, resync_seconds: float = 300) -> None:
        self._resync_seconds = resync_seconds
        self._informers: dict[str, Informer[Any]] = {}

    def informer(
        self,
        name: str,
        normalize: Callable[[Any], T],
        list_func: Callable[..., Any],
        *list_args: Any,
        **list_kwargs: Any,
    ) -> Informer[T]:
        """Return the informer registered under ``name``, creating it if needed."""
        if name not in self._informers:
            self._informers[name] = Informer(
                name,
                normalize,
                list_func,
                *list_args,
                resync_seconds=self._resync_seconds,
                **list_kwargs,
            )
        return self._informers[name]

    def get(self, name: str) -> Informer[Any] | None:
        """Return a registered informer by name."""
        return self._informers.get(name)

    @property
    def informers(self) -> dict[str, Informer[Any]]:
        """Registered informers by name."""
        return dict(self._informers)

    def start(self, stop: threading.Event) -> None:
        """Start every registered informer."""
        for informer in self._informers.values():
            informer.start(stop)

    def stop(self) -> None:
        """Interrupt every open watch stream."""
        for informer in self._informers.values():
            informer.stop()

    def wait_for_cache_sync(
        self,
        timeout: float,
        stop: threading.Event | None = None,
    ) -> dict[str, bool]:
        """Wait until every informer completed its initial list.

        Returns:
            Sync status per informer name. Stopping early reports the
            informers not yet synced as False.
        """
        deadline = time.monotonic() + timeout
        for informer in self._informers.values():
            while not informer.has_synced:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or (stop is not None and stop.is_set()):
                    break
                informer.wait_for_sync(min(remaining, 0.5))
        return {name: inf.has_synced for name, inf in self._informers.items()}
