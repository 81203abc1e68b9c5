"""
MembershipWatcher
=================

Turns a Kubernetes list + watch into a typed event stream for one table:

  - producer thread: initial listing (Added ... then Synced), then a watch
    from the listing's resourceVersion; any stream failure (e.g. 410 Gone)
    triggers a relist, objects missing from it are delivered as Removed.
  - writer thread: the only consumer of the queue, applies each event to
    the cache, so delivery concurrency never reaches the table.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

from ..constants import WATCH_RETRY_BACKOFF_SEC
from ..engine.cluster_state import EventType, MembershipEvent

WATCH_EVENT_TYPES = {
    "ADDED": EventType.ADDED,
    "MODIFIED": EventType.UPDATED,
    "DELETED": EventType.REMOVED,
}


def node_key(obj) -> Hashable:
    return obj.metadata.name


def pod_key(obj) -> Hashable:
    return obj.metadata.namespace, obj.metadata.name


class MembershipWatcher:
    """
    :param kind: "node" or "pod", only used for logging / thread names
    :param lister: () -> (items, resource_version)
    :param watcher: (resource_version) -> iterable of {"type", "object"}
    :param apply: the cache handler for this table
    :param key_of: object -> table key
    """

    def __init__(self,
                 kind: str,
                 lister: Callable[[], Tuple[list, str]],
                 watcher: Callable[[str], Iterable[dict]],
                 apply: Callable[[MembershipEvent], None],
                 key_of: Callable[[Any], Hashable],
                 backoff: float = WATCH_RETRY_BACKOFF_SEC):
        self.kind = kind
        self.lister = lister
        self.watcher = watcher
        self.apply = apply
        self.key_of = key_of
        self.backoff = backoff
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}.{kind}")

        self.events: "queue.Queue[Optional[MembershipEvent]]" = queue.Queue()
        self._known: Dict[Hashable, Any] = {}
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    # ──────────────────────────
    # lifecycle
    # ──────────────────────────
    def start(self):
        producer = threading.Thread(target=self._produce_loop, name=f"{self.kind}-watch", daemon=True)
        writer = threading.Thread(target=self._write_loop, name=f"{self.kind}-writer", daemon=True)
        self._threads = [producer, writer]
        writer.start()
        producer.start()
        self.logger.info(f"{self.kind} watcher started")

    def stop(self):
        self._stop.set()
        self.events.put(None)

    # ──────────────────────────
    # producer side
    # ──────────────────────────
    def relist(self) -> str:
        """Deliver a full listing, then Synced. Returns the resourceVersion to watch from."""
        items, resource_version = self.lister()
        current = {self.key_of(o): o for o in items}

        for key, obj in current.items():
            etype = EventType.UPDATED if key in self._known else EventType.ADDED
            self.events.put(MembershipEvent(etype, obj))
        for key in set(self._known) - set(current):
            self.events.put(MembershipEvent(EventType.REMOVED, self._known[key]))

        self._known = current
        self.events.put(MembershipEvent(EventType.SYNCED))
        self.logger.info(f"listed {len(current)} {self.kind}(s) at resourceVersion {resource_version}")
        return resource_version

    def watch_once(self, resource_version: str) -> str:
        """Forward one watch stream; returns the last resourceVersion seen."""
        for raw in self.watcher(resource_version):
            if self._stop.is_set():
                break
            obj = raw.get("object")
            meta = getattr(obj, "metadata", None)
            if meta is not None and meta.resource_version:
                resource_version = meta.resource_version

            if raw.get("type") == "ERROR":
                raise RuntimeError(f"watch error event: {obj}")
            etype = WATCH_EVENT_TYPES.get(raw.get("type"))
            if etype is None:
                # BOOKMARK only moves the resourceVersion
                continue
            key = self.key_of(obj)
            if etype is EventType.REMOVED:
                self._known.pop(key, None)
            else:
                self._known[key] = obj
            self.events.put(MembershipEvent(etype, obj))
        return resource_version

    def _produce_loop(self):
        resource_version = None
        while not self._stop.is_set():
            try:
                if resource_version is None:
                    resource_version = self.relist()
                resource_version = self.watch_once(resource_version)
            except Exception as exc:   # noqa
                # expired resourceVersion, dropped connection, API down
                self.logger.warning(f"{self.kind} watch failed, relisting in {self.backoff}s: {exc}")
                resource_version = None
                self._stop.wait(self.backoff)

    # ──────────────────────────
    # single writer
    # ──────────────────────────
    def _write_loop(self):
        while True:
            event = self.events.get()
            if event is None:
                break
            self._apply(event)

    def _apply(self, event: MembershipEvent):
        try:
            self.apply(event)
        except Exception:   # noqa
            self.logger.exception(f"failed to apply {event.type.value} {self.kind} event")
