"""Thread-safe object caches fed by watch events."""

import threading
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from athenz_istio_auth.core.logging import get_logger

logger = get_logger(__name__)


def object_key(obj: Mapping[str, Any]) -> Tuple[str, str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("namespace") or "", metadata.get("name") or ""


class ObjectCache:
    """
    Latest known state of a set of Kubernetes objects.

    Written by watch handlers on the event loop and read by the workers
    running in threads, so every access holds the lock. Objects are stored
    as plain dictionaries (the shape kopf delivers).
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._lock = threading.RLock()
        self._items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._synced = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def has_synced(self) -> bool:
        return self._synced

    def replace(self, objects: Iterable[Mapping[str, Any]]) -> None:
        """Replace the whole content, ex: with the result of an initial list"""
        items = {}
        for obj in objects:
            key = object_key(obj)
            if not key[1]:
                logger.warning(f"Ignoring {self.kind} without a name")
                continue
            items[key] = dict(obj)

        with self._lock:
            self._items = items
            self._synced = True

    def upsert(self, obj: Mapping[str, Any]) -> None:
        key = object_key(obj)
        if not key[1]:
            logger.warning(f"Ignoring {self.kind} event without a name")
            return
        with self._lock:
            self._items[key] = dict(obj)

    def delete(self, obj: Mapping[str, Any]) -> None:
        with self._lock:
            self._items.pop(object_key(obj), None)

    def apply_event(self, event_type: str, obj: Mapping[str, Any]) -> None:
        """Apply a watch event (ADDED, MODIFIED, DELETED or None for a listing)"""
        if event_type == "DELETED":
            self.delete(obj)
        else:
            self.upsert(obj)

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._items.values())
