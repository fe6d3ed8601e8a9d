"""
Rate limited work queue for the reconciliation loops.

Semantics follow client-go's workqueue: a key waiting in the queue is
stored once no matter how often it is added; a key added while it is being
processed is queued again once ``done`` is called; ``add_rate_limited``
re-adds a key after an exponential per-key backoff until ``forget`` resets
it.
"""

import asyncio
from typing import Dict, Optional, Set

from athenz_istio_auth.core.logging import get_logger

logger = get_logger(__name__)

_SHUTDOWN = object()


class RateLimitingQueue:
    """Coalescing asyncio queue with per-key exponential backoff"""

    def __init__(
        self, name: str, base_delay: float = 0.005, max_delay: float = 1000.0
    ):
        self.name = name
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            return

        self._queue.put_nowait(key)

    async def get(self) -> Optional[str]:
        """Wait for the next key; None once the queue is shut down"""
        if self._shutting_down:
            return None

        item = await self._queue.get()
        if item is _SHUTDOWN or self._shutting_down:
            # Wake any other waiting consumer as well
            self._queue.put_nowait(_SHUTDOWN)
            return None

        self._processing.add(item)
        self._dirty.discard(item)
        return item

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def when(self, key: str) -> float:
        """Record a failure for key and return how long to wait before retrying"""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def add_rate_limited(self, key: str) -> None:
        delay = self.when(key)
        logger.debug(f"Queue {self.name}: retrying {key} in {delay:.3f}s")
        asyncio.get_running_loop().call_later(delay, self.add, key)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def shut_down(self) -> None:
        """Stop handing out keys; the current item is allowed to finish"""
        if self._shutting_down:
            return
        self._shutting_down = True
        self._dirty.clear()
        self._queue.put_nowait(_SHUTDOWN)
