"""Queue consumer shared by the reconciliation loops."""

import asyncio
from abc import ABC, abstractmethod

from athenz_istio_auth.controller.workqueue import RateLimitingQueue
from athenz_istio_auth.core.logging import get_logger
from athenz_istio_auth.core.metrics import queue_retries, sync_duration, sync_errors

logger = get_logger(__name__)


class QueueWorker(ABC):
    """
    Runs ``sync`` once per queue signal, one signal at a time.

    A failed pass is retried with backoff until it has been requeued
    ``num_retries`` times; the key is then forgotten and the loop waits for
    the next trigger.
    """

    loop_name = "sync"
    queue_key = "sync"

    def __init__(self, queue: RateLimitingQueue, num_retries: int = 3):
        self.queue = queue
        self.num_retries = num_retries

    @abstractmethod
    def sync(self) -> None:
        """Run one reconciliation pass"""

    def enqueue(self) -> None:
        self.queue.add(self.queue_key)

    async def process_next_item(self) -> bool:
        """Handle one key; False once the queue has been shut down"""
        key = await self.queue.get()
        if key is None:
            return False

        try:
            with sync_duration.labels(loop=self.loop_name).time():
                await asyncio.to_thread(self.sync)
        except Exception as e:
            sync_errors.labels(loop=self.loop_name).inc()
            logger.error(
                f"Error syncing {self.loop_name} state for key {key}: {e}",
                exc_info=True,
                extra={"queue_key": key},
            )
            if self.queue.num_requeues(key) < self.num_retries:
                logger.info(f"Retrying key {key} due to sync error")
                queue_retries.labels(loop=self.loop_name).inc()
                self.queue.add_rate_limited(key)
                return True
        finally:
            self.queue.done(key)

        self.queue.forget(key)
        return True

    async def run_worker(self) -> None:
        logger.info(f"Starting {self.loop_name} worker")
        while await self.process_next_item():
            pass
        logger.info(f"Stopped {self.loop_name} worker")
