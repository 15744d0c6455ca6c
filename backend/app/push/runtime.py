"""
runtime.py — Wire capability, queue, scheduler and workers together.

Built once per process (API lifespan or standalone worker) and passed to
whatever needs it; nothing in the push package reads settings on its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from backend.app.core.config import Settings
from backend.app.push.capability import PushCapability
from backend.app.push.delivery import DeliveryClient, WebPushDeliveryClient
from backend.app.push.queue import DelayedQueue, InMemoryDelayedQueue, RedisDelayedQueue
from backend.app.push.retry import NO_RETRY, RetryPolicy
from backend.app.push.scheduler import PushScheduler
from backend.app.push.worker import PushWorker

logger = logging.getLogger(__name__)


class PushRuntime:
    """Owns the queue connection and the worker tasks."""

    def __init__(
        self,
        capability: PushCapability,
        queue: Optional[DelayedQueue],
        client: Optional[DeliveryClient] = None,
        *,
        vapid_public_key: str = "",
        retry_policy: RetryPolicy = NO_RETRY,
        worker_count: int = 1,
        poll_interval: float = 1.0,
    ):
        self.capability = capability
        self.queue = queue
        self.client = client
        self.vapid_public_key = vapid_public_key
        self.retry_policy = retry_policy
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.scheduler = PushScheduler(queue, capability)
        self.workers: List[PushWorker] = []
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushRuntime":
        capability = PushCapability.from_settings(settings)

        queue: Optional[DelayedQueue] = None
        if capability.durable_backend:
            queue = RedisDelayedQueue.from_url(settings.REDIS_URL, prefix=settings.QUEUE_PREFIX)
        elif capability.allow_in_memory:
            logger.warning("REDIS_URL not set; using in-memory queue (jobs lost on restart)")
            queue = InMemoryDelayedQueue()

        client = None
        if capability.delivery_configured:
            client = WebPushDeliveryClient(
                settings.VAPID_PRIVATE_KEY,
                settings.VAPID_SUBJECT,
                ttl_seconds=settings.PUSH_TTL_SECONDS,
                timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
            )
        else:
            logger.warning("VAPID keys not set; push scheduling will be disabled.")

        return cls(
            capability,
            queue,
            client,
            vapid_public_key=settings.VAPID_PUBLIC_KEY or "",
            retry_policy=RetryPolicy.from_settings(settings),
            worker_count=settings.WORKER_CONCURRENCY,
            poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
        )

    @property
    def tasks(self) -> List[asyncio.Task]:
        """Worker tasks, index-aligned with :attr:`workers`."""
        return list(self._tasks)

    @property
    def can_dispatch(self) -> bool:
        return self.queue is not None and self.client is not None

    def start_workers(self, count: Optional[int] = None) -> List[asyncio.Task]:
        """Spawn worker tasks on the running loop. No-op without queue + client."""
        if not self.can_dispatch:
            logger.info("Push workers not started (queue or delivery client missing)")
            return []
        for _ in range(count or self.worker_count):
            worker = PushWorker(
                self.queue,
                self.client,
                retry_policy=self.retry_policy,
                poll_interval=self.poll_interval,
                name=f"worker-{len(self.workers) + 1}",
            )
            self.workers.append(worker)
            self._tasks.append(asyncio.create_task(worker.run(), name=worker.name))
        return list(self._tasks)

    async def wait(self) -> None:
        """Block until every worker task finishes."""
        if self._tasks:
            await asyncio.gather(*self._tasks)

    async def shutdown(self) -> None:
        for worker in self.workers:
            worker.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.workers.clear()
        if self.queue is not None:
            await self.queue.close()
