"""
worker.py — Poll the delayed queue and dispatch due jobs.

Each iteration:
    1. Claim one due job (the claim already removed it from the queue)
    2. Hand it to the delivery client
    3. Act on the outcome:
         DELIVERED          → info log
         PERMANENT_FAILURE  → warning log, job stays dropped
         TRANSIENT_FAILURE  → error log, retry policy may re-enqueue

A failure while handling one job is logged and the loop moves on. Any number
of workers may share a queue; claim atomicity keeps them from overlapping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from backend.app.core.errors import QueueUnavailableError
from backend.app.core.logging_config import short_endpoint
from backend.app.push.delivery import DeliveryClient
from backend.app.push.models import DeliveryOutcome, DeliveryResult, Job
from backend.app.push.queue import DelayedQueue
from backend.app.push.retry import NO_RETRY, RetryPolicy
from backend.app.push.scheduler import now_ms

logger = logging.getLogger(__name__)


class PushWorker:
    """
    Usage:
        worker = PushWorker(queue, client)
        task = asyncio.create_task(worker.run())
        ...
        worker.stop()
        await task
    """

    def __init__(
        self,
        queue: DelayedQueue,
        client: DeliveryClient,
        *,
        retry_policy: RetryPolicy = NO_RETRY,
        clock: Callable[[], float] = now_ms,
        poll_interval: float = 1.0,
        name: str = "worker-1",
    ):
        self.queue = queue
        self.client = client
        self.retry_policy = retry_policy
        self.poll_interval = poll_interval
        self.name = name
        self._clock = clock
        self._stopping = asyncio.Event()
        self.processed = 0

    @property
    def running(self) -> bool:
        return not self._stopping.is_set()

    def stop(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        """Process jobs until :meth:`stop` is called."""
        logger.info("Push worker %s started (%s queue)", self.name, self.queue.name,
                    extra={"worker": self.name})
        while not self._stopping.is_set():
            try:
                result = await self.run_once()
            except QueueUnavailableError as exc:
                logger.error("Queue unavailable, backing off: %s", exc.message,
                             extra={"worker": self.name})
                await self._idle(self.poll_interval)
                continue
            except Exception:
                logger.exception("Push worker %s iteration failed", self.name,
                                 extra={"worker": self.name})
                await self._idle(self.poll_interval)
                continue

            if result is None:
                await self._idle(await self._time_until_next_due())
        logger.info("Push worker %s stopped after %d jobs", self.name, self.processed,
                    extra={"worker": self.name})

    async def run_once(self) -> Optional[DeliveryResult]:
        """Claim and dispatch a single due job. None when nothing is due."""
        job = await self.queue.claim_due(self._clock())
        if job is None:
            return None

        result = await self.client.deliver(job.subscription, job.payload)
        result.job_id = job.id
        self.processed += 1
        await self._handle_outcome(job, result)
        return result

    async def _handle_outcome(self, job: Job, result: DeliveryResult) -> None:
        extra = {
            "job_id": job.id,
            "outcome": result.outcome.value,
            "status_code": result.status_code,
            "attempt": job.attempt,
            "worker": self.name,
        }
        endpoint = short_endpoint(job.subscription.endpoint)

        if result.ok:
            logger.info("Push %s delivered → %s", job.id[:12], endpoint, extra=extra)
            return

        if result.outcome is DeliveryOutcome.PERMANENT_FAILURE:
            logger.warning(
                "Subscription gone (%s), dropping push %s → %s",
                result.status_code, job.id[:12], endpoint, extra=extra,
            )
            return

        logger.error(
            "Push %s failed → %s: %s",
            job.id[:12], endpoint, result.error or result.status_code, extra=extra,
        )
        await self._maybe_retry(job)

    async def _maybe_retry(self, job: Job) -> None:
        retry_number = job.attempt + 1
        delay = self.retry_policy.next_delay(retry_number)
        if delay is None:
            return

        retry = replace(
            job,
            not_before=self._clock() + delay * 1000,
            attempt=retry_number,
        )
        # A schedule() that landed after the claim wins over this retry
        if await self.queue.add_if_absent(retry):
            logger.info(
                "Retry %d/%d for push %s in %.1fs",
                retry_number, self.retry_policy.max_attempts, job.id[:12], delay,
                extra={"job_id": job.id, "attempt": retry_number, "worker": self.name},
            )

    async def _time_until_next_due(self) -> float:
        try:
            next_due = await self.queue.next_due_at()
        except QueueUnavailableError:
            return self.poll_interval
        if next_due is None:
            return self.poll_interval
        return min(self.poll_interval, max(0.0, (next_due - self._clock()) / 1000))

    async def _idle(self, seconds: float) -> None:
        if self._stopping.is_set():
            return
        wait_change = asyncio.ensure_future(self.queue.wait_for_change(seconds))
        wait_stop = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait(
                {wait_change, wait_stop}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for fut in (wait_change, wait_stop):
                fut.cancel()
