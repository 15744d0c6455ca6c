"""
scheduler.py — Public contract for deferring and cancelling a notification.

The scheduler only ever touches the queue. It never calls the delivery
client; workers pick jobs up when they fall due, so request latency is
independent of push-service latency.

Usage:
    scheduler = PushScheduler(queue, PushCapability.from_settings(settings))
    result = await scheduler.schedule(sub, deliver_at_ms=now + 5000, title="Rest over")
    await scheduler.cancel(sub)
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Optional

from backend.app.core.errors import (
    InvalidRequestError,
    QueueUnavailableError,
    UnavailableError,
)
from backend.app.core.logging_config import short_endpoint
from backend.app.push.capability import PushCapability
from backend.app.push.identity import subscription_id
from backend.app.push.models import Job, NotificationPayload, Subscription
from backend.app.push.queue import DelayedQueue

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Wall-clock epoch milliseconds."""
    return time.time() * 1000


@dataclass(frozen=True)
class ScheduleResult:
    job_id: str
    delay_ms: int


@dataclass(frozen=True)
class CancelResult:
    job_id: Optional[str] = None
    removed: bool = False


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


class PushScheduler:
    """Turns schedule/cancel requests into queue upserts and removals."""

    def __init__(
        self,
        queue: Optional[DelayedQueue],
        capability: PushCapability,
        clock: Callable[[], float] = now_ms,
    ):
        self.queue = queue
        self.capability = capability
        self._clock = clock

    @property
    def available(self) -> bool:
        return self.queue is not None and self.capability.scheduling_enabled

    async def schedule(
        self,
        subscription: Optional[Subscription],
        deliver_at_ms: Any,
        title: str,
        body: Optional[str] = None,
    ) -> ScheduleResult:
        """
        Defer one notification to ``deliver_at_ms`` (epoch ms).

        Replaces any notification already pending for the same subscription.
        Times in the past are clamped to now.

        Raises
        ------
        InvalidRequestError
            Missing endpoint or non-finite ``deliver_at_ms``.
        UnavailableError
            Scheduling disabled, or the queue backend is unreachable.
        """
        if subscription is None or not subscription.endpoint:
            raise InvalidRequestError(
                "subscription.endpoint is required", field="subscription",
            )
        if not _is_finite_number(deliver_at_ms):
            raise InvalidRequestError(
                "atMs must be a finite number", field="atMs",
            )
        if not self.available:
            raise UnavailableError(**self.capability.to_dict())

        now = self._clock()
        delay_ms = max(0, int(round(deliver_at_ms - now)))
        job = Job(
            id=subscription_id(subscription.endpoint),
            not_before=now + delay_ms,
            payload=NotificationPayload(title=title, body=body),
            subscription=subscription,
        )

        try:
            await self.queue.upsert(job)
        except QueueUnavailableError as exc:
            raise UnavailableError(
                "push scheduling unavailable", reason=exc.message,
            ) from exc

        logger.info(
            "Scheduled push %s in %dms → %s",
            job.id[:12], delay_ms, short_endpoint(subscription.endpoint),
            extra={"job_id": job.id, "delay_ms": delay_ms},
        )
        return ScheduleResult(job_id=job.id, delay_ms=delay_ms)

    async def cancel(self, subscription: Optional[Subscription]) -> CancelResult:
        """
        Drop whatever is pending for ``subscription``.

        Never raises: with nothing scheduled, no endpoint, or no reachable
        backend the result is simply a success with ``removed=False``.
        """
        if subscription is None or not subscription.endpoint:
            return CancelResult()

        job_id = subscription_id(subscription.endpoint)
        if self.queue is None:
            return CancelResult(job_id=job_id)

        try:
            removed = await self.queue.remove(job_id)
        except QueueUnavailableError as exc:
            logger.warning(
                "Cancel of %s skipped, queue unavailable: %s",
                job_id[:12], exc.message,
                extra={"job_id": job_id},
            )
            return CancelResult(job_id=job_id)

        if removed:
            logger.info("Cancelled push %s", job_id[:12], extra={"job_id": job_id})
        return CancelResult(job_id=job_id, removed=removed)
