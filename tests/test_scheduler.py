"""
test_scheduler.py — schedule / cancel contract.

Covers:
    • Delay computation and clamping of past times
    • Replace-on-reschedule (one pending job per subscription)
    • Validation before any queue interaction
    • Disabled capability and unreachable backend
    • Idempotent cancel

Run with:
    pytest tests/test_scheduler.py -v
"""

from __future__ import annotations

import math
from unittest.mock import AsyncMock

import pytest

from backend.app.core.errors import (
    InvalidRequestError,
    QueueUnavailableError,
    UnavailableError,
)
from backend.app.push.capability import PushCapability
from backend.app.push.identity import subscription_id
from backend.app.push.models import Subscription
from backend.app.push.queue import DelayedQueue
from backend.app.push.scheduler import PushScheduler

from tests.fakes import ENDPOINT, T0, make_subscription


def _spy_queue() -> AsyncMock:
    return AsyncMock(spec=DelayedQueue)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: schedule()
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedule:

    @pytest.mark.asyncio
    async def test_returns_id_and_delay(self, scheduler, queue):
        result = await scheduler.schedule(make_subscription(), T0 + 5000, "Test")

        assert result.job_id == subscription_id(ENDPOINT)
        assert result.delay_ms == 5000
        job = await queue.get(result.job_id)
        assert job.not_before == T0 + 5000
        assert job.payload.title == "Test"
        assert job.payload.body is None
        assert job.attempt == 0

    @pytest.mark.asyncio
    async def test_past_time_clamped_to_zero(self, scheduler, queue):
        result = await scheduler.schedule(make_subscription(), T0 - 1000, "Late")

        assert result.delay_ms == 0
        assert (await queue.get(result.job_id)).not_before == T0

    @pytest.mark.asyncio
    async def test_fractional_delay_rounded(self, scheduler):
        result = await scheduler.schedule(make_subscription(), T0 + 1234.6, "x")
        assert result.delay_ms == 1235

    @pytest.mark.asyncio
    async def test_integer_timestamp_accepted(self, scheduler):
        result = await scheduler.schedule(make_subscription(), int(T0) + 10, "x")
        assert result.delay_ms == 10

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending(self, scheduler, queue, clock):
        await scheduler.schedule(make_subscription(), T0 + 1000, "first", "a")
        clock.advance(200)
        await scheduler.schedule(make_subscription(), T0 + 9000, "second")

        assert await queue.pending_count() == 1
        job = await queue.get(subscription_id(ENDPOINT))
        assert job.not_before == T0 + 9000
        # full overwrite, not a merge
        assert job.payload.title == "second"
        assert job.payload.body is None

    @pytest.mark.asyncio
    async def test_exactly_one_upsert(self, clock):
        q = _spy_queue()
        s = PushScheduler(q, PushCapability.always(), clock=clock)
        await s.schedule(make_subscription(), T0 + 10, "x")
        q.upsert.assert_awaited_once()
        q.remove.assert_not_awaited()


class TestScheduleValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("at_ms", [math.nan, math.inf, -math.inf, None, "soon", True])
    async def test_non_finite_time_rejected(self, clock, at_ms):
        q = _spy_queue()
        s = PushScheduler(q, PushCapability.always(), clock=clock)
        with pytest.raises(InvalidRequestError) as exc_info:
            await s.schedule(make_subscription(), at_ms, "x")
        assert exc_info.value.details["field"] == "atMs"
        q.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subscription", [None, Subscription(endpoint="")])
    async def test_missing_endpoint_rejected(self, clock, subscription):
        q = _spy_queue()
        s = PushScheduler(q, PushCapability.always(), clock=clock)
        with pytest.raises(InvalidRequestError):
            await s.schedule(subscription, T0, "x")
        q.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_subscription_and_nan(self, clock):
        q = _spy_queue()
        s = PushScheduler(q, PushCapability.always(), clock=clock)
        with pytest.raises(InvalidRequestError):
            await s.schedule(Subscription.from_dict({}), math.nan, "x")
        assert not q.method_calls

    @pytest.mark.asyncio
    async def test_validation_precedes_capability_check(self, clock):
        s = PushScheduler(None, PushCapability.never(), clock=clock)
        with pytest.raises(InvalidRequestError):
            await s.schedule(None, math.nan, "x")


class TestScheduleUnavailable:

    @pytest.mark.asyncio
    async def test_disabled_capability(self, queue, clock):
        s = PushScheduler(queue, PushCapability.never(), clock=clock)
        with pytest.raises(UnavailableError) as exc_info:
            await s.schedule(make_subscription(), T0, "x")
        assert exc_info.value.status_code == 503
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_no_queue(self, clock):
        s = PushScheduler(None, PushCapability.always(), clock=clock)
        with pytest.raises(UnavailableError):
            await s.schedule(make_subscription(), T0, "x")

    @pytest.mark.asyncio
    async def test_queue_down_surfaces_as_unavailable(self, clock):
        q = _spy_queue()
        q.upsert.side_effect = QueueUnavailableError("upsert", "Connection refused")
        s = PushScheduler(q, PushCapability.always(), clock=clock)

        with pytest.raises(UnavailableError) as exc_info:
            await s.schedule(make_subscription(), T0, "x")
        assert isinstance(exc_info.value.__cause__, QueueUnavailableError)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: cancel()
# ═══════════════════════════════════════════════════════════════════════════

class TestCancel:

    @pytest.mark.asyncio
    async def test_removes_pending(self, scheduler, queue):
        await scheduler.schedule(make_subscription(), T0 + 5000, "x")
        result = await scheduler.cancel(make_subscription())

        assert result.job_id == subscription_id(ENDPOINT)
        assert result.removed is True
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_cancel_without_schedule_is_noop(self, scheduler, queue):
        result = await scheduler.cancel(make_subscription())
        assert result.job_id == subscription_id(ENDPOINT)
        assert result.removed is False
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_cancel_leaves_other_subscriptions(self, scheduler, queue):
        await scheduler.schedule(make_subscription("https://push.example/other"), T0, "x")
        await scheduler.cancel(make_subscription())
        assert await queue.pending_count() == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subscription", [None, Subscription(endpoint="")])
    async def test_missing_endpoint_succeeds_without_id(self, clock, subscription):
        q = _spy_queue()
        s = PushScheduler(q, PushCapability.always(), clock=clock)
        result = await s.cancel(subscription)
        assert result.job_id is None
        q.remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_backend_succeeds(self, clock):
        s = PushScheduler(None, PushCapability.never(), clock=clock)
        result = await s.cancel(make_subscription())
        assert result.job_id == subscription_id(ENDPOINT)
        assert result.removed is False

    @pytest.mark.asyncio
    async def test_queue_down_tolerated(self, clock):
        q = _spy_queue()
        q.remove.side_effect = QueueUnavailableError("remove", "timeout")
        s = PushScheduler(q, PushCapability.always(), clock=clock)

        result = await s.cancel(make_subscription())
        assert result.job_id == subscription_id(ENDPOINT)
        assert result.removed is False
