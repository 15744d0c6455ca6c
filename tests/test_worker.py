"""
test_worker.py — Claim-and-dispatch loop, outcome handling and retries.

Covers:
    • Exactly one delivery at the rescheduled time, never the original
    • Zero deliveries after cancel
    • Gone subscriptions dropped with a warning, other jobs unaffected
    • Transient failures logged as errors, retried only by policy
    • Loop survives client and backend failures
    • Two workers never dispatch the same job

Run with:
    pytest tests/test_worker.py -v
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import pytest

from backend.app.core.errors import QueueUnavailableError
from backend.app.push.capability import PushCapability
from backend.app.push.identity import subscription_id
from backend.app.push.models import DeliveryOutcome, Job
from backend.app.push.queue import DelayedQueue, InMemoryDelayedQueue
from backend.app.push.retry import RetryKind, RetryPolicy
from backend.app.push.scheduler import PushScheduler
from backend.app.push.worker import PushWorker

from tests.fakes import ENDPOINT, T0, RecordingClient, make_subscription

GONE = "https://push.example/gone"
FLAKY = "https://push.example/flaky"
OTHER = "https://push.example/other"


def _worker(queue, client, clock, **kwargs) -> PushWorker:
    kwargs.setdefault("poll_interval", 0.01)
    return PushWorker(queue, client, clock=clock, **kwargs)


async def _drain(worker: PushWorker) -> int:
    """Run until nothing is due; return number of dispatches."""
    count = 0
    while await worker.run_once() is not None:
        count += 1
    return count


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Scheduling semantics end to end
# ═══════════════════════════════════════════════════════════════════════════

class TestDeliveryTiming:

    @pytest.mark.asyncio
    async def test_concrete_scenario(self, scheduler, queue, client, clock):
        result = await scheduler.schedule(make_subscription(), T0 + 5000, "Test")
        assert result.delay_ms == 5000
        assert result.job_id == subscription_id(ENDPOINT)

        worker = _worker(queue, client, clock)
        clock.advance(4999)
        assert await _drain(worker) == 0

        clock.advance(1)
        assert await _drain(worker) == 1
        assert len(client.calls) == 1
        assert client.calls[0][1].title == "Test"

        clock.advance(60_000)
        assert await _drain(worker) == 0
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_reschedule_delivers_once_at_new_time(self, scheduler, queue, client, clock):
        await scheduler.schedule(make_subscription(), T0 + 1000, "first")
        await scheduler.schedule(make_subscription(), T0 + 3000, "second")
        worker = _worker(queue, client, clock)

        clock.advance(1000)
        assert await _drain(worker) == 0

        clock.advance(2000)
        assert await _drain(worker) == 1
        assert [p.title for _, p in client.calls] == ["second"]

    @pytest.mark.asyncio
    async def test_cancel_prevents_delivery(self, scheduler, queue, client, clock):
        await scheduler.schedule(make_subscription(), T0 + 1000, "x")
        await scheduler.cancel(make_subscription())

        clock.advance(10_000)
        assert await _drain(_worker(queue, client, clock)) == 0
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_past_time_delivers_immediately(self, scheduler, queue, client, clock):
        await scheduler.schedule(make_subscription(), T0 - 1000, "late")
        assert await _drain(_worker(queue, client, clock)) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Outcome handling
# ═══════════════════════════════════════════════════════════════════════════

class TestPermanentFailure:

    @pytest.mark.asyncio
    async def test_gone_dropped_and_others_still_dispatch(self, scheduler, queue, clock, caplog):
        client = RecordingClient({GONE: DeliveryOutcome.PERMANENT_FAILURE})
        await scheduler.schedule(make_subscription(GONE), T0 + 100, "doomed")
        await scheduler.schedule(make_subscription(OTHER), T0 + 200, "fine")
        worker = _worker(queue, client, clock,
                         retry_policy=RetryPolicy(RetryKind.FIXED, 3, 1.0))

        clock.advance(100)
        with caplog.at_level(logging.WARNING, logger="backend.app.push.worker"):
            result = await worker.run_once()
        assert result.outcome is DeliveryOutcome.PERMANENT_FAILURE
        assert result.job_id == subscription_id(GONE)
        assert any(r.levelno == logging.WARNING and "gone" in r.getMessage().lower()
                   for r in caplog.records)
        # never retried, even with a retry policy configured
        assert await queue.get(subscription_id(GONE)) is None

        clock.advance(100)
        assert await _drain(worker) == 1
        clock.advance(60_000)
        assert await _drain(worker) == 0
        assert client.endpoints == [GONE, OTHER]


class TestTransientFailure:

    @pytest.mark.asyncio
    async def test_logged_as_error_and_dropped_without_policy(self, scheduler, queue, clock, caplog):
        client = RecordingClient({FLAKY: DeliveryOutcome.TRANSIENT_FAILURE})
        await scheduler.schedule(make_subscription(FLAKY), T0, "x")
        worker = _worker(queue, client, clock)

        with caplog.at_level(logging.ERROR, logger="backend.app.push.worker"):
            result = await worker.run_once()

        assert result.outcome is DeliveryOutcome.TRANSIENT_FAILURE
        assert any(r.levelno == logging.ERROR for r in caplog.records)
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_fixed_retry_until_exhausted(self, scheduler, queue, clock):
        client = RecordingClient({FLAKY: DeliveryOutcome.TRANSIENT_FAILURE})
        await scheduler.schedule(make_subscription(FLAKY), T0, "x")
        worker = _worker(queue, client, clock,
                         retry_policy=RetryPolicy(RetryKind.FIXED, max_attempts=2,
                                                  backoff_base_seconds=10.0))

        assert await _drain(worker) == 1
        retry = await queue.get(subscription_id(FLAKY))
        assert retry.attempt == 1
        assert retry.not_before == T0 + 10_000

        clock.advance(10_000)
        assert await _drain(worker) == 1
        assert (await queue.get(subscription_id(FLAKY))).attempt == 2

        clock.advance(10_000)
        assert await _drain(worker) == 1
        assert await queue.pending_count() == 0
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_exponential_backoff_delays(self, scheduler, queue, clock):
        client = RecordingClient({FLAKY: DeliveryOutcome.TRANSIENT_FAILURE})
        await scheduler.schedule(make_subscription(FLAKY), T0, "x")
        worker = _worker(queue, client, clock,
                         retry_policy=RetryPolicy(RetryKind.EXPONENTIAL, 3, 1.0))

        delays = []
        for _ in range(3):
            before = clock()
            await _drain(worker)
            job = await queue.get(subscription_id(FLAKY))
            delays.append(job.not_before - before)
            clock.now = job.not_before
        assert delays == [1000, 2000, 4000]

    @pytest.mark.asyncio
    async def test_retry_never_overwrites_newer_schedule(self, scheduler, queue, clock):
        """A reschedule racing an in-flight dispatch wins over the retry."""
        sched = scheduler

        class RescheduleDuringSend(RecordingClient):
            async def deliver(self, subscription, payload):
                await sched.schedule(subscription, T0 + 60_000, "newer")
                return await super().deliver(subscription, payload)

        client = RescheduleDuringSend({FLAKY: DeliveryOutcome.TRANSIENT_FAILURE})
        await scheduler.schedule(make_subscription(FLAKY), T0, "old")
        worker = _worker(queue, client, clock,
                         retry_policy=RetryPolicy(RetryKind.FIXED, 3, 1.0))

        await worker.run_once()
        job = await queue.get(subscription_id(FLAKY))
        assert job.payload.title == "newer"
        assert job.attempt == 0
        assert job.not_before == T0 + 60_000


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Concurrency and resilience
# ═══════════════════════════════════════════════════════════════════════════

class TestConcurrentWorkers:

    @pytest.mark.asyncio
    async def test_two_workers_one_dispatch(self, scheduler, queue, client, clock):
        await scheduler.schedule(make_subscription(), T0, "x")
        w1 = _worker(queue, client, clock, name="w1")
        w2 = _worker(queue, client, clock, name="w2")

        results = await asyncio.gather(w1.run_once(), w2.run_once())
        assert sum(r is not None for r in results) == 1
        assert len(client.calls) == 1


class _FlakyQueue(InMemoryDelayedQueue):
    """Claim fails the first ``failures`` times, then behaves."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    async def claim_due(self, now_ms: float) -> Optional[Job]:
        if self.failures:
            self.failures -= 1
            raise QueueUnavailableError("claim", "Connection refused")
        return await super().claim_due(now_ms)


class _ExplodingClient(RecordingClient):
    """Raises on the first call instead of returning an outcome."""

    def __init__(self):
        super().__init__()
        self.exploded = False

    async def deliver(self, subscription, payload):
        if not self.exploded:
            self.exploded = True
            raise RuntimeError("unexpected client bug")
        return await super().deliver(subscription, payload)


async def _run_until(worker: PushWorker, predicate, timeout: float = 2.0) -> None:
    task = asyncio.create_task(worker.run())
    try:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            assert asyncio.get_running_loop().time() < deadline, "worker made no progress"
            await asyncio.sleep(0.01)
    finally:
        worker.stop()
        await asyncio.wait_for(task, timeout=1.0)


class TestRunLoop:

    @pytest.mark.asyncio
    async def test_run_dispatches_and_stops(self, queue, client):
        scheduler = PushScheduler(queue, PushCapability.always())
        worker = PushWorker(queue, client, poll_interval=0.05)

        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0)
        await scheduler.schedule(make_subscription(), 0, "now")
        deadline = asyncio.get_running_loop().time() + 2.0
        while not client.calls:
            assert asyncio.get_running_loop().time() < deadline
            await asyncio.sleep(0.01)

        worker.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert worker.processed == 1
        assert not worker.running

    @pytest.mark.asyncio
    async def test_survives_queue_outage(self, client, clock):
        queue = _FlakyQueue(failures=2)
        await PushScheduler(queue, PushCapability.always(), clock=clock).schedule(
            make_subscription(), T0, "x",
        )
        worker = _worker(queue, client, clock)
        await _run_until(worker, lambda: client.calls)
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_client_exception_does_not_halt_loop(self, scheduler, queue, clock, caplog):
        client = _ExplodingClient()
        await scheduler.schedule(make_subscription(GONE), T0, "boom")
        await scheduler.schedule(make_subscription(OTHER), T0 + 1, "fine")
        clock.advance(1)
        worker = _worker(queue, client, clock)

        with caplog.at_level(logging.ERROR, logger="backend.app.push.worker"):
            await _run_until(worker, lambda: client.calls)
        assert client.endpoints == [OTHER]
        assert any("iteration failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_job_added_while_idle_picked_up_within_poll_interval(self, client):
        # Same wake-up behaviour as Redis: no change notification, just a sleep
        class _SleepingQueue(InMemoryDelayedQueue):
            wait_for_change = DelayedQueue.wait_for_change

        queue = _SleepingQueue()
        worker = PushWorker(queue, client, poll_interval=0.2)
        task = asyncio.create_task(worker.run())
        try:
            await asyncio.sleep(0.05)
            loop = asyncio.get_running_loop()
            added_at = loop.time()
            await PushScheduler(queue, PushCapability.always()).schedule(
                make_subscription(), 0, "late",
            )
            while not client.calls:
                assert loop.time() - added_at < 1.0, "job not picked up"
                await asyncio.sleep(0.01)
            assert loop.time() - added_at < 0.2 + 0.3
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=1.0)
