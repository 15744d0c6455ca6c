"""
queue.py — Delayed job queue keyed by subscription identity.

Provides:
    • DelayedQueue          — the contract the scheduler and workers rely on
    • RedisDelayedQueue     — durable backend (hash + sorted set + Lua)
    • InMemoryDelayedQueue  — best-effort, process-local fallback

═══════════════════════════════════════════════════════════════════════════
QUEUE CONTRACT
═══════════════════════════════════════════════════════════════════════════

    upsert(job)          insert, or atomically replace the entry with job.id
    add_if_absent(job)   insert only if job.id is not pending (retries)
    remove(job_id)       delete if present, no error when absent
    claim_due(now_ms)    remove-and-return the earliest job with
                         not_before <= now_ms, or None

There is never more than one entry per id. Because claiming removes the
entry in the same atomic step that reads it, two workers polling the same
queue can never both receive a job, and an upsert that lands after a claim
starts a fresh entry instead of mutating the one in flight.

═══════════════════════════════════════════════════════════════════════════
REDIS LAYOUT
═══════════════════════════════════════════════════════════════════════════

    {prefix}:jobs   HASH   job id → JSON job
    {prefix}:due    ZSET   job id scored by not_before (epoch ms)

Upsert/remove run as MULTI transactions; claim and add-if-absent are Lua
scripts so they execute atomically on the server.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from redis.exceptions import RedisError

from backend.app.core.errors import QueueUnavailableError
from backend.app.push.models import Job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Contract
# ═══════════════════════════════════════════════════════════════════════════

class DelayedQueue(abc.ABC):
    """Holds at most one job per id until its not_before elapses."""

    name: str = "queue"

    @abc.abstractmethod
    async def upsert(self, job: Job) -> None:
        """Insert ``job`` or atomically replace the pending job with its id."""

    @abc.abstractmethod
    async def add_if_absent(self, job: Job) -> bool:
        """Insert ``job`` unless its id is already pending. True if inserted."""

    @abc.abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Delete the pending job. True if something was removed."""

    @abc.abstractmethod
    async def claim_due(self, now_ms: float) -> Optional[Job]:
        """Remove and return the earliest job due at ``now_ms``."""

    @abc.abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abc.abstractmethod
    async def pending_count(self) -> int:
        ...

    @abc.abstractmethod
    async def next_due_at(self) -> Optional[float]:
        """Earliest pending not_before (epoch ms), or None when empty."""

    async def wait_for_change(self, timeout: float) -> None:
        """
        Sleep up to ``timeout`` seconds; backends may wake early on mutation.

        Redis keeps this plain sleep, so a job added while a worker idles is
        picked up at most one poll interval after it falls due.
        """
        await asyncio.sleep(timeout)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# Redis backend
# ═══════════════════════════════════════════════════════════════════════════

# Skips ids whose hash entry has gone missing so one orphan never blocks the rest
_CLAIM_SCRIPT = """
while true do
    local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
    if #ids == 0 then
        return false
    end
    local id = ids[1]
    redis.call('ZREM', KEYS[1], id)
    local data = redis.call('HGET', KEYS[2], id)
    redis.call('HDEL', KEYS[2], id)
    if data then
        return data
    end
end
"""

_ADD_IF_ABSENT_SCRIPT = """
if redis.call('HEXISTS', KEYS[2], ARGV[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[2], ARGV[1], ARGV[3])
redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
return 1
"""


class RedisDelayedQueue(DelayedQueue):
    """
    Durable delayed queue on Redis.

    Usage:
        queue = RedisDelayedQueue.from_url("redis://localhost:6379/0")
        await queue.upsert(job)
        job = await queue.claim_due(now_ms)
    """

    name = "redis"

    def __init__(self, client, prefix: str = "chexmix-push"):
        self._client = client
        self.jobs_key = f"{prefix}:jobs"
        self.due_key = f"{prefix}:due"
        self._claim = client.register_script(_CLAIM_SCRIPT)
        self._add_if_absent = client.register_script(_ADD_IF_ABSENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, prefix: str = "chexmix-push") -> "RedisDelayedQueue":
        import redis.asyncio as aioredis

        client = aioredis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis queue configured: %s (prefix=%s)", url.split("@")[-1], prefix)
        return cls(client, prefix=prefix)

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except RedisError as exc:
            raise QueueUnavailableError(operation, str(exc)) from exc

    async def upsert(self, job: Job) -> None:
        async with self._guard("upsert"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self.jobs_key, job.id, json.dumps(job.to_dict()))
                pipe.zadd(self.due_key, {job.id: job.not_before})
                await pipe.execute()

    async def add_if_absent(self, job: Job) -> bool:
        async with self._guard("add_if_absent"):
            added = await self._add_if_absent(
                keys=[self.due_key, self.jobs_key],
                args=[job.id, job.not_before, json.dumps(job.to_dict())],
            )
        return bool(added)

    async def remove(self, job_id: str) -> bool:
        async with self._guard("remove"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hdel(self.jobs_key, job_id)
                pipe.zrem(self.due_key, job_id)
                deleted, _ = await pipe.execute()
        return bool(deleted)

    async def claim_due(self, now_ms: float) -> Optional[Job]:
        async with self._guard("claim"):
            raw = await self._claim(
                keys=[self.due_key, self.jobs_key],
                args=[now_ms],
            )
        if not raw:
            return None
        return Job.from_dict(json.loads(raw))

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._guard("get"):
            raw = await self._client.hget(self.jobs_key, job_id)
        return Job.from_dict(json.loads(raw)) if raw else None

    async def pending_count(self) -> int:
        async with self._guard("count"):
            return int(await self._client.zcard(self.due_key))

    async def next_due_at(self) -> Optional[float]:
        async with self._guard("next_due"):
            head = await self._client.zrange(self.due_key, 0, 0, withscores=True)
        if not head:
            return None
        return float(head[0][1])

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis queue connection closed")


# ═══════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryDelayedQueue(DelayedQueue):
    """
    Process-local queue used when no Redis URL is configured.

    Jobs are lost on restart. An asyncio.Event wakes idle workers as soon as
    a job is added, so short delays are honoured without tight polling.
    """

    name = "memory"

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._changed = asyncio.Event()

    async def upsert(self, job: Job) -> None:
        async with self._lock:
            self._jobs[job.id] = job
        self._changed.set()

    async def add_if_absent(self, job: Job) -> bool:
        async with self._lock:
            if job.id in self._jobs:
                return False
            self._jobs[job.id] = job
        self._changed.set()
        return True

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            removed = self._jobs.pop(job_id, None) is not None
        if removed:
            self._changed.set()
        return removed

    async def claim_due(self, now_ms: float) -> Optional[Job]:
        async with self._lock:
            due = [j for j in self._jobs.values() if j.not_before <= now_ms]
            if not due:
                return None
            job = min(due, key=lambda j: j.not_before)
            del self._jobs[job.id]
            return job

    async def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def pending_count(self) -> int:
        return len(self._jobs)

    async def next_due_at(self) -> Optional[float]:
        if not self._jobs:
            return None
        return min(j.not_before for j in self._jobs.values())

    async def wait_for_change(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            pass
        finally:
            self._changed.clear()
