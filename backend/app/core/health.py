"""
Health check aggregation — deep health probe for the push subsystem.

Checks:
    • Queue backend connectivity and backlog (Redis or in-memory)
    • Web Push (VAPID) configuration
    • Worker tasks alive in this process

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core.config import settings
from backend.app.core.errors import QueueUnavailableError

if TYPE_CHECKING:
    from backend.app.push.runtime import PushRuntime

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_queue(runtime: "PushRuntime") -> ComponentHealth:
    """Ping the queue backend and report its backlog."""
    comp = ComponentHealth(name="queue")
    start = time.monotonic()
    queue = runtime.queue
    if queue is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No queue backend configured"
    else:
        try:
            await queue.ping()
            comp.details = {
                "backend": queue.name,
                "pending": await queue.pending_count(),
            }
            if runtime.capability.durable_backend:
                comp.message = "Durable queue available"
            else:
                comp.status = HealthStatus.DEGRADED
                comp.message = "In-memory queue (not durable)"
        except QueueUnavailableError as e:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = e.message
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_web_push(runtime: "PushRuntime") -> ComponentHealth:
    """Check VAPID credentials are present."""
    comp = ComponentHealth(name="web_push")
    start = time.monotonic()
    if runtime.capability.delivery_configured:
        comp.message = "VAPID keys configured"
        comp.details = {"subject": settings.VAPID_SUBJECT}
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "VAPID keys not set; scheduling disabled"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_workers(runtime: "PushRuntime") -> ComponentHealth:
    """Count in-process workers whose task is still running."""
    comp = ComponentHealth(name="workers")
    start = time.monotonic()
    alive = [
        w.name for w, task in zip(runtime.workers, runtime.tasks)
        if w.running and not task.done()
    ]
    comp.details = {
        "alive": alive,
        "processed": sum(w.processed for w in runtime.workers),
    }
    if not runtime.workers:
        comp.message = "No in-process workers (external worker expected)"
    elif len(alive) < len(runtime.workers):
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{len(alive)}/{len(runtime.workers)} workers running"
    else:
        comp.message = f"{len(alive)} workers running"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(runtime: "PushRuntime") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for check in (check_queue, check_web_push, check_workers):
        report.components.append(await check(runtime))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
