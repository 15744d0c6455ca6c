"""
Standalone push worker process.

Run with:
    python -m backend.app.worker

Shares the queue with the API (set RUN_WORKER_IN_PROCESS=false there) and
can be started any number of times; jobs are claimed atomically so no two
processes deliver the same notification. Needs REDIS_URL, since an in-memory
queue is invisible to other processes.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from backend.app.core.config import settings
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.push.runtime import PushRuntime

logger = get_logger(__name__)


async def main() -> int:
    runtime = PushRuntime.from_settings(settings)
    if not runtime.capability.durable_backend:
        logger.error("REDIS_URL is required for a standalone worker")
        return 1
    if not runtime.can_dispatch:
        logger.error("VAPID keys are required for a standalone worker")
        await runtime.shutdown()
        return 1

    def _stop() -> None:
        logger.info("Stopping push workers")
        for worker in runtime.workers:
            worker.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    runtime.start_workers()
    logger.info("Dispatching with %d worker(s)", len(runtime.workers))
    try:
        await runtime.wait()
    finally:
        await runtime.shutdown()
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(main()))
