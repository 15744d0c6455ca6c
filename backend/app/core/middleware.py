"""
Request middleware — correlation IDs and one log line per API call.

Provides:
    • X-Request-ID header (taken from the caller or generated)
    • X-Process-Time header
    • A log line per call naming the push job it touched, if any
    • Request context for downstream log enrichment

Routes that touch the queue leave ``request.state.job_id`` behind (and
``job_removed`` for cancel) so a scheduleNext or cancel can be traced from
the access line to the worker's delivery line.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Probe and docs traffic is not worth a log line
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


def _job_suffix(request: Request) -> str:
    job_id = getattr(request.state, "job_id", None)
    if not job_id:
        return ""
    removed = getattr(request.state, "job_removed", None)
    if removed is None:
        return f" job={job_id[:12]}"
    return f" job={job_id[:12]} removed={str(removed).lower()}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, time it and log the push job it touched."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms)", request.method, path, duration_ms,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            extra = {"duration_ms": duration_ms, "status_code": response.status_code}
            job_id = getattr(request.state, "job_id", None)
            if job_id:
                extra["job_id"] = job_id
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s → %d (%.1fms)%s",
                request.method, path, response.status_code, duration_ms,
                _job_suffix(request),
                extra=extra,
            )

        set_request_context()
        return response
