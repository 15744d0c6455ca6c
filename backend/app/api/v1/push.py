"""
FastAPI routes: deferred push scheduling.

Provides endpoints to:
    GET  /api/vapidPublicKey  — application server public key
    POST /api/subscribe       — acknowledge a subscription (nothing stored)
    POST /api/scheduleNext    — schedule / replace the pending notification
    POST /api/cancel          — drop the pending notification
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from backend.app.api.schemas import (
    CancelResponse,
    OkResponse,
    ScheduleNextRequest,
    ScheduleNextResponse,
    VapidKeyResponse,
    cancel_subscription,
)
from backend.app.core.config import settings
from backend.app.core.errors import UnauthorizedError
from backend.app.push.runtime import PushRuntime

router = APIRouter(prefix="/api", tags=["push"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_runtime(request: Request) -> PushRuntime:
    return request.app.state.push_runtime


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Enforce ``x-api-key`` only when SCHEDULE_API_KEY is configured."""
    if not settings.SCHEDULE_API_KEY:
        return
    if x_api_key != settings.SCHEDULE_API_KEY:
        raise UnauthorizedError()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/vapidPublicKey", response_model=VapidKeyResponse)
async def vapid_public_key(runtime: PushRuntime = Depends(get_runtime)):
    return VapidKeyResponse(publicKey=runtime.vapid_public_key)


@router.post(
    "/subscribe",
    response_model=OkResponse,
    dependencies=[Depends(require_api_key)],
)
async def subscribe():
    # The endpoint itself is the job key, so nothing is stored here
    return OkResponse()


@router.post(
    "/scheduleNext",
    response_model=ScheduleNextResponse,
    dependencies=[Depends(require_api_key)],
    summary="Schedule the next notification for a subscription",
    description=(
        "Replaces any notification already pending for the same subscription. "
        "Past times are delivered immediately. 400 on an invalid payload, "
        "503 when push scheduling is unavailable."
    ),
)
async def schedule_next(
    req: ScheduleNextRequest,
    request: Request,
    runtime: PushRuntime = Depends(get_runtime),
):
    subscription = req.subscription.to_subscription() if req.subscription else None
    result = await runtime.scheduler.schedule(
        subscription, req.atMs, req.title, req.body,
    )
    request.state.job_id = result.job_id
    return ScheduleNextResponse(scheduledInMs=result.delay_ms, jobId=result.job_id)


@router.post(
    "/cancel",
    response_model=CancelResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_api_key)],
    summary="Cancel the pending notification for a subscription",
    description=(
        'Body: `{"subscription": {"endpoint": "..."}}`. '
        "Always 200, including for a missing or malformed body."
    ),
)
async def cancel(
    request: Request,
    runtime: PushRuntime = Depends(get_runtime),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    result = await runtime.scheduler.cancel(cancel_subscription(payload))
    request.state.job_id = result.job_id
    request.state.job_removed = result.removed
    return CancelResponse(jobId=result.job_id)
