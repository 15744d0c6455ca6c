"""
Pydantic schemas for the push scheduling API.

Separated from the route handlers so they are reusable across the codebase
(worker tooling, tests). Field names follow the browser's camelCase JSON.

Request models are deliberately lenient: ``atMs`` and the subscription
endpoint are validated by the scheduler so malformed values surface as a
400 INVALID_REQUEST rather than a schema error. Cancel bodies have no model:
:func:`cancel_subscription` reads whatever arrives.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.app.push.models import Subscription, SubscriptionKeys


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class SubscriptionKeysIn(BaseModel):
    p256dh: str = Field("", description="Recipient public key (base64url)")
    auth: str = Field("", description="Auth secret (base64url)")


class SubscriptionIn(BaseModel):
    """``PushSubscription.toJSON()`` as sent by the browser."""
    model_config = ConfigDict(extra="ignore")

    endpoint: Optional[str] = Field(
        None,
        description="Push service URL for this recipient",
        examples=["https://push.example/abc123"],
    )
    keys: SubscriptionKeysIn = Field(default_factory=SubscriptionKeysIn)
    expirationTime: Optional[float] = None

    def to_subscription(self) -> Subscription:
        return Subscription(
            endpoint=self.endpoint or "",
            keys=SubscriptionKeys(p256dh=self.keys.p256dh, auth=self.keys.auth),
            expiration_time=self.expirationTime,
        )


class ScheduleNextRequest(BaseModel):
    """Body of POST /api/scheduleNext."""
    subscription: Optional[SubscriptionIn] = None
    atMs: Any = Field(
        None,
        description="Delivery time, epoch milliseconds",
        examples=[1760000000000],
    )
    title: str = Field("", examples=["Rest over"])
    body: Optional[str] = Field(None, examples=["Round 3 starts now"])


def cancel_subscription(payload: Any) -> Optional[Subscription]:
    """
    Pull the subscription out of a cancel body, whatever its shape.

    Cancel always answers 200, so anything without a usable string endpoint
    becomes ``None`` instead of a validation error.
    """
    if not isinstance(payload, dict):
        return None
    raw = payload.get("subscription")
    if not isinstance(raw, dict):
        return None
    endpoint = raw.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint:
        return None
    return Subscription(endpoint=endpoint)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class VapidKeyResponse(BaseModel):
    publicKey: str


class OkResponse(BaseModel):
    ok: bool = True


class ScheduleNextResponse(BaseModel):
    ok: bool = True
    scheduledInMs: int = Field(..., ge=0)
    jobId: str


class CancelResponse(BaseModel):
    ok: bool = True
    jobId: Optional[str] = None
