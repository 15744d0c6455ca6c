"""
models.py — Shared data structures for deferred push delivery.

Defines:
    • SubscriptionKeys    — per-recipient encryption material
    • Subscription        — browser PushSubscription (endpoint + keys)
    • NotificationPayload — the message shown on the device
    • Job                 — one pending notification in the delayed queue
    • DeliveryOutcome     — terminal classification of a dispatch
    • DeliveryResult      — outcome plus transport details

Everything here round-trips through plain dicts so the Redis queue can store
jobs as JSON and the API layer can hand over browser payloads unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryOutcome(str, Enum):
    """How a single dispatch ended."""
    DELIVERED         = "delivered"           # push service accepted (2xx)
    PERMANENT_FAILURE = "permanent_failure"   # subscription gone, drop it
    TRANSIENT_FAILURE = "transient_failure"   # network / temporary error


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SubscriptionKeys:
    """Keys the browser hands out with a subscription (base64url strings)."""
    p256dh: str = ""
    auth: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"p256dh": self.p256dh, "auth": self.auth}


@dataclass(frozen=True)
class Subscription:
    """
    A recipient's push address.

    Attributes
    ----------
    endpoint : str
        Push-service URL unique to this recipient; the basis of job identity.
    keys : SubscriptionKeys
        Encryption key and auth secret used by the transport.
    expiration_time : float | None
        Optional expiry reported by the browser (epoch ms).
    """
    endpoint: str
    keys: SubscriptionKeys = field(default_factory=SubscriptionKeys)
    expiration_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subscription":
        keys = data.get("keys") or {}
        return cls(
            endpoint=data.get("endpoint") or "",
            keys=SubscriptionKeys(
                p256dh=keys.get("p256dh", ""),
                auth=keys.get("auth", ""),
            ),
            expiration_time=data.get("expirationTime"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Shape expected by ``pywebpush.webpush(subscription_info=...)``."""
        d: Dict[str, Any] = {
            "endpoint": self.endpoint,
            "keys": self.keys.to_dict(),
        }
        if self.expiration_time is not None:
            d["expirationTime"] = self.expiration_time
        return d


@dataclass(frozen=True)
class NotificationPayload:
    """The notification title and optional body."""
    title: str
    body: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationPayload":
        return cls(title=data.get("title") or "", body=data.get("body"))

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "body": self.body}


@dataclass(frozen=True)
class Job:
    """
    One deferred notification.

    ``not_before`` is epoch milliseconds. ``attempt`` counts re-enqueues made
    by the retry policy; a freshly scheduled job starts at 0.
    """
    id: str
    not_before: float
    payload: NotificationPayload
    subscription: Subscription
    attempt: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            not_before=float(data["notBefore"]),
            payload=NotificationPayload.from_dict(data.get("payload") or {}),
            subscription=Subscription.from_dict(data.get("subscription") or {}),
            attempt=int(data.get("attempt", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "notBefore": self.not_before,
            "payload": self.payload.to_dict(),
            "subscription": self.subscription.to_dict(),
            "attempt": self.attempt,
        }


@dataclass
class DeliveryResult:
    """Result of handing one payload to the push transport."""
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None
    job_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED
