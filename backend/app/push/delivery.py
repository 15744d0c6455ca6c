"""
delivery.py — Send one notification to one subscription via Web Push.

Delivery mechanism:
    • Web Push Protocol (RFC 8030) with VAPID authentication (RFC 8292)
    • Payload encryption (RFC 8291) delegated to pywebpush
    • Payload: JSON {"title": ..., "body": ...} read by the service worker

═══════════════════════════════════════════════════════════════════════════
OUTCOME CLASSIFICATION
═══════════════════════════════════════════════════════════════════════════

    Push service response          Outcome
    ─────────────────────────      ─────────────────
    2xx                            DELIVERED
    404 Not Found / 410 Gone       PERMANENT_FAILURE  (subscription expired
                                                       or revoked)
    any other status               TRANSIENT_FAILURE
    network error / timeout        TRANSIENT_FAILURE

This module is the only place that inspects transport errors. Callers get a
DeliveryResult and act on its outcome.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Optional

from pywebpush import WebPushException, webpush
from requests.exceptions import RequestException

from backend.app.core.logging_config import short_endpoint
from backend.app.push.models import (
    DeliveryOutcome,
    DeliveryResult,
    NotificationPayload,
    Subscription,
)

logger = logging.getLogger(__name__)

GONE_STATUSES = frozenset({404, 410})


def classify_status(status_code: Optional[int]) -> DeliveryOutcome:
    """Map a push-service HTTP status to a delivery outcome."""
    if status_code is None:
        return DeliveryOutcome.TRANSIENT_FAILURE
    if 200 <= status_code < 300:
        return DeliveryOutcome.DELIVERED
    if status_code in GONE_STATUSES:
        return DeliveryOutcome.PERMANENT_FAILURE
    return DeliveryOutcome.TRANSIENT_FAILURE


class DeliveryClient(abc.ABC):
    """Anything that can push a payload to a subscription."""

    @abc.abstractmethod
    async def deliver(
        self, subscription: Subscription, payload: NotificationPayload,
    ) -> DeliveryResult:
        ...


class WebPushDeliveryClient(DeliveryClient):
    """
    pywebpush-backed delivery client.

    Parameters
    ----------
    vapid_private_key : str
        Application server private key (base64url or PEM path).
    vapid_subject : str
        ``mailto:`` or ``https:`` contact placed in the VAPID ``sub`` claim.
    ttl_seconds : int
        How long the push service should hold the message for an offline device.
    timeout_seconds : float
        Upper bound on one send; exceeding it counts as a transient failure.
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        *,
        ttl_seconds: int = 180,
        timeout_seconds: float = 10.0,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds

    def _send(self, subscription: Subscription, data: str):
        # pywebpush writes aud/exp into the claims dict, so build a fresh one
        return webpush(
            subscription_info=subscription.to_dict(),
            data=data,
            vapid_private_key=self.vapid_private_key,
            vapid_claims={"sub": self.vapid_subject},
            ttl=self.ttl_seconds,
            timeout=self.timeout_seconds,
        )

    async def deliver(
        self, subscription: Subscription, payload: NotificationPayload,
    ) -> DeliveryResult:
        data = json.dumps(payload.to_dict())
        endpoint = short_endpoint(subscription.endpoint)

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._send, subscription, data),
                timeout=self.timeout_seconds,
            )
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            return DeliveryResult(
                outcome=classify_status(status),
                status_code=status,
                error=str(exc),
            )
        except asyncio.TimeoutError:
            return DeliveryResult(
                outcome=DeliveryOutcome.TRANSIENT_FAILURE,
                error=f"timed out after {self.timeout_seconds:.1f}s",
            )
        except RequestException as exc:
            return DeliveryResult(
                outcome=DeliveryOutcome.TRANSIENT_FAILURE,
                error=f"network error: {exc}",
            )
        except Exception as exc:
            logger.exception("[WEB_PUSH] Unexpected send failure → %s", endpoint)
            return DeliveryResult(
                outcome=DeliveryOutcome.TRANSIENT_FAILURE,
                error=f"{type(exc).__name__}: {exc}",
            )

        status = getattr(response, "status_code", None)
        logger.debug("[WEB_PUSH] %s → %s", endpoint, status)
        return DeliveryResult(outcome=classify_status(status), status_code=status)
