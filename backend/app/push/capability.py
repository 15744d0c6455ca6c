"""
capability.py — What the push subsystem can do in this deployment.

Built once at startup from settings and injected into the scheduler and the
runtime. Tests construct it directly to force scheduling on or off.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from backend.app.core.config import Settings


@dataclass(frozen=True)
class PushCapability:
    """
    Attributes
    ----------
    durable_backend : bool
        A Redis URL is configured.
    delivery_configured : bool
        Both VAPID keys are present, so the worker can sign requests.
    allow_in_memory : bool
        Scheduling may fall back to the process-local queue.
    """
    durable_backend: bool
    delivery_configured: bool
    allow_in_memory: bool = True

    @property
    def scheduling_enabled(self) -> bool:
        return self.delivery_configured and (
            self.durable_backend or self.allow_in_memory
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushCapability":
        return cls(
            durable_backend=bool(settings.REDIS_URL),
            delivery_configured=bool(
                settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY
            ),
            allow_in_memory=settings.ALLOW_IN_MEMORY_QUEUE,
        )

    @classmethod
    def always(cls) -> "PushCapability":
        return cls(durable_backend=True, delivery_configured=True)

    @classmethod
    def never(cls) -> "PushCapability":
        return cls(durable_backend=False, delivery_configured=False, allow_in_memory=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "durable_backend": self.durable_backend,
            "delivery_configured": self.delivery_configured,
            "allow_in_memory": self.allow_in_memory,
            "scheduling_enabled": self.scheduling_enabled,
        }
