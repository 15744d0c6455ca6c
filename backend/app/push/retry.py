"""
retry.py — What to do after a transient delivery failure.

═══════════════════════════════════════════════════════════════════════════
POLICIES
═══════════════════════════════════════════════════════════════════════════

    Kind          Re-enqueue?                    Delay before attempt n
    ──────────    ───────────────────────────    ──────────────────────────
    none          never (notification dropped)   —
    fixed         while n <= max_attempts        base
    exponential   while n <= max_attempts        base × 2^(n - 1)

``n`` is the retry number (1 for the first re-enqueue). Permanent failures
are never retried regardless of policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from backend.app.core.config import Settings


class RetryKind(str, Enum):
    NONE        = "none"
    FIXED       = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Re-enqueue parameters for transient failures."""
    kind: RetryKind = RetryKind.NONE
    max_attempts: int = 0
    backoff_base_seconds: float = 30.0

    def next_delay(self, retry_number: int) -> Optional[float]:
        """
        Delay in seconds before retry ``retry_number`` (1-based).

        Returns None when no further retry should happen.
        """
        if self.kind is RetryKind.NONE or retry_number > self.max_attempts:
            return None
        if self.kind is RetryKind.EXPONENTIAL:
            return self.backoff_base_seconds * (2 ** (retry_number - 1))
        return self.backoff_base_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        try:
            kind = RetryKind(settings.RETRY_POLICY.lower())
        except ValueError:
            raise ValueError(
                f"Invalid RETRY_POLICY '{settings.RETRY_POLICY}'. "
                f"Must be one of: {[k.value for k in RetryKind]}"
            )
        return cls(
            kind=kind,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            backoff_base_seconds=settings.RETRY_BACKOFF_SECONDS,
        )


NO_RETRY = RetryPolicy()
