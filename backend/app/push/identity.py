"""
identity.py — Stable job identity derived from a subscription endpoint.

The job id is the SHA-1 hex digest of the endpoint. Keying the queue on it
means a second schedule for the same recipient replaces the first instead of
adding a duplicate. Endpoint validation is the scheduler's job; every string
hashes here.
"""

from __future__ import annotations

import hashlib


def subscription_id(endpoint: str) -> str:
    """Return the 40-char hex job id for ``endpoint``."""
    return hashlib.sha1(endpoint.encode("utf-8")).hexdigest()
