"""HMAC-SHA256 signing for webhook envelopes."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any


def canonical_json(payload: Any) -> bytes:
    """Compact JSON in insertion order, matching what JavaScript relays emit."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def sign(payload: Any, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), canonical_json(payload), hashlib.sha256).hexdigest()


def verify(payload: Any, signature: str | None, secret: str) -> bool:
    """Constant-time check. An empty secret disables verification."""
    if not secret:
        return True
    if not signature:
        return False
    candidate = signature.strip()
    if candidate.startswith("sha256="):
        candidate = candidate[len("sha256=") :]
    try:
        bytes.fromhex(candidate)
    except ValueError:
        return False
    return hmac.compare_digest(sign(payload, secret), candidate.lower())
