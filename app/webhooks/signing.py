# app/webhooks/signing.py
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable, Optional


def compute_signature(secret: str, timestamp: str, raw: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + raw
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(
    *,
    raw: bytes,
    signature_header: Optional[str],
    timestamp_header: Optional[str],
    secret: Optional[str],
    tolerance_s: int = 300,
    now: Callable[[], float] = time.time,
) -> tuple[bool, Optional[str]]:
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"
    if not timestamp_header or not timestamp_header.strip():
        return False, "MISSING_TIMESTAMP"

    ts = timestamp_header.strip()
    if tolerance_s > 0:
        try:
            sent_at = float(ts)
        except ValueError:
            return False, "INVALID_TIMESTAMP"
        # accept seconds or milliseconds
        if sent_at > 1e12:
            sent_at /= 1000.0
        if abs(now() - sent_at) > tolerance_s:
            return False, "STALE_TIMESTAMP"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = compute_signature(secret, ts, raw)
    if not hmac.compare_digest(expected, sig.lower()):
        return False, "INVALID_SIGNATURE"

    return True, None
