from __future__ import annotations

import re
from typing import Any


_BEARER_RE = re.compile(r"(?i)bearer\s+[A-Za-z0-9._:\-]+")
_HEX_SECRET_RE = re.compile(r"\b[0-9a-fA-F]{64}\b")
_ADDRESS_RE = re.compile(r"\b(0x[0-9a-fA-F]{4})[0-9a-fA-F]{32}([0-9a-fA-F]{4})\b")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "password",
    "ciphertext",
    "api_key",
    "apikey",
)


def redact_text(value: str) -> str:
    masked = _BEARER_RE.sub("Bearer [REDACTED]", value)
    masked = _HEX_SECRET_RE.sub("[REDACTED]", masked)
    masked = _ADDRESS_RE.sub(lambda m: f"{m.group(1)}...{m.group(2)}", masked)
    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        else:
            out[k] = redact_value(v)
    return out
