# app/errors.py
from __future__ import annotations

from typing import Any, Optional


class ChainPayError(Exception):
    """Base for caller-visible errors raised at request time."""

    http_status = 400
    code = "ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ValidationFailed(ChainPayError):
    http_status = 400
    code = "VALIDATION_FAILED"


class NotFound(ChainPayError):
    http_status = 404
    code = "NOT_FOUND"


class ProviderError(ChainPayError):
    """
    Error surfaced by the custody provider. Status and provider code are
    carried through as-is; callers decide what they mean.
    """

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, status: int = 502, provider_code: Any = None):
        super().__init__(message)
        self.status = int(status)
        self.provider_code = provider_code
        # provider 4xx stays 4xx for the caller except 401/403, which concern our own credentials
        if 400 <= self.status < 500 and self.status not in (401, 403):
            self.http_status = self.status
        else:
            self.http_status = 502

    def to_detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "status": self.status,
            "code": self.provider_code,
            "message": self.message,
        }


class InvalidTransition(Exception):
    pass
