from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger("chainpay.cache")


class TTLCache(Generic[T]):
    """
    Single-value read-mostly cache.

    When the value expires, one caller refreshes it while concurrent callers
    keep getting the stale value. Callers only block when there is no value
    at all yet. A failed refresh falls back to the stale value if one exists.
    """

    def __init__(
        self,
        loader: Callable[[], T],
        ttl_s: float,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl_s = float(ttl_s)
        self._name = name
        self._clock = clock
        self._value: Optional[T] = None
        self._fetched_at: float = 0.0
        self._refresh_lock = Lock()

    def _fresh(self) -> bool:
        return self._value is not None and (self._clock() - self._fetched_at) < self._ttl_s

    def get(self) -> T:
        if self._fresh():
            return self._value  # type: ignore[return-value]

        stale = self._value
        if not self._refresh_lock.acquire(blocking=stale is None):
            # another caller is refreshing; serve what we have
            return stale  # type: ignore[return-value]

        try:
            if self._fresh():
                return self._value  # type: ignore[return-value]
            try:
                value = self._loader()
            except Exception:
                if self._value is not None:
                    logger.warning("%s refresh failed; serving stale value", self._name, exc_info=True)
                    return self._value
                raise
            self._value = value
            self._fetched_at = self._clock()
            return value
        finally:
            self._refresh_lock.release()

    def set(self, value: T) -> None:
        self._value = value
        self._fetched_at = self._clock()

    def clear(self) -> None:
        self._value = None
        self._fetched_at = 0.0
