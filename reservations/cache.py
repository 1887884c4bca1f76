"""TTL cache for booking-independent availability data."""
from __future__ import annotations

from threading import RLock
from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

from .timewindow import DayLike, format_day_key

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    """Thread-safe TTL cache.

    Only values that no booking write can change belong here; booking state is
    always read from the database.
    """

    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = RLock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._cache[key] = value

    def pop(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


def grid_key(day: DayLike, fragment: str) -> str:
    return f"grid:{format_day_key(day)}:{fragment}"
