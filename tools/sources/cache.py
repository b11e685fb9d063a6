"""Thread-safe TTL cache for context source results."""

import hashlib
import threading
import time
from collections.abc import Callable
from typing import Any


class InMemoryTTLCache:
    """
    Thread-safe in-memory cache with TTL (Time To Live).

    Uses sha256 hash of text as key (first 16 chars) and threading.Lock
    so the cache can be shared by concurrent pipeline runs.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        """
        Initialize cache with TTL.

        Args:
            ttl_seconds: Time to live in seconds for cached entries
            clock: Monotonic time source
        """
        self._cache: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._clock = clock

    def _make_key(self, text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    def get(self, text: str) -> Any | None:
        """Cached value if present and not expired, else None."""
        key = self._make_key(text)
        with self._lock:
            if key in self._cache:
                value, expiry = self._cache[key]
                if self._clock() < expiry:
                    return value
                del self._cache[key]
            return None

    def set(self, text: str, value: Any):
        key = self._make_key(text)
        with self._lock:
            self._cache[key] = (value, self._clock() + self._ttl)

    def clear(self):
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
