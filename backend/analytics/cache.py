"""Short-lived in-process cache for computed metric payloads."""

import threading
import time
from typing import Any, Hashable, Optional


class ExpiringCache:
    """Thread-safe key/value cache whose entries expire after a TTL.

    Entries are never invalidated early; the underlying data changes more
    slowly than the TTL window.
    """

    def __init__(self, default_ttl: float = 30.0, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class NullCache:
    """Cache that never stores anything."""

    def get(self, key):
        return None

    def put(self, key, value, ttl=None):
        pass

    def clear(self):
        pass
