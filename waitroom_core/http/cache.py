"""
Room Config Cache
=================
Process-wide TTL cache for room configuration payloads.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class RoomConfigCache:
    """
    In-memory cache with absolute expiry.

    Concurrent writers race harmlessly: the last write wins and every entry
    is idempotent to refetch.
    """

    def __init__(self, time_func: Callable[[], float] = time.monotonic):
        self._time = time_func
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        """Return the cached payload, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if self._time() >= expires_at:
                del self._entries[key]
                return None
            return payload

    def set(self, key: str, payload: str, ttl: float) -> None:
        """Store a payload until ``now + ttl``. A ttl of 0 or less stores nothing."""
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._time() + ttl, payload)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_room_cache: Optional[RoomConfigCache] = None
_cache_lock = threading.Lock()


def get_room_cache() -> RoomConfigCache:
    """Get or create the process-wide room cache."""
    global _room_cache
    if _room_cache is None:
        with _cache_lock:
            if _room_cache is None:
                _room_cache = RoomConfigCache()
    return _room_cache
