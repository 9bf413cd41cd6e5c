"""
In-memory TTL store for analysis sessions.

A session holds the parsed rows of one uploaded file together with the
regeneration state of its charts, so follow-up requests can reuse them.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with expiration."""
    data: Any
    timestamp: float
    ttl: float  # Time to live in seconds


class SimpleCache:
    """Thread-safe in-memory cache with TTL."""

    def __init__(self, default_ttl: float = 3600):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if time.time() - entry.timestamp > entry.ttl:
                del self._cache[key]
                logger.debug(f"Cache entry expired: {key}")
                return None
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache with optional TTL."""
        with self._lock:
            self._cache[key] = CacheEntry(
                data=value,
                timestamp=time.time(),
                ttl=ttl or self.default_ttl
            )

    def touch(self, key: str) -> bool:
        """Restart the TTL of a live entry."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            entry.timestamp = time.time()
            return True

    def delete(self, key: str):
        with self._lock:
            self._cache.pop(key, None)

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            logger.info("Cache cleared")

    def cleanup_expired(self):
        """Remove expired entries."""
        with self._lock:
            now = time.time()
            expired_keys = [
                key for key, entry in self._cache.items()
                if now - entry.timestamp > entry.ttl
            ]
            for key in expired_keys:
                del self._cache[key]

            if expired_keys:
                logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        self.cleanup_expired()
        with self._lock:
            return {
                'size': len(self._cache),
                'default_ttl': self.default_ttl
            }


_session_cache = SimpleCache(default_ttl=3600)


def get_session_cache() -> SimpleCache:
    """Get the analysis session store."""
    return _session_cache


def new_session_id() -> str:
    return uuid.uuid4().hex
