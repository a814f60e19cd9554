"""
Response cache for upstream pricing data.

Provides in-memory caching with per-entry TTL to reduce calls to the pricing
service. Entries live for the process lifetime only.
"""
import asyncio
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from ..config import settings
from ..logging_config import get_logger

logger = get_logger(__name__)


class ResponseCache:
    """
    In-memory keyed cache where every entry carries its own expiry.

    Different payload classes are stored with different TTLs (the stock list
    changes rarely, price history quickly). The TTL is measured from the write
    and is not extended by reads. An expired entry is reported as a miss.

    Each entry is stored as a single ``(value, expires_at)`` tuple and all
    access goes through one lock, so a reader never observes a partially
    written entry.
    """

    def __init__(
        self,
        default_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl_seconds: TTL used when set() is called without one.
                Defaults to config value.
            clock: Monotonic time source in seconds. Injectable for tests.
        """
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._default_ttl = (
            settings.cache_ttl_default_seconds
            if default_ttl_seconds is None else default_ttl_seconds
        )
        if self._default_ttl <= 0:
            raise ValueError(f"default_ttl_seconds must be positive, got {self._default_ttl}")
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from cache if not expired.

        Args:
            key: Cache key.

        Returns:
            Cached value if present and fresh, None otherwise.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache miss for {key}")
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                logger.debug(f"Cache expired for {key}")
                del self._entries[key]
                return None
        logger.debug(f"Cache hit for {key}")
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """
        Store a value, replacing any previous entry for the key.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl_seconds: Lifetime of this entry. Defaults to the cache default.
        """
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
        logger.debug(f"Cached {key} for {ttl}s")

    def delete(self, key: str) -> bool:
        """
        Remove an entry from cache.

        Args:
            key: Cache key.

        Returns:
            True if entry was removed, False if not found.
        """
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                logger.debug(f"Deleted cache entry for {key}")
                return True
        return False

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """
        Remove every entry whose key starts with ``prefix``, or all entries.

        Args:
            prefix: Key prefix to match. None clears the whole cache.

        Returns:
            Number of entries removed.
        """
        if prefix is None:
            return self.clear()
        with self._lock:
            matching = [key for key in self._entries if key.startswith(prefix)]
            for key in matching:
                del self._entries[key]
        logger.info(f"Invalidated {len(matching)} cache entries with prefix {prefix!r}")
        return len(matching)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from cache.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, (_, expires_at) in self._entries.items()
                if now >= expires_at
            ]
            for key in expired_keys:
                del self._entries[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    @property
    def size(self) -> int:
        """Return the number of entries in cache, expired or not."""
        with self._lock:
            return len(self._entries)


async def run_cache_sweeper(cache: ResponseCache, interval_seconds: float) -> None:
    """
    Periodically evict expired entries until cancelled.

    Lookups already evict lazily; the sweep keeps entries that are never read
    again from accumulating.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        removed = cache.cleanup_expired()
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
