"""
In-memory TTL cache for dashboard reads

Entries expire individually; expired entries are dropped lazily on read and
in bulk by a periodic cleanup task.
"""
import asyncio
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from gateway.core.config import settings

logger = logging.getLogger(__name__)


class MemoryCache:
    """Process-local key/value cache with per-entry expiry"""

    def __init__(
        self,
        default_ttl: float = settings.CACHE_DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expiry = self.clock() + (ttl if ttl is not None else self.default_ttl)
        self._entries[key] = (value, expiry)

    def get(self, key: str) -> Optional[Any]:
        item = self._entries.get(key)
        if item is None:
            return None

        value, expiry = item
        if self.clock() > expiry:
            del self._entries[key]
            return None

        return value

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix"""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self.clock()
        expired = [k for k, (_, expiry) in self._entries.items() if now > expiry]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    async def _cleanup_loop(self, interval: int):
        while True:
            try:
                await asyncio.sleep(interval)
                removed = self.cleanup()
                if removed:
                    logger.debug(f"Cache cleanup removed {removed} entries")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cache cleanup error: {e}")

    def start_cleanup(self, interval: int = settings.CACHE_CLEANUP_INTERVAL) -> None:
        if self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None


cache = MemoryCache()


def invalidate_user_cache(user_id: str) -> None:
    """Drop every dashboard entry cached for a user"""
    cache.delete(f"api-keys:{user_id}")
    cache.delete(f"overview:{user_id}")
    cache.delete_prefix(f"usage:{user_id}:")
