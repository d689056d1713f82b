"""
Per-key fixed-window rate limiting (in-process, no external dependencies)

Each API key gets a counter that resets at the end of a fixed window
(one hour by default). Requests at a window boundary are not smoothed.

State lives in this process only. Several server instances each enforce
the quota independently; a shared store would be needed to limit a key
across instances.
"""
import asyncio
import math
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from gateway.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Outcome of a single check"""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the window ends
    retry_after: Optional[int] = None  # seconds, only set when denied

    @property
    def headers(self) -> Dict[str, str]:
        """Rate limit headers in OpenAI naming"""
        headers = {
            "x-ratelimit-limit-requests": str(self.limit),
            "x-ratelimit-remaining-requests": str(self.remaining),
            "x-ratelimit-reset-requests": str(math.ceil(self.reset_at)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class WindowState:
    """Counter for a single key"""
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Fixed-window request counter keyed by API key id.

    The clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(
        self,
        window_seconds: int = settings.RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, WindowState] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def check_and_increment(
        self,
        key: str,
        limit: int,
        window_seconds: Optional[int] = None,
    ) -> RateLimitDecision:
        """
        Count a request for `key` and decide whether it may proceed.

        Args:
            key: Identifier of the counter (the API key id)
            limit: Requests allowed per window
            window_seconds: Window length, defaults to the limiter's window

        Returns:
            RateLimitDecision; when denied the counter is left unchanged
        """
        window = window_seconds or self.window_seconds

        async with self._lock:
            now = self.clock()
            state = self._windows.get(key)

            if state is None or now >= state.reset_at:
                state = WindowState(count=1, reset_at=now + window)
                self._windows[key] = state
                return RateLimitDecision(
                    allowed=True,
                    limit=limit,
                    remaining=max(0, limit - 1),
                    reset_at=state.reset_at,
                )

            if state.count >= limit:
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_at=state.reset_at,
                    retry_after=max(1, math.ceil(state.reset_at - now)),
                )

            state.count += 1
            return RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - state.count),
                reset_at=state.reset_at,
            )

    async def cleanup(self) -> int:
        """Remove counters whose window has ended. Returns how many were dropped."""
        async with self._lock:
            now = self.clock()
            stale_keys = [
                key for key, state in self._windows.items()
                if now >= state.reset_at
            ]
            for key in stale_keys:
                del self._windows[key]
        if stale_keys:
            logger.debug(f"Rate limiter cleanup removed {len(stale_keys)} expired windows")
        return len(stale_keys)

    async def reset(self, key: Optional[str] = None):
        """Forget one counter, or all of them when key is None"""
        async with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)

    async def _cleanup_loop(self, interval: int):
        while True:
            try:
                await asyncio.sleep(interval)
                await self.cleanup()
            except asyncio.CancelledError:
                logger.info("Rate limiter cleanup stopped")
                break
            except Exception as e:
                logger.error(f"Rate limiter cleanup error: {e}")

    def start_cleanup(self, interval: int = settings.RATE_LIMIT_CLEANUP_INTERVAL) -> None:
        """Start the periodic cleanup task on the running event loop"""
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


# Global rate limiter instance
rate_limiter = FixedWindowRateLimiter()


def get_rate_limiter() -> FixedWindowRateLimiter:
    """FastAPI dependency returning the process-wide limiter"""
    return rate_limiter
