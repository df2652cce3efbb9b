import asyncio
import logging
import time
from typing import Callable

from app.core.config import settings
from app.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-user event budget over fixed wall-clock windows.

    Counters are keyed by ``(user_id, window bucket)`` so a new window starts
    from zero without any per-key expiry; stale buckets are dropped in bulk by
    ``clear()`` on a fixed interval.
    """

    def __init__(
        self,
        limit: int | None = None,
        window: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit if limit is not None else settings.SOCKET_RATE_LIMIT_EVENTS
        self.window = window if window is not None else settings.SOCKET_RATE_LIMIT_WINDOW
        self._clock = clock
        self._counts: dict[tuple[str, int], int] = {}
        self._running = False

    def _bucket(self, now: float) -> int:
        return int(now // self.window)

    def check(self, user_id: str) -> int:
        """Count one event for ``user_id`` or raise ``RateLimitError``.

        Check and increment happen without an await in between, so two events
        for the same user cannot both slip past the boundary.
        """
        bucket = self._bucket(self._clock())
        key = (user_id, bucket)
        current = self._counts.get(key, 0)
        if current >= self.limit:
            reset_time = (bucket + 1) * self.window
            logger.warning(f"Rate limit exceeded for user {user_id} ({self.limit}/{self.window}s)")
            raise RateLimitError(self.limit, reset_time)
        self._counts[key] = current + 1
        return self.limit - current - 1

    def clear(self) -> None:
        self._counts.clear()

    async def run_clear_loop(self, interval: float | None = None) -> None:
        interval = interval if interval is not None else settings.SOCKET_RATE_LIMIT_CLEAR_INTERVAL
        self._running = True
        while self._running:
            await asyncio.sleep(interval)
            self.clear()

    def stop(self) -> None:
        self._running = False
