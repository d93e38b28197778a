"""Outbound send throttle shared by every send of a broadcast run."""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from asyncio_throttle import Throttler

# Polling step of the gap throttler; a gap wait may overshoot by this much
GAP_POLL_INTERVAL = 0.01


class SendThrottle:
    """Sliding-window rate limiter built on :class:`asyncio_throttle.Throttler`.

    At most ``limit`` sends start within any ``window`` seconds, and two
    consecutive sends are at least ``min_interval`` apart. Callers are served
    in arrival order.

    The gap throttler is entered last, so its timestamp is the real send
    time. The window throttler is entered before it, at most one gap wait
    earlier, so its period is widened by that wait.
    """

    def __init__(self, limit: int, window: float, min_interval: float = 0.0) -> None:
        if limit < 1:
            raise ValueError("Throttle limit must be at least 1")
        if window <= 0:
            raise ValueError("Throttle window must be positive")
        self.limit = limit
        self.window = window
        self.min_interval = max(0.0, min_interval)

        self._gap: Optional[Throttler] = None
        period = window
        if self.min_interval > 0:
            self._gap = Throttler(rate_limit=1, period=self.min_interval, retry_interval=GAP_POLL_INTERVAL)
            period += self.min_interval + GAP_POLL_INTERVAL
        self._window = Throttler(rate_limit=limit, period=period)

        self._lock = asyncio.Lock()
        self._sent = 0
        # Send time of the first send in the current batch of ``limit``
        self._batch_started: Optional[float] = None

    async def acquire(self) -> None:
        """Wait until one more send is allowed, then account for it."""
        async with self._lock:
            async with self._window:
                pass
            if self._gap is not None:
                async with self._gap:
                    pass
            if self._sent % self.limit == 0:
                self._batch_started = time.monotonic()
            self._sent += 1

    async def drain(self) -> None:
        """Wait until the window opened by the last batch has closed.

        After ``drain`` a run of M sends has lasted at least
        ``ceil(M / limit) * window`` seconds.
        """
        async with self._lock:
            if self._batch_started is not None:
                delay = self._batch_started + self.window - time.monotonic()
                if delay > 0:
                    await asyncio.sleep(delay)
            self._sent = 0
            self._batch_started = None
