"""Background loop ending contests whose scheduled end time has passed."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from core import get_logger
from core.constants import ContestDefaults
from core.exceptions import ApplicationError
from database.models import Contest
from services.contests import ContestLifecycleManager

logger = get_logger(__name__)

EndedCallback = Callable[[Contest], Awaitable[None]]


class ContestScheduler:
    """Periodically runs :meth:`ContestLifecycleManager.expire_due`."""

    def __init__(
        self,
        contests: ContestLifecycleManager,
        interval: float = ContestDefaults.CHECK_INTERVAL,
        on_ended: Optional[EndedCallback] = None,
    ) -> None:
        self.contests = contests
        self.interval = interval
        self.on_ended = on_ended
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def check_once(self) -> List[Contest]:
        ended = await self.contests.expire_due()
        if self.on_ended is not None:
            for contest in ended:
                await self.on_ended(contest)
        return ended

    async def scheduler_loop(self) -> None:
        logger.info(f"Contest scheduler started (interval: {self.interval}s)")
        while self.running:
            try:
                await self.check_once()
            except ApplicationError as exc:
                # Retried on the next tick
                logger.warning(f"Scheduled contest check failed: {exc.message}")
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self.running:
            logger.warning("Contest scheduler is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self.scheduler_loop())

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        logger.info("Contest scheduler stopped")
