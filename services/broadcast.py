"""Bulk delivery of one operator message to every known chat."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from aiogram import Bot
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramNotFound,
    TelegramRetryAfter,
    TelegramServerError,
    TelegramUnauthorizedError,
)

from core import get_logger, BroadcastDefaults, TelegramLimits
from core.exceptions import ApplicationError, BroadcastError, TransientIO, ValidationError
from database.repositories import EntityStore
from services.throttle import SendThrottle

logger = get_logger(__name__)

# Target blocked the bot, was deleted, or rejected the message itself
PERMANENT_ERRORS = (TelegramForbiddenError, TelegramBadRequest, TelegramNotFound)
TRANSIENT_ERRORS = (TelegramRetryAfter, TelegramNetworkError, TelegramServerError, TransientIO)


@dataclass(slots=True)
class DeliveryFailure:
    target: int
    reason: str


@dataclass(slots=True)
class DeliveryReport:
    """Outcome of one broadcast run."""
    succeeded: List[int] = field(default_factory=list)
    failed: List[DeliveryFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class BroadcastRunner:
    """Sends a message to all channels and users the store knows about.

    Targets are served one after the other through a single
    :class:`SendThrottle`; per-target failures are collected in the report
    and never abort the run.
    """

    def __init__(
        self,
        bot: Bot,
        store: EntityStore,
        throttle: Optional[SendThrottle] = None,
        retry_attempts: int = BroadcastDefaults.RETRY_ATTEMPTS,
        retry_delay: float = BroadcastDefaults.RETRY_DELAY,
        parse_mode: Optional[str] = BroadcastDefaults.PARSE_MODE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize broadcast runner.

        Args:
            bot: Aiogram Bot instance
            store: Entity store used to enumerate targets
            throttle: Shared send throttle; defaults to Telegram-friendly limits
            retry_attempts: Attempts per target for transient failures
            retry_delay: Backoff base, the n-th retry waits ``retry_delay ** n``
            parse_mode: Rich-text dialect the message is written in
            sleep: Backoff sleep, injectable for tests
        """
        self.bot = bot
        self.store = store
        self.throttle = throttle or SendThrottle(
            BroadcastDefaults.WINDOW_LIMIT,
            BroadcastDefaults.WINDOW_SECONDS,
            BroadcastDefaults.MIN_INTERVAL,
        )
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.parse_mode = parse_mode
        self._sleep = sleep

    async def run(self, message: str) -> DeliveryReport:
        """Deliver ``message`` to every target once.

        Returns only after the throttle window of the last batch has closed,
        so back-to-back runs never exceed the send rate.

        Raises:
            ValidationError: message is empty or longer than one Telegram message
            BroadcastError: targets cannot be enumerated, or the bot token
                was rejected
        """
        if not message.strip():
            raise ValidationError("Broadcast message is empty")
        if len(message) > TelegramLimits.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Broadcast message is {len(message)} characters long, "
                f"the limit is {TelegramLimits.MESSAGE_MAX_LENGTH}"
            )

        try:
            targets = await self.store.list_broadcast_targets()
        except ApplicationError as exc:
            raise BroadcastError(f"Cannot enumerate broadcast targets: {exc.message}") from exc

        logger.warning(
            f"Broadcasting to {len(targets)} targets. Runs are not resumable: "
            f"running again re-sends to every target"
        )

        report = DeliveryReport()
        for target in targets:
            reason = await self._deliver(target, message)
            if reason is None:
                report.succeeded.append(target)
            else:
                report.failed.append(DeliveryFailure(target, reason))
        await self.throttle.drain()

        logger.info(
            f"Broadcast finished: {len(report.succeeded)} delivered, {len(report.failed)} failed"
        )
        return report

    async def _deliver(self, target: int, message: str) -> Optional[str]:
        """Send the message to one target.

        Returns:
            None on success, otherwise the failure reason
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            try:
                await self.throttle.acquire()
                await self.bot.send_message(target, message, parse_mode=self.parse_mode)
                return None
            except TelegramUnauthorizedError as exc:
                raise BroadcastError(f"Bot token rejected: {exc.message}") from exc
            except PERMANENT_ERRORS as exc:
                logger.info(f"Skipping {target}: {exc.message}")
                return exc.message
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                if attempt < self.retry_attempts - 1:
                    if isinstance(exc, TelegramRetryAfter):
                        delay = exc.retry_after
                    else:
                        delay = self.retry_delay ** attempt
                    logger.warning(
                        f"Failed to send to {target}, attempt {attempt + 1}/{self.retry_attempts}. "
                        f"Retrying in {delay}s. Error: {exc}"
                    )
                    await self._sleep(delay)

        logger.error(f"Failed to send to {target} after {self.retry_attempts} attempts: {last_error}")
        return f"Gave up after {self.retry_attempts} attempts: {last_error}"
