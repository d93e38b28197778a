"""Deduplicating, order-preserving router for inbound updates."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set, Tuple

from aiogram import BaseMiddleware, Bot
from aiogram.types import TelegramObject, Update
from cachetools import LRUCache

from bot import messages
from bot.error_handler import reply_safely
from bot.handlers.commands import CommandHandlers
from bot.updates import (
    BotMembershipChanged,
    CommandReceived,
    InboundEvent,
    MembershipChanged,
    OtherUpdate,
    parse_update,
)
from core import get_logger
from core.constants import DispatcherDefaults
from core.exceptions import TransientIO
from database.repositories import EntityStore
from services.attribution import AttributionEngine
from services.invitations import is_invitation_token

logger = get_logger(__name__)


class UpdateDeduplicator:
    """Remembers which update ids were already taken.

    Keeps the highest id seen plus a bounded set of recent ids. An id is
    rejected when it is in the recent set or too old to be tracked by it
    (at or below ``highest - window``), so redeliveries are dropped even when
    the platform reorders them.
    """

    def __init__(self, window: int = DispatcherDefaults.RECENT_UPDATES_SIZE) -> None:
        self.window = window
        self.highest: Optional[int] = None
        self._recent: LRUCache = LRUCache(maxsize=window)

    def should_process(self, update_id: int) -> bool:
        if update_id in self._recent:
            return False
        if self.highest is not None and update_id <= self.highest - self.window:
            return False

        self._recent[update_id] = True
        if self.highest is None or update_id > self.highest:
            self.highest = update_id
        return True


class UpdateDispatcher:
    """Routes inbound events to attribution and command handling.

    Events touching the same chat run one at a time in delivery order; events
    for different chats run concurrently, bounded by ``worker_slots``.
    Transient store failures are retried with exponential backoff, then the
    single event is logged and dropped.
    """

    def __init__(
        self,
        bot: Bot,
        store: EntityStore,
        attribution: AttributionEngine,
        commands: CommandHandlers,
        bot_username: Optional[str] = None,
        worker_slots: int = DispatcherDefaults.WORKER_SLOTS,
        recent_updates_size: int = DispatcherDefaults.RECENT_UPDATES_SIZE,
        retry_attempts: int = DispatcherDefaults.EVENT_RETRY_ATTEMPTS,
        retry_delay: float = DispatcherDefaults.RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.bot = bot
        self.store = store
        self.attribution = attribution
        self.commands = commands
        self.bot_username = bot_username
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.deduplicator = UpdateDeduplicator(recent_updates_size)
        self._sleep = sleep
        self._slots = asyncio.Semaphore(worker_slots)
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._lock_users: Dict[Hashable, int] = defaultdict(int)
        self._tasks: Set[asyncio.Task] = set()
        self._closing = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def feed(self, update: Update) -> Optional[asyncio.Task]:
        """Accept one raw update.

        Returns the task processing it, or None when the update was a
        duplicate or the dispatcher is shutting down. Nothing is awaited
        before the task is scheduled, so tasks start in delivery order.
        """
        if self._closing:
            logger.debug(f"Dispatcher closing, update {update.update_id} not accepted")
            return None
        if not self.deduplicator.should_process(update.update_id):
            logger.debug(f"Duplicate update {update.update_id} skipped")
            return None

        event = parse_update(update, self.bot_username)
        task = asyncio.create_task(self._run(self._ordering_key(event), event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    def _ordering_key(event: InboundEvent) -> Optional[Tuple[str, int]]:
        if isinstance(event, MembershipChanged):
            return ("chat", event.channel_id)
        if isinstance(event, BotMembershipChanged):
            return ("chat", event.chat_id)
        if isinstance(event, CommandReceived):
            return ("chat", event.chat_id)
        return None

    async def _run(self, key: Optional[Hashable], event: InboundEvent) -> None:
        if key is None:
            async with self._slots:
                await self._dispatch_with_retry(event)
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                async with self._slots:
                    await self._dispatch_with_retry(event)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _dispatch_with_retry(self, event: InboundEvent) -> None:
        for attempt in range(self.retry_attempts):
            try:
                await self.dispatch(event)
                return
            except TransientIO as e:
                if attempt < self.retry_attempts - 1:
                    delay = self.retry_delay ** attempt
                    logger.warning(
                        f"Update {event.update_id} failed, attempt {attempt + 1}/{self.retry_attempts}. "
                        f"Retrying in {delay}s. Error: {e.message}"
                    )
                    await self._sleep(delay)
                else:
                    logger.error(
                        f"Dropping update {event.update_id} after {self.retry_attempts} attempts: {e.message}"
                    )
            except Exception as e:
                logger.error(f"Unexpected error handling update {event.update_id}: {e}", exc_info=True)
                return

    async def dispatch(self, event: InboundEvent) -> None:
        """Handle a single event; every variant has exactly one branch."""
        if isinstance(event, MembershipChanged):
            await self._on_membership(event)
        elif isinstance(event, BotMembershipChanged):
            await self._on_bot_membership(event)
        elif isinstance(event, CommandReceived):
            await self.commands.handle(event)
        elif isinstance(event, OtherUpdate):
            logger.debug(f"Update {event.update_id} ignored")
        else:
            raise TypeError(f"Unsupported inbound event: {event!r}")

    async def _on_membership(self, event: MembershipChanged) -> None:
        user_id = event.user.id
        if not event.joined:
            await self.attribution.on_leave(event.channel_id, user_id)
            return

        token = event.invite_name if is_invitation_token(event.invite_name) else None
        intent = await self.store.get_referral_intent(event.channel_id, user_id)
        await self.attribution.on_join(event.channel_id, user_id, token or intent)
        if intent is not None:
            await self.store.delete_referral_intent(event.channel_id, user_id)

    async def _on_bot_membership(self, event: BotMembershipChanged) -> None:
        if not event.added:
            logger.info(f"Bot lost admin rights in {event.chat_id} ({event.chat_title})")
            return

        actor = event.actor
        await self.store.upsert_user(actor.id, actor.first_name, actor.last_name, actor.username)
        link = f"https://t.me/{event.chat_username}" if event.chat_username else None
        channel = await self.store.upsert_channel(event.chat_id, actor.id, event.chat_title, link)
        logger.info(f"Channel {channel.id} ({channel.title}) registered by {actor.id}")
        await reply_safely(self.bot, actor.id, messages.channel_registered(channel))

    async def shutdown(self) -> None:
        """Stop accepting updates and wait for the in-flight ones."""
        self._closing = True
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight updates")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class UpdateRoutingMiddleware(BaseMiddleware):
    """Outer middleware handing every raw update to :class:`UpdateDispatcher`.

    The aiogram handler chain is never called: routing happens in the
    dispatcher's own task pool.
    """

    def __init__(self, dispatcher: UpdateDispatcher) -> None:
        super().__init__()
        self.dispatcher = dispatcher

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        if isinstance(event, Update):
            self.dispatcher.feed(event)
        return None
