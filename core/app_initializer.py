"""Application initialization orchestrator."""

from __future__ import annotations

from typing import Optional

from aiogram import Bot

from bot import messages
from bot.contest_bot import ContestBot
from bot.dispatcher import UpdateDispatcher
from bot.error_handler import reply_safely
from bot.handlers import CommandHandlers
from config import Config, load_config
from core.constants import RunMode
from core.instance_lock import InstanceLock
from core.logger import get_logger
from database import EntityStore, close_db_pool, init_db_pool, run_migrations
from database.models import Contest
from services import (
    AttributionEngine,
    BroadcastRunner,
    ContestLifecycleManager,
    ContestScheduler,
    DeliveryReport,
    InvitationIssuer,
    SendThrottle,
)

logger = get_logger(__name__)


class ApplicationInitializer:
    """Orchestrates application initialization and lifecycle.

    The instance lock is taken before anything else and released last, on
    every exit path.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        mode: RunMode = RunMode.NORMAL,
        bot: Optional[Bot] = None,
    ) -> None:
        self.config = config or load_config()
        self.mode = mode
        self.lock = InstanceLock(self.config.lock_path, mode.value)
        self._bot = bot
        self.db_pool = None
        self.store: Optional[EntityStore] = None
        self.contest_bot: Optional[ContestBot] = None
        self.contests: Optional[ContestLifecycleManager] = None
        self.scheduler: Optional[ContestScheduler] = None
        self.broadcast_runner: Optional[BroadcastRunner] = None

    async def initialize(self) -> None:
        """Initialize all components of the selected run mode.

        Raises:
            InstanceConflict: another process holds the instance lock
            ConfigurationError: bot settings are missing
            DatabaseError: the store cannot be opened
        """
        self.config.validate_for_bot(require_links=self.mode is RunMode.NORMAL)
        self.lock.acquire()
        try:
            await self._init_database()
            self._init_bot()
            if self.mode is RunMode.BROADCAST:
                self._init_broadcast()
            else:
                self._init_services()
        except BaseException:
            await self.cleanup()
            raise

    async def _init_database(self) -> None:
        """Initialize database pool and run migrations."""
        self.db_pool = await init_db_pool(
            database_path=self.config.database_path,
            pool_size=self.config.db_pool_size,
            busy_timeout_ms=self.config.db_busy_timeout,
        )
        await run_migrations(self.db_pool)
        self.store = EntityStore(self.db_pool)
        logger.info("✅ Database initialized")

    def _init_bot(self) -> None:
        self.contest_bot = ContestBot(self.config.bot_token, bot=self._bot)

    def _init_broadcast(self) -> None:
        throttle = SendThrottle(
            self.config.broadcast_window_limit,
            self.config.broadcast_window_seconds,
            self.config.broadcast_min_interval,
        )
        self.broadcast_runner = BroadcastRunner(
            self.contest_bot.bot,
            self.store,
            throttle=throttle,
            retry_attempts=self.config.broadcast_retry_attempts,
            parse_mode=self.config.broadcast_parse_mode or None,
        )
        logger.info("✅ Broadcast runner initialized")

    def _init_services(self) -> None:
        bot = self.contest_bot.bot
        invitations = InvitationIssuer(self.store, self.config.invite_secret, self.config.bot_username)
        self.contests = ContestLifecycleManager(self.store)
        commands = CommandHandlers(
            bot,
            self.store,
            invitations,
            self.contests,
            mode=self.mode,
            broadcast_runner=self.broadcast_runner,
            admin_ids=self.config.admin_ids,
        )
        update_dispatcher = UpdateDispatcher(
            bot,
            self.store,
            AttributionEngine(self.store),
            commands,
            bot_username=self.config.bot_username,
            worker_slots=self.config.worker_slots,
            recent_updates_size=self.config.recent_updates_size,
            retry_attempts=self.config.event_retry_attempts,
        )
        self.contest_bot.attach(update_dispatcher)
        self.scheduler = ContestScheduler(
            self.contests,
            interval=self.config.contest_check_interval,
            on_ended=self._announce_ended,
        )
        logger.info("✅ Bot services initialized")

    async def _announce_ended(self, contest: Contest) -> None:
        bot = self.contest_bot.bot
        await reply_safely(bot, contest.channel_id, messages.contest_ended(contest))
        channel = await self.store.get_channel(contest.channel_id)
        if channel is not None:
            await reply_safely(bot, channel.owner_id, messages.contest_ended_owner(contest))

    async def run(self) -> None:
        """Serve live updates until polling stops."""
        await self.scheduler.start()
        logger.info("🤖 Telegram bot started")
        try:
            await self.contest_bot.start()
        finally:
            await self.cleanup()

    async def run_broadcast(self, message: str) -> DeliveryReport:
        """Send ``message`` to every known chat, then release everything."""
        try:
            return await self.broadcast_runner.run(message)
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Release resources in reverse order of acquisition."""
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None
        if self.contest_bot is not None:
            try:
                await self.contest_bot.stop()
            except Exception as e:
                logger.error(f"Failed to stop bot cleanly: {e}")
            self.contest_bot = None
        if self.db_pool is not None:
            await close_db_pool()
            self.db_pool = None
        self.lock.release()
