"""Telegram bot wrapper around aiogram polling."""

from __future__ import annotations

from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from bot.dispatcher import UpdateDispatcher, UpdateRoutingMiddleware
from core import get_logger

logger = get_logger(__name__)

# chat_member updates are only delivered when explicitly requested
ALLOWED_UPDATES = ["message", "chat_member", "my_chat_member"]


class ContestBot:
    def __init__(self, token: str, bot: Optional[Bot] = None) -> None:
        self.bot = bot or Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        self.dispatcher = Dispatcher()
        self.update_dispatcher: Optional[UpdateDispatcher] = None

    def attach(self, update_dispatcher: UpdateDispatcher) -> None:
        """Route every polled update through ``update_dispatcher``."""
        self.update_dispatcher = update_dispatcher
        self.dispatcher.update.outer_middleware(UpdateRoutingMiddleware(update_dispatcher))

    async def start(self) -> None:
        """Poll until SIGINT/SIGTERM.

        Updates are fed one by one in arrival order; the update dispatcher
        schedules the actual work, so aiogram does not spawn its own tasks.
        """
        logger.info("Polling started")
        await self.dispatcher.start_polling(
            self.bot,
            handle_as_tasks=False,
            allowed_updates=ALLOWED_UPDATES,
            handle_signals=True,
            close_bot_session=False,
        )
        logger.info("Polling stopped")

    async def stop(self) -> None:
        if self.update_dispatcher is not None:
            await self.update_dispatcher.shutdown()
        await self.bot.session.close()
