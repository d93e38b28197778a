"""Centralized error handling for command handlers."""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from bot import messages
from core import get_logger
from core.exceptions import ApplicationError, TransientIO

logger = get_logger(__name__)


async def reply_safely(bot: Bot, chat_id: int, text: str) -> bool:
    """Send a message, logging instead of raising when Telegram refuses it."""
    try:
        await bot.send_message(chat_id, text)
    except TelegramAPIError as send_error:
        logger.warning(f"Failed to send message to {chat_id}: {send_error}")
        return False
    return True


def handle_command_errors(func: Callable) -> Callable:
    """Decorator for command handlers.

    Application errors are reported to the sender, anything unexpected is
    logged with its traceback and answered with a generic text. Transient
    store errors propagate so the dispatcher can retry the whole event.

    Usage:
        @handle_command_errors
        async def handle(self, event):
            ...
    """
    @wraps(func)
    async def wrapper(self, event: Any, *args, **kwargs):
        try:
            return await func(self, event, *args, **kwargs)
        except TransientIO:
            raise
        except ApplicationError as e:
            logger.info(f"/{event.raw_command} from {event.sender.id} rejected: {e.message}")
            await reply_safely(self.bot, event.chat_id, messages.error_text(e))
        except Exception as e:
            logger.error(
                f"Error in /{event.raw_command}: {e}",
                exc_info=True,
                extra={"user_id": event.sender.id, "chat_id": event.chat_id},
            )
            await reply_safely(self.bot, event.chat_id, messages.GENERIC_ERROR)

    return wrapper
