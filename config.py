"""Application configuration module.

Reads settings from environment variables (optionally from a ``.env`` file)
with defaults suitable for a single bot instance backed by one sqlite file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from core.constants import (
    BroadcastDefaults,
    ContestDefaults,
    DatabaseDefaults,
    DispatcherDefaults,
)
from core.exceptions import ConfigurationError

load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _get_float(name: str, default: float) -> float:
    """Get float from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _get_str(name: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.getenv(name, default)


def _parse_int_list(value: str) -> tuple[int, ...]:
    """Parse comma-separated integers."""
    if not value:
        return ()
    try:
        return tuple(int(id_str) for id_str in value.split(",") if id_str.strip())
    except ValueError:
        raise ConfigurationError(f"Expected comma-separated integers, got {value!r}")


@dataclass(frozen=True)
class Config:
    bot_token: str
    bot_username: str
    admin_ids: tuple[int, ...]
    debug: bool
    database_path: str
    db_pool_size: int
    db_busy_timeout: int
    log_folder: str
    lock_path: str
    invite_secret: str
    worker_slots: int
    recent_updates_size: int
    event_retry_attempts: int
    contest_check_interval: int
    broadcast_window_limit: int
    broadcast_window_seconds: float
    broadcast_min_interval: float
    broadcast_retry_attempts: int
    broadcast_parse_mode: str

    def validate_for_bot(self, require_links: bool = True) -> None:
        """Ensure the settings needed to talk to Telegram are present.

        Args:
            require_links: Also check the settings deep links are built from;
                broadcast mode only sends and does not need them
        """
        if not self.bot_token:
            raise ConfigurationError("BOT_TOKEN is not set")
        if require_links and not self.bot_username:
            raise ConfigurationError("BOT_USERNAME is not set, deep links cannot be built")
        if require_links and not self.invite_secret:
            raise ConfigurationError("INVITE_SECRET is not set")
        if self.broadcast_window_limit < 1 or self.broadcast_window_seconds <= 0:
            raise ConfigurationError("Broadcast throttle must allow at least one send per window")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Returns:
        Config: Application configuration with validated values
    """
    return Config(
        bot_token=_get_str("BOT_TOKEN"),
        bot_username=_get_str("BOT_USERNAME").lstrip("@"),
        admin_ids=_parse_int_list(_get_str("ADMIN_IDS", "")),
        debug=_get_bool("DEBUG", False),
        database_path=_get_str("DATABASE_PATH", "data/referral_contests.sqlite"),
        db_pool_size=_get_int("DB_POOL_SIZE", DatabaseDefaults.POOL_SIZE),
        db_busy_timeout=_get_int("DB_BUSY_TIMEOUT", DatabaseDefaults.BUSY_TIMEOUT),
        log_folder=_get_str("LOG_FOLDER", "logs"),
        lock_path=_get_str("LOCK_PATH", "data/instance.lock"),
        invite_secret=_get_str("INVITE_SECRET"),
        worker_slots=_get_int("WORKER_SLOTS", DispatcherDefaults.WORKER_SLOTS),
        recent_updates_size=_get_int("RECENT_UPDATES_SIZE", DispatcherDefaults.RECENT_UPDATES_SIZE),
        event_retry_attempts=_get_int("EVENT_RETRY_ATTEMPTS", DispatcherDefaults.EVENT_RETRY_ATTEMPTS),
        contest_check_interval=_get_int("CONTEST_CHECK_INTERVAL", ContestDefaults.CHECK_INTERVAL),
        broadcast_window_limit=_get_int("BROADCAST_WINDOW_LIMIT", BroadcastDefaults.WINDOW_LIMIT),
        broadcast_window_seconds=_get_float("BROADCAST_WINDOW_SECONDS", BroadcastDefaults.WINDOW_SECONDS),
        broadcast_min_interval=_get_float("BROADCAST_MIN_INTERVAL", BroadcastDefaults.MIN_INTERVAL),
        broadcast_retry_attempts=_get_int("BROADCAST_RETRY_ATTEMPTS", BroadcastDefaults.RETRY_ATTEMPTS),
        broadcast_parse_mode=_get_str("BROADCAST_PARSE_MODE", BroadcastDefaults.PARSE_MODE),
    )
