"""Application-wide constants and configuration values."""

from __future__ import annotations

from enum import Enum


# Telegram limits
class TelegramLimits:
    """Telegram API limits."""
    MESSAGE_MAX_LENGTH = 4096
    START_PARAMETER_MAX_LENGTH = 64


# Broadcast constants
class BroadcastDefaults:
    """Default values for broadcast runs."""
    WINDOW_LIMIT = 25  # sends per window
    WINDOW_SECONDS = 1.0
    MIN_INTERVAL = 0.04  # seconds between two sends
    RETRY_ATTEMPTS = 3
    RETRY_DELAY = 2  # backoff base, seconds
    PARSE_MODE = "MarkdownV2"


# Database constants
class DatabaseDefaults:
    """Default database configuration."""
    POOL_SIZE = 5
    BUSY_TIMEOUT = 5000  # milliseconds


# Update dispatching
class DispatcherDefaults:
    """Inbound update processing configuration."""
    WORKER_SLOTS = 8
    RECENT_UPDATES_SIZE = 1024
    EVENT_RETRY_ATTEMPTS = 3
    RETRY_DELAY = 2  # backoff base, seconds


class ContestDefaults:
    """Contest lifecycle configuration."""
    CHECK_INTERVAL = 60  # seconds between scheduled end scans
    MAX_PRIZES = 100
    END_FORMAT = "%Y-%m-%d %H:%M"


class ContestState(str, Enum):
    """Contest lifecycle states."""
    DRAFT = "draft"
    ACTIVE = "active"
    ENDED = "ended"
    CLOSED = "closed"


class JoinOutcome(str, Enum):
    """Result of attributing a single join event."""
    CREDITED = "credited"
    NO_ACTIVE_CONTEST = "no_active_contest"
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    FOREIGN_TOKEN = "foreign_token"
    SELF_REFERRAL = "self_referral"
    ALREADY_MEMBER = "already_member"
    REJOINED = "rejoined"
    CREDITED_BEFORE = "credited_before"

    @property
    def credited(self) -> bool:
        return self is JoinOutcome.CREDITED


class RunMode(str, Enum):
    """Process run modes."""
    NORMAL = "normal"
    BROADCAST = "broadcast"


# Deep link payload prefixes
class DeepLink:
    """Prefixes of /start payloads."""
    INVITATION_PREFIX = "i"
    CONTEST_PREFIX = "c"
    TOKEN_BYTES = 22  # base64url characters kept from the digest
