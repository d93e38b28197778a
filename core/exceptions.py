"""Application-wide exception classes."""

from __future__ import annotations

from typing import Optional


class ApplicationError(Exception):
    """Base exception for all application errors."""

    user_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message


class ConfigurationError(ApplicationError):
    """Raised when configuration is invalid."""
    pass


class DatabaseError(ApplicationError):
    """Base exception for database-related errors."""
    pass


class RepositoryError(DatabaseError):
    """Raised when repository operation fails."""
    pass


class TransientIO(ApplicationError):
    """Platform, network or store hiccup; safe to retry."""

    user_message = "Temporary failure, please retry"


class ValidationError(ApplicationError):
    """Malformed command or argument."""

    user_message = "Invalid command arguments"


class AuthorizationError(ApplicationError):
    """Raised when a user manages a channel they do not own."""

    user_message = "You are not the owner of this channel"


class InvalidTransition(ApplicationError):
    """Contest state machine violation."""

    def __init__(self, current_state: str, message: Optional[str] = None) -> None:
        self.current_state = current_state
        super().__init__(message or f"Contest is {current_state}, operation not allowed")


class ContestNotActive(ApplicationError):
    """Operation requires an Active contest."""

    user_message = "This contest is not running"


class FeatureUnavailable(ApplicationError):
    """Operation not available in the current run mode."""

    user_message = "This feature is not available right now"


class InstanceConflict(ApplicationError):
    """Another process holds the instance lock."""

    user_message = "Another instance is already running"


class ServiceError(ApplicationError):
    """Base exception for service-level errors."""
    pass


class BroadcastError(ServiceError):
    """Raised when a broadcast run cannot proceed at all."""
    pass
