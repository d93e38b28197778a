"""Core application components."""

# ApplicationInitializer is imported from core.app_initializer directly,
# it depends on config which itself imports core.constants
from core.logger import setup_logger, get_logger
from core.constants import (
    TelegramLimits,
    BroadcastDefaults,
    DatabaseDefaults,
    DispatcherDefaults,
    ContestDefaults,
    ContestState,
    JoinOutcome,
    RunMode,
    DeepLink,
)
from core.exceptions import (
    ApplicationError,
    ConfigurationError,
    DatabaseError,
    RepositoryError,
    TransientIO,
    ValidationError,
    AuthorizationError,
    InvalidTransition,
    ContestNotActive,
    FeatureUnavailable,
    InstanceConflict,
    ServiceError,
    BroadcastError,
)

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    # Constants
    'TelegramLimits',
    'BroadcastDefaults',
    'DatabaseDefaults',
    'DispatcherDefaults',
    'ContestDefaults',
    'ContestState',
    'JoinOutcome',
    'RunMode',
    'DeepLink',
    # Exceptions
    'ApplicationError',
    'ConfigurationError',
    'DatabaseError',
    'RepositoryError',
    'TransientIO',
    'ValidationError',
    'AuthorizationError',
    'InvalidTransition',
    'ContestNotActive',
    'FeatureUnavailable',
    'InstanceConflict',
    'ServiceError',
    'BroadcastError',
]
