"""
EzUpdate Common Utilities

Shared exceptions, logging setup, and decorators.
"""

from .exceptions import (
    EzUpdateError, BackendError, CommandTimeoutError, FetchError, ApplyError,
    CleanupError, StateQueryError, RevertError, VersionUnavailableError, CommitUnavailableError,
    NoPriorRevisionError, UnsupportedGranularityError, RevertCommandError,
    BackendUnavailableError, HistoryError, RecordParseError, ConfigError,
    ConfigurationError, NoBackendsError, NotificationError,
)
from .decorators import handle_errors, reraise_as, timed
from .logging_config import setup_logging, LogContext

__all__ = [
    # Exceptions
    "EzUpdateError", "BackendError", "CommandTimeoutError", "FetchError", "ApplyError",
    "CleanupError", "StateQueryError", "RevertError", "VersionUnavailableError", "CommitUnavailableError",
    "NoPriorRevisionError", "UnsupportedGranularityError", "RevertCommandError",
    "BackendUnavailableError", "HistoryError", "RecordParseError", "ConfigError",
    "ConfigurationError", "NoBackendsError", "NotificationError",
    # Decorators
    "handle_errors", "reraise_as", "timed",
    # Logging
    "setup_logging", "LogContext",
]
