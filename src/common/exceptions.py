"""
EzUpdate Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, report annotations, and programmatic error handling.
"""

from typing import Optional, Dict, Any


class EzUpdateError(Exception):
    """
    Base exception for all EzUpdate errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the run can continue past this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s


# =============================================================================
# Backend errors (isolated to one backend, never fatal to a run)
# =============================================================================

class BackendError(EzUpdateError):
    """Base for package-manager command failures."""
    pass


class CommandTimeoutError(BackendError):
    """External command exceeded its timeout."""
    def __init__(self, command: str, timeout: float):
        super().__init__(
            f"Command timed out after {timeout:.0f}s: {command}",
            code="COMMAND_TIMEOUT",
            details={"command": command, "timeout": timeout},
        )


class FetchError(BackendError):
    """Listing pending updates failed."""
    def __init__(self, backend: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Failed to fetch updates for {backend}: {reason}",
            code="FETCH_FAILED",
            details={"backend": backend, "reason": reason},
            cause=cause,
        )


class ApplyError(BackendError):
    """Applying updates failed."""
    def __init__(self, backend: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Failed to apply updates for {backend}: {reason}",
            code="APPLY_FAILED",
            details={"backend": backend, "reason": reason},
            cause=cause,
        )


class CleanupError(BackendError):
    """Unused-artifact removal failed."""
    def __init__(self, backend: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cleanup failed for {backend}: {reason}",
            code="CLEANUP_FAILED",
            details={"backend": backend, "reason": reason},
            cause=cause,
        )


class StateQueryError(BackendError):
    """Reading a unit's installed state failed for a reason other than absence."""
    def __init__(self, backend: str, unit: str, reason: str):
        super().__init__(
            f"Could not read state of '{unit}' from {backend}: {reason}",
            code="STATE_QUERY_FAILED",
            details={"backend": backend, "unit": unit, "reason": reason},
        )


# =============================================================================
# Revert errors (per record, never fatal to a rollback run)
# =============================================================================

class RevertError(EzUpdateError):
    """Base for errors reverting a single history record."""
    pass


class VersionUnavailableError(RevertError):
    """The package version to restore is no longer resolvable."""
    def __init__(self, unit: str, version: str):
        super().__init__(
            f"Version {version} of '{unit}' is not available from any repository",
            code="VERSION_UNAVAILABLE",
            details={"unit": unit, "version": version},
        )


class CommitUnavailableError(RevertError):
    """The Flatpak commit to restore can no longer be located."""
    def __init__(self, unit: str, commit: str, reason: str = ""):
        super().__init__(
            f"Commit {commit} of '{unit}' cannot be located",
            code="COMMIT_UNAVAILABLE",
            details={"unit": unit, "commit": commit, "reason": reason},
        )


class NoPriorRevisionError(RevertError):
    """Snap has no previous revision to go back to."""
    def __init__(self, unit: str, reason: str = ""):
        super().__init__(
            f"No prior revision of '{unit}' to revert to",
            code="NO_PRIOR_REVISION",
            details={"unit": unit, "reason": reason},
        )


class UnsupportedGranularityError(RevertError):
    """The backend cannot revert this record at per-unit granularity."""
    def __init__(self, backend: str, unit: str):
        super().__init__(
            f"{backend} cannot revert individual unit '{unit}'; "
            "only whole transactions are reversible",
            code="UNSUPPORTED_GRANULARITY",
            details={"backend": backend, "unit": unit},
        )


class RevertCommandError(RevertError):
    """The native revert command failed for another reason."""
    def __init__(self, backend: str, unit: str, reason: str):
        super().__init__(
            f"Failed to revert '{unit}' on {backend}: {reason}",
            code="REVERT_FAILED",
            details={"backend": backend, "unit": unit, "reason": reason},
        )


class BackendUnavailableError(RevertError):
    """No usable adapter for the record's backend on this host."""
    def __init__(self, backend: str):
        super().__init__(
            f"Backend {backend} is not available on this host",
            code="BACKEND_UNAVAILABLE",
            details={"backend": backend},
        )


# =============================================================================
# History errors
# =============================================================================

class HistoryError(EzUpdateError):
    """Base for history store errors."""
    pass


class RecordParseError(HistoryError):
    """A history line could not be decoded."""
    def __init__(self, line: str, reason: str):
        super().__init__(
            f"Malformed history record: {reason}",
            code="RECORD_PARSE_FAILED",
            details={"line": line[:200], "reason": reason},
        )


# =============================================================================
# Configuration errors (fatal, raised before any backend work)
# =============================================================================

class ConfigError(EzUpdateError):
    """Base for configuration errors."""
    pass


class ConfigurationError(ConfigError):
    """Invalid arguments or unusable configuration."""
    def __init__(self, message: str, field: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"field": field} if field else None,
            cause=cause,
            recoverable=False,
        )


class NoBackendsError(EzUpdateError):
    """No supported package manager was detected."""
    def __init__(self):
        super().__init__(
            "No supported package managers found",
            code="NO_BACKENDS",
            recoverable=False,
        )


# =============================================================================
# Notification errors
# =============================================================================

class NotificationError(EzUpdateError):
    """Report delivery failed."""
    def __init__(self, recipient: str, reason: str):
        super().__init__(
            f"Failed to send report to {recipient}: {reason}",
            code="NOTIFICATION_FAILED",
            details={"recipient": recipient, "reason": reason},
        )
