#!/usr/bin/env python3
"""
EzUpdate Configuration

Resolves the log directory (history store, run log, last report) and the
per-run settings taken from the command line and environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common.exceptions import ConfigurationError

from .system import APPLY_TIMEOUT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

SYSTEM_LOG_DIR = Path("/var/log/ezupdate")
LOG_DIR_ENV = "EZUPDATE_LOG_DIR"

HISTORY_FILENAME = "ezupdate_history.log"
RUN_LOG_FILENAME = "ezupdate_run.log"
REPORT_FILENAME = "ezupdate_report.txt"


def user_log_dir() -> Path:
    """Per-user fallback under $XDG_STATE_HOME (or ~/.local/state)."""
    state_home = os.environ.get("XDG_STATE_HOME")
    base = Path(state_home) if state_home else Path.home() / ".local" / "state"
    return base / "ezupdate"


def _usable_directory(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(path, os.W_OK | os.X_OK)


def resolve_log_dir(requested: Optional[Path] = None) -> Path:
    """
    Pick the log directory.

    An explicitly requested directory (argument or EZUPDATE_LOG_DIR) must be
    usable. Otherwise the system location is tried first, then the
    per-user fallback.

    Raises:
        ConfigurationError: No usable directory.
    """
    explicit = requested
    if explicit is None and os.environ.get(LOG_DIR_ENV):
        explicit = Path(os.environ[LOG_DIR_ENV])

    if explicit is not None:
        explicit = explicit.expanduser()
        if not _usable_directory(explicit):
            raise ConfigurationError(f"Log directory is not writable: {explicit}", field="log_dir")
        return explicit

    if _usable_directory(SYSTEM_LOG_DIR):
        return SYSTEM_LOG_DIR

    fallback = user_log_dir()
    if _usable_directory(fallback):
        logger.debug(f"{SYSTEM_LOG_DIR} not writable, using {fallback}")
        return fallback

    raise ConfigurationError(
        f"Neither {SYSTEM_LOG_DIR} nor {fallback} is writable",
        field="log_dir",
    )


@dataclass
class UpdateConfig:
    """Settings for one invocation."""
    log_dir: Path
    interactive: bool = True
    email: Optional[str] = None
    verbose: bool = False
    json_logs: bool = False
    command_timeout: float = DEFAULT_TIMEOUT
    apply_timeout: float = APPLY_TIMEOUT

    @property
    def history_file(self) -> Path:
        return self.log_dir / HISTORY_FILENAME

    @property
    def run_log(self) -> Path:
        return self.log_dir / RUN_LOG_FILENAME

    @property
    def report_file(self) -> Path:
        return self.log_dir / REPORT_FILENAME

    @classmethod
    def from_args(cls, args) -> "UpdateConfig":
        """
        Build from parsed CLI arguments.

        Raises:
            ConfigurationError: Invalid values or unusable log directory.
        """
        email = getattr(args, "email", None)
        if email is not None and "@" not in email:
            raise ConfigurationError(f"Invalid email address: {email}", field="email")

        timeout = getattr(args, "timeout", None) or DEFAULT_TIMEOUT
        if timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive: {timeout}", field="timeout")

        log_dir = getattr(args, "log_dir", None)
        return cls(
            log_dir=resolve_log_dir(Path(log_dir) if log_dir else None),
            interactive=not getattr(args, "yes", False),
            email=email,
            verbose=getattr(args, "verbose", False),
            json_logs=getattr(args, "json_logs", False),
            command_timeout=timeout,
            apply_timeout=max(APPLY_TIMEOUT, timeout),
        )
