"""
Logging configuration for EzUpdate.

Two destinations:
- the console, for the operator, at INFO (DEBUG with --verbose)
- the run log in the log directory, always at DEBUG, which also captures
  the output of every package-manager command
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

RUN_LOG_MAX_BYTES = 10 * 1024 * 1024
RUN_LOG_BACKUPS = 5

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for shipping run logs elsewhere."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "extra_data", None)
        if context:
            entry["data"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


class ContextFormatter(logging.Formatter):
    """Plain run-log formatter that appends LogContext data when present."""

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        context = getattr(record, "extra_data", None)
        if context:
            pairs = " ".join(f"{k}={v}" for k, v in context.items())
            result = f"{result} [{pairs}]"
        return result


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name on a terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def formatMessage(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno)
        if not color:
            return super().formatMessage(record)

        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = plain


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    json_logs: bool = False,
):
    """
    Configure logging for one EzUpdate invocation.

    Replaces any handlers already on the root logger, so calling it again
    (e.g. once the log directory is known) is safe.

    Args:
        level: Console logging level
        log_file: Run log path; rotated at 10MB, five backups kept
        json_logs: Write the run log as JSON lines
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    formatter_cls = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
    console.setFormatter(formatter_cls(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_file is None:
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)
    run_log = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=RUN_LOG_MAX_BYTES,
        backupCount=RUN_LOG_BACKUPS,
        encoding="utf-8",
    )
    run_log.setLevel(logging.DEBUG)
    run_log.setFormatter(JSONFormatter() if json_logs else ContextFormatter(PLAIN_FORMAT))
    root.addHandler(run_log)


class LogContext:
    """
    Attach key/value context to every record logged inside the block.

    Example:
        with LogContext(backend="APT", phase="apply"):
            logger.info("Installing")  # run log line ends with [backend=APT phase=apply]
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._previous_factory = None

    def __enter__(self):
        previous = logging.getLogRecordFactory()
        self._previous_factory = previous
        context = self.context

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.extra_data = context
            return record

        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, *exc_info):
        logging.setLogRecordFactory(self._previous_factory)
