#!/usr/bin/env python3
"""
EzUpdate CLI

Command-line interface for multi-manager system updates and rollback.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from common.exceptions import ConfigurationError, NoBackendsError, NotificationError
from common.logging_config import setup_logging

from .backends import create_adapters, revert_registry
from .config import UpdateConfig
from .executor import BatchExecutor, BatchPhase
from .history import LATEST, HistoryStore
from .report import ReportRenderer, send_report, write_report
from .rollback import RollbackEngine
from .selection import make_selector

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 40


def progress_callback(status: BatchPhase, message: str, percent: float):
    """Display update progress."""
    print(f"[{percent:3.0f}%] {message}", flush=True)


def resolve_rollback_source(selector: str, config: UpdateConfig) -> Tuple[HistoryStore, Optional[str]]:
    """
    Map a --rollback value to a history source and batch.

    "latest" and bare batch ids use the default history file. Anything
    that looks like a path is read as a history file of its own, and
    every record in it is rolled back.

    Raises:
        ConfigurationError: The named history file does not exist.
    """
    if selector == LATEST:
        return HistoryStore(config.history_file), LATEST

    path = Path(selector).expanduser()
    if os.sep in selector or path.exists():
        if not path.is_file():
            raise ConfigurationError(f"Rollback target not found: {selector}", field="rollback")
        return HistoryStore(path), None

    return HistoryStore(config.history_file), selector


def _confirm(prompt: str) -> bool:
    try:
        response = input(f"\n{prompt} [y/N] ")
    except EOFError:
        return False
    return response.strip().lower() == "y"


def _mail(config: UpdateConfig, subject: str, body: str) -> None:
    if not config.email:
        return
    try:
        send_report(config.email, subject, body)
    except NotificationError as e:
        logger.error(e.message)


def cmd_update(args, config: UpdateConfig) -> int:
    """Detect, fetch, select, apply, clean up and report."""
    print("Welcome to EzUpdate.")

    executor = BatchExecutor(
        create_adapters(config.command_timeout, config.apply_timeout),
        HistoryStore(config.history_file),
        selector=make_selector(config.interactive),
    )
    executor.set_progress_callback(progress_callback)

    try:
        report = executor.run()
    except NoBackendsError as e:
        print(e.message + ".", file=sys.stderr)
        return 1

    if report.cancelled:
        print("Update cancelled by user.")
        return 0

    text = ReportRenderer().render_run(report)
    write_report(text, config.report_file)

    print()
    print(SEPARATOR)
    print(text.rstrip())
    print(SEPARATOR)
    print(f"Log saved to {config.run_log}")

    status = "errors" if report.errored else "ok"
    _mail(config, f"EzUpdate report {report.batch_id} ({status})", text)
    return 0


def cmd_rollback(args, config: UpdateConfig) -> int:
    """Roll back a recorded batch."""
    history, batch = resolve_rollback_source(args.rollback, config)

    if batch == LATEST:
        batch = history.latest_batch_id()
        if batch is None:
            print(f"No history records found in {history.path}.")
            return 0

    target = f"batch {batch}" if batch else "all records"
    print(f"Rollback target: {target} in {history.path}")

    if config.interactive:
        print("\n[WARNING] This will downgrade or remove the packages changed by that run.")
        if not _confirm("Proceed with rollback?"):
            print("Rollback cancelled.")
            return 0

    engine = RollbackEngine(revert_registry(
        create_adapters(config.command_timeout, config.apply_timeout)
    ))
    summary = engine.rollback(history, batch)

    text = ReportRenderer().render_rollback(summary)
    print()
    print(SEPARATOR)
    print(text.rstrip())
    print(SEPARATOR)

    _mail(config, f"EzUpdate rollback {batch or history.path.name}", text)
    return 0 if summary.failed == 0 else 1


def cmd_list_history(args, config: UpdateConfig) -> int:
    """List recorded batches."""
    batches = HistoryStore(config.history_file).batches()
    if not batches:
        print(f"No history records found in {config.history_file}.")
        return 0

    print("Recorded update batches:\n")
    for batch in batches:
        print(f"  {batch.batch_id}")
        print(f"    Applied: {batch.last_timestamp.strftime('%Y-%m-%d %H:%M:%S %Z')}")
        print(f"    Records: {batch.record_count} ({', '.join(batch.backends)})")
        print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ezupdate",
        description="EzUpdate - System Update Wrapper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Supported package managers: APT, DNF, Flatpak (system and user), Snap

Examples:
  sudo ezupdate                          # Select and install updates
  sudo ezupdate -y                       # Install everything (cron friendly)
  sudo ezupdate -y --email admin@example.com
  ezupdate --list-history                # Show recorded batches
  sudo ezupdate --rollback latest        # Undo the most recent batch
  sudo ezupdate --rollback 20261018T101500000000Z
  sudo ezupdate --rollback /path/to/ezupdate_history.log
        """,
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--rollback", metavar="SELECTOR",
                        help="Roll back 'latest', a batch id, or every record in a history file")
    action.add_argument("--list-history", action="store_true",
                        help="List recorded update batches")

    parser.add_argument("-y", "--yes", action="store_true",
                        help="Non-interactive mode: select all updates, skip confirmations")
    parser.add_argument("--email", metavar="ADDRESS", help="Email the report to this address")
    parser.add_argument("--log-dir", metavar="PATH",
                        help="Directory for history, run log and report")
    parser.add_argument("--timeout", type=float, metavar="SECONDS",
                        help="Timeout for package-manager queries (default: 300)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--json-logs", action="store_true", help="Write the run log as JSON")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO

    try:
        config = UpdateConfig.from_args(args)
    except ConfigurationError as e:
        setup_logging(level=level)
        logger.error(e.message)
        return 2

    setup_logging(level=level, log_file=config.run_log, json_logs=config.json_logs)

    try:
        if args.list_history:
            return cmd_list_history(args, config)
        if args.rollback:
            return cmd_rollback(args, config)
        return cmd_update(args, config)
    except ConfigurationError as e:
        logger.error(e.message)
        return 2


if __name__ == "__main__":
    sys.exit(main())
