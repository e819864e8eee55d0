"""DNF adapter (Fedora/RHEL)."""

from __future__ import annotations

import logging
from typing import List, Optional

from common.exceptions import (
    BackendError,
    CleanupError,
    CommandTimeoutError,
    FetchError,
    RevertCommandError,
    StateQueryError,
    UnsupportedGranularityError,
)

from ..records import Backend, TransactionRecord
from ..system import run_command
from .base import BackendAdapter, PendingUnit, cleanup_step, fetch_step
from .parsers import parse_dnf_check_update, parse_dnf_history_latest_id

logger = logging.getLogger(__name__)

# dnf check-update exits 100 when updates are available
CHECK_UPDATE_AVAILABLE = 100


class DnfAdapter(BackendAdapter):
    """
    DNF backend, always applied in bulk.

    DNF's own history is transaction-scoped, so each run records one bulk
    record holding the dnf transaction id, and revert is "dnf history undo"
    of that id. Per-package records are refused rather than approximated.
    """

    backend = Backend.DNF
    binary = "dnf"
    bulk_only = True

    @fetch_step
    def list_pending(self) -> List[PendingUnit]:
        result = run_command(["dnf", "check-update"], timeout=self.timeout)
        if result.returncode == 0:
            return []
        if result.returncode != CHECK_UPDATE_AVAILABLE:
            raise FetchError(self.label, self._failure_message(result))

        parsed = parse_dnf_check_update(result.stdout)
        if parsed.skipped:
            logger.debug(f"DNF: skipped {parsed.skipped} unrecognised listing lines")
        return parsed.units

    def query_state(self, unit: str) -> Optional[str]:
        result = run_command(["rpm", "-q", "--qf", "%{VERSION}-%{RELEASE}", unit], timeout=self.timeout)
        if result.ok:
            return result.stdout.strip() or None
        if "is not installed" in result.output:
            return None
        raise StateQueryError(self.label, unit, self._failure_message(result))

    def query_bulk_state(self) -> Optional[str]:
        try:
            result = run_command(["dnf", "history", "list"], timeout=self.timeout, privileged=True)
        except CommandTimeoutError as e:
            raise BackendError(e.message, cause=e)
        if not result.ok:
            logger.warning(f"DNF: could not read history: {result.brief_error()}")
            return None
        return parse_dnf_history_latest_id(result.stdout)

    def _install(self, units: List[str]) -> Optional[str]:
        raise NotImplementedError("DNF updates are applied in bulk only")

    def _install_all(self) -> Optional[str]:
        logger.info("Running DNF upgrade")
        result = run_command(
            ["dnf", "upgrade", "-y"],
            timeout=self.apply_timeout,
            privileged=True,
        )
        return None if result.ok else self._failure_message(result)

    @cleanup_step
    def cleanup(self) -> None:
        result = run_command(["dnf", "autoremove", "-y"], timeout=self.timeout, privileged=True)
        if not result.ok:
            raise CleanupError(self.label, self._failure_message(result))

    def revert(self, record: TransactionRecord) -> None:
        if not record.is_bulk:
            raise UnsupportedGranularityError(self.label, record.unit)

        transaction_id = record.before
        if not transaction_id.isdigit():
            raise RevertCommandError(
                self.label, record.unit, f"invalid transaction id {transaction_id!r}"
            )

        logger.info(f"DNF: undoing transaction {transaction_id}")
        try:
            result = run_command(
                ["dnf", "history", "undo", "-y", transaction_id],
                timeout=self.apply_timeout,
                privileged=True,
            )
        except CommandTimeoutError as e:
            raise RevertCommandError(self.label, record.unit, e.message)

        if not result.ok:
            raise RevertCommandError(self.label, record.unit, self._failure_message(result))
