"""Snap adapter."""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from common.exceptions import (
    CommandTimeoutError,
    FetchError,
    NoPriorRevisionError,
    RevertCommandError,
    StateQueryError,
)

from ..records import Backend, TransactionRecord
from ..system import run_command
from .base import BackendAdapter, PendingUnit, fetch_step
from .parsers import parse_snap_list_entry, parse_snap_refresh_list

logger = logging.getLogger(__name__)

_NO_REVISION = re.compile(r"no (previous |prior )?revision|nothing to revert", re.IGNORECASE)
_NOT_INSTALLED = re.compile(r"no matching snaps installed|not installed", re.IGNORECASE)


class SnapAdapter(BackendAdapter):
    """
    Snap backend.

    Revert uses snapd's own single-step revert, so the recorded before value
    is kept for the report only. Cleanup is a no-op: removing
    disabled revisions would leave snap revert with nothing to go back to.
    """

    backend = Backend.SNAP
    binary = "snap"

    @fetch_step
    def list_pending(self) -> List[PendingUnit]:
        result = run_command(["snap", "refresh", "--list"], timeout=self.timeout)
        if not result.ok:
            raise FetchError(self.label, self._failure_message(result))

        parsed = parse_snap_refresh_list(result.stdout)
        if parsed.skipped:
            logger.debug(f"SNAP: skipped {parsed.skipped} unrecognised listing lines")
        return parsed.units

    def query_state(self, unit: str) -> Optional[str]:
        result = run_command(["snap", "list", unit], timeout=self.timeout)
        if result.ok:
            return parse_snap_list_entry(result.stdout, unit)
        if _NOT_INSTALLED.search(result.output):
            return None
        raise StateQueryError(self.label, unit, self._failure_message(result))

    def _install(self, units: List[str]) -> Optional[str]:
        failed = []
        for unit in units:
            logger.info(f"Refreshing snap {unit}")
            try:
                result = run_command(
                    ["snap", "refresh", unit],
                    timeout=self.apply_timeout,
                    privileged=True,
                )
            except CommandTimeoutError as e:
                logger.error(f"Snap refresh of {unit} timed out: {e.message}")
                failed.append(unit)
                continue
            if not result.ok:
                logger.error(f"Snap refresh of {unit} failed: {result.brief_error()}")
                failed.append(unit)

        if failed:
            return f"snap refresh failed for: {', '.join(failed)}"
        return None

    def revert(self, record: TransactionRecord) -> None:
        unit = record.unit
        logger.info(f"Snap: reverting {unit}")
        try:
            result = run_command(
                ["snap", "revert", unit],
                timeout=self.apply_timeout,
                privileged=True,
            )
        except CommandTimeoutError as e:
            raise RevertCommandError(self.label, unit, e.message)

        if result.ok:
            return
        if _NO_REVISION.search(result.output):
            raise NoPriorRevisionError(unit, result.brief_error())
        raise RevertCommandError(self.label, unit, self._failure_message(result))
