#!/usr/bin/env python3
"""
EzUpdate Rollback Engine

Undoes a recorded update batch by replaying its history records newest
first through each backend's inverse operation. Rollback is best-effort:
every record is attempted and the outcome of each is reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from common.decorators import timed
from common.exceptions import BackendUnavailableError, RevertError
from common.logging_config import LogContext

from .backends.base import BackendAdapter
from .history import LATEST, HistoryStore
from .records import Backend, TransactionRecord

logger = logging.getLogger(__name__)


class RollbackStatus(Enum):
    """Status of rollback operation."""
    IDLE = "idle"
    PREPARING = "preparing"
    REVERTING = "reverting"
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass
class RevertOutcome:
    """Result of reverting one record."""
    record: TransactionRecord
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass
class RollbackSummary:
    """Per-record outcomes of a rollback run."""
    source: Path
    batch_id: Optional[str] = None
    outcomes: List[RevertOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def total(self) -> int:
        return len(self.outcomes)


class RollbackEngine:
    """
    Reverts history records through their backend adapters.

    Records are processed in exact reverse of the order they were applied,
    so later (possibly dependent) changes are undone before earlier ones.
    """

    def __init__(self, adapters: Dict[Backend, BackendAdapter]):
        self.adapters = dict(adapters)
        self.status = RollbackStatus.IDLE
        self._progress_callback: Optional[Callable[[RollbackStatus, str], None]] = None

    def set_progress_callback(
        self,
        callback: Callable[[RollbackStatus, str], None],
    ):
        """Set callback for status updates."""
        self._progress_callback = callback

    def _notify(self, status: RollbackStatus, message: str):
        """Notify progress callback."""
        self.status = status
        if self._progress_callback:
            self._progress_callback(status, message)

    @timed
    def rollback(self, history: HistoryStore, batch: Optional[str] = LATEST) -> RollbackSummary:
        """
        Roll back a batch.

        Args:
            history: Store to read records from.
            batch: Batch id, LATEST, or None for every record in the store.

        Returns:
            RollbackSummary; an empty one if nothing matched.
        """
        self._notify(RollbackStatus.PREPARING, f"Reading {history.path}...")

        batch_id = batch
        if batch == LATEST:
            batch_id = history.latest_batch_id()
            if batch_id is None:
                logger.info(f"No history records in {history.path}")
                self._notify(RollbackStatus.COMPLETE, "Nothing to roll back")
                return RollbackSummary(source=history.path)

        summary = RollbackSummary(source=history.path, batch_id=batch_id)
        logger.warning(f"Rolling back {'batch ' + batch_id if batch_id else 'all records'} "
                       f"from {history.path}")

        detected: Dict[Backend, bool] = {}
        for record in history.scan_reverse(batch_id):
            self._notify(RollbackStatus.REVERTING, f"Reverting {record.backend.value} {record.unit}...")
            with LogContext(backend=record.backend.value, unit=record.unit, phase="revert"):
                summary.outcomes.append(self._revert_record(record, detected))

        if summary.failed:
            logger.warning(f"Rollback finished with {summary.failed} of {summary.total} records failed")
            self._notify(RollbackStatus.PARTIAL, f"{summary.succeeded} reverted, {summary.failed} failed")
        else:
            logger.info(f"Rollback finished: {summary.succeeded} records reverted")
            self._notify(RollbackStatus.COMPLETE, f"{summary.succeeded} reverted")
        return summary

    def rollback_latest(self, history: HistoryStore) -> RollbackSummary:
        """Roll back the most recent batch."""
        return self.rollback(history, LATEST)

    def _revert_record(self, record: TransactionRecord, detected: Dict[Backend, bool]) -> RevertOutcome:
        adapter = self.adapters.get(record.backend)

        try:
            if adapter is None:
                raise BackendUnavailableError(record.backend.value)
            if record.backend not in detected:
                detected[record.backend] = adapter.detect()
            if not detected[record.backend]:
                raise BackendUnavailableError(record.backend.value)

            adapter.revert(record)

        except RevertError as e:
            logger.error(f"Failed to revert {record.backend.value} {record.unit}: {e.message}")
            return RevertOutcome(record=record, success=False, error=e.message, code=e.code)
        except OSError as e:
            logger.error(f"Failed to revert {record.backend.value} {record.unit}: {e}")
            return RevertOutcome(record=record, success=False, error=str(e), code="OS_ERROR")

        logger.info(f"Reverted {record.backend.value} {record.unit}")
        return RevertOutcome(record=record, success=True)
