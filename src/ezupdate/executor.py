#!/usr/bin/env python3
"""
EzUpdate Batch Executor

Drives one update run across every detected package manager and records
each applied change in the history store so the batch can be rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from common.decorators import timed
from common.exceptions import ApplyError, BackendError, NoBackendsError
from common.logging_config import LogContext

from .backends.base import BackendAdapter, PendingUnit
from .history import HistoryStore
from .reboot import reboot_pending
from .records import Action, Backend, TransactionRecord, new_batch_id
from .report import BackendReport, RunReport
from .selection import SelectAll, Selection, Selector

logger = logging.getLogger(__name__)


class BatchPhase(Enum):
    """Phase of an update run."""
    IDLE = "idle"
    DETECTING = "detecting"
    FETCHING = "fetching"
    SELECTING = "selecting"
    APPLYING = "applying"
    CLEANING = "cleaning"
    REPORTING = "reporting"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RunContext:
    """Everything one run accumulates; owned by a single run() call."""
    batch_id: str
    started_at: datetime
    active: List[BackendAdapter] = field(default_factory=list)
    pending: Dict[str, List[PendingUnit]] = field(default_factory=dict)
    sections: Dict[str, BackendReport] = field(default_factory=dict)
    records: List[TransactionRecord] = field(default_factory=list)
    last_timestamp: Optional[datetime] = None

    def stamp(self) -> datetime:
        """Record timestamp, never earlier than the previous one in this batch."""
        now = datetime.now(timezone.utc)
        if self.last_timestamp is not None and now < self.last_timestamp:
            now = self.last_timestamp
        self.last_timestamp = now
        return now


class BatchExecutor:
    """
    Runs DETECT -> FETCH -> SELECT -> APPLY -> CLEANUP -> REPORT.

    A failure in one backend's fetch, apply or cleanup is confined to that
    backend's report section; the run carries on with the others. Only the
    absence of any usable backend stops a run.
    """

    def __init__(
        self,
        adapters: Iterable[BackendAdapter],
        history: HistoryStore,
        selector: Optional[Selector] = None,
        reboot_check: Optional[Callable[[Iterable[Backend]], Optional[bool]]] = None,
    ):
        self.adapters = list(adapters)
        self.history = history
        self.selector = selector or SelectAll()
        self.reboot_check = reboot_check or reboot_pending
        self.status = BatchPhase.IDLE
        self._progress_callback: Optional[Callable[[BatchPhase, str, float], None]] = None

    def set_progress_callback(
        self,
        callback: Callable[[BatchPhase, str, float], None],
    ):
        """
        Set callback for progress updates.

        Args:
            callback: Function(phase, message, percent)
        """
        self._progress_callback = callback

    def _notify(self, status: BatchPhase, message: str, percent: float = 0):
        """Notify progress callback."""
        self.status = status
        if self._progress_callback:
            self._progress_callback(status, message, percent)

    @timed
    def run(self) -> RunReport:
        """
        Execute one update batch.

        Returns:
            RunReport for the batch; ``cancelled`` is set when the operator
            aborted selection, in which case nothing was applied.

        Raises:
            NoBackendsError: No supported package manager is present.
        """
        started_at = datetime.now(timezone.utc)
        context = RunContext(batch_id=new_batch_id(started_at), started_at=started_at)
        logger.info(f"Starting update batch {context.batch_id}")

        self._detect(context)
        self._fetch(context)

        selection = self._select(context)
        if selection is None:
            logger.info("Update cancelled by user.")
            self._notify(BatchPhase.CANCELLED, "Update cancelled by user", 100)
            return self._build_report(context, cancelled=True)

        self._apply(context, selection)
        self._cleanup(context)

        self._notify(BatchPhase.REPORTING, "Checking reboot status...", 95)
        report = self._build_report(context)
        self._notify(BatchPhase.COMPLETE, f"Applied {report.applied_count} updates", 100)
        return report

    def _detect(self, context: RunContext) -> None:
        self._notify(BatchPhase.DETECTING, "Detecting package managers...", 5)

        for adapter in self.adapters:
            try:
                found = adapter.detect()
            except OSError as e:
                logger.debug(f"Detection of {adapter.label} failed: {e}")
                found = False

            if found:
                logger.info(f"Detected: {adapter.label}")
                context.active.append(adapter)
                context.sections[adapter.label] = BackendReport(
                    label=adapter.label,
                    backend=adapter.backend,
                    bulk=adapter.bulk_only,
                )

        if not context.active:
            self._notify(BatchPhase.FAILED, "No supported package managers found", 0)
            raise NoBackendsError()

    def _fetch(self, context: RunContext) -> None:
        total = len(context.active)
        for index, adapter in enumerate(context.active):
            section = context.sections[adapter.label]
            self._notify(
                BatchPhase.FETCHING,
                f"Checking {adapter.label} updates...",
                10 + 30 * index / total,
            )

            with LogContext(backend=adapter.label, phase="fetch"):
                try:
                    units = adapter.list_pending()
                except BackendError as e:
                    logger.warning(f"{adapter.label}: {e.message}")
                    section.fetch_error = e.message
                    units = []

            context.pending[adapter.label] = units
            section.pending = list(units)
            logger.info(f"{adapter.label}: {len(units)} pending updates")

    def _select(self, context: RunContext) -> Optional[Selection]:
        self._notify(BatchPhase.SELECTING, "Selecting updates...", 45)

        selectable = {
            adapter.label: context.pending.get(adapter.label, [])
            for adapter in context.active
            if not adapter.bulk_only
        }
        bulk_labels = [adapter.label for adapter in context.active if adapter.bulk_only]

        selection = self.selector.select(selectable, bulk_labels)
        if selection is None:
            return None

        for label in bulk_labels:
            logger.info(f"{label}: scheduled for bulk update")
        return selection

    def _apply(self, context: RunContext, selection: Selection) -> None:
        total = len(context.active)
        for index, adapter in enumerate(context.active):
            if adapter.bulk_only:
                units: List[str] = []
            else:
                units = selection.get(adapter.label, [])
                if not units:
                    continue

            self._notify(
                BatchPhase.APPLYING,
                f"Updating {adapter.label}...",
                50 + 35 * index / total,
            )
            with LogContext(backend=adapter.label, phase="apply"):
                self._apply_backend(context, adapter, units)

    def _apply_backend(self, context: RunContext, adapter: BackendAdapter, units: List[str]) -> None:
        section = context.sections[adapter.label]

        try:
            result = adapter.apply(units, bulk=adapter.bulk_only)
        except BackendError as e:
            logger.error(f"{adapter.label}: {e.message}")
            section.apply_error = e.message
            return

        for change in result.changes:
            record = TransactionRecord(
                timestamp=context.stamp(),
                batch_id=context.batch_id,
                backend=adapter.backend,
                unit=change.unit,
                action=Action.UPDATE,
                before=change.before,
                after=change.after,
            )
            try:
                self.history.append(record)
            except OSError as e:
                logger.error(f"Could not record {adapter.label}:{change.unit} in history: {e}")
                section.apply_error = f"history write failed: {e}"
            context.records.append(record)
            section.applied.append(record)

        section.unchanged = list(result.unchanged)

        if result.error:
            error = ApplyError(adapter.label, result.error)
            logger.error(f"{error.message}. Check the run log.")
            section.apply_error = error.message
        else:
            logger.info(f"{adapter.label}: successfully updated {len(result.changes)} units")

    def _cleanup(self, context: RunContext) -> None:
        self._notify(BatchPhase.CLEANING, "Cleaning up...", 90)

        for adapter in context.active:
            with LogContext(backend=adapter.label, phase="cleanup"):
                try:
                    adapter.cleanup()
                except BackendError as e:
                    logger.warning(f"{adapter.label}: {e.message}")
                    context.sections[adapter.label].cleanup_error = e.message

    def _build_report(self, context: RunContext, cancelled: bool = False) -> RunReport:
        reboot_required = None
        if not cancelled:
            reboot_required = self.reboot_check(a.backend for a in context.active)

        return RunReport(
            batch_id=context.batch_id,
            started_at=context.started_at,
            finished_at=datetime.now(timezone.utc),
            sections=[context.sections[a.label] for a in context.active],
            reboot_required=reboot_required,
            cancelled=cancelled,
            history_path=self.history.path,
        )
