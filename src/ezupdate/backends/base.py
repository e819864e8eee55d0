"""
Backend adapter interface.

An adapter translates abstract apply/revert requests into one package
manager's native commands and reports the identifiers needed to reverse
what it did. The executor and rollback engine only ever talk to this
interface.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from common.decorators import reraise_as
from common.exceptions import BackendError, CleanupError, CommandTimeoutError, FetchError

from ..records import BULK_TRANSACTION, NONE_VERSION, Backend, TransactionRecord
from ..system import APPLY_TIMEOUT, DEFAULT_TIMEOUT, CommandResult, binary_available

logger = logging.getLogger(__name__)

# Recorded as "after" when the post-apply state query itself failed
UNKNOWN_STATE = "UNKNOWN"

# Timeouts inside these adapter steps surface as the step's own error
fetch_step = reraise_as(
    lambda adapter, e: FetchError(adapter.label, e.message, cause=e),
    CommandTimeoutError,
)
cleanup_step = reraise_as(
    lambda adapter, e: CleanupError(adapter.label, e.message, cause=e),
    CommandTimeoutError,
)


@dataclass
class PendingUnit:
    """A unit reported as having an update available."""
    id: str
    descriptor: str = ""
    version: Optional[str] = None


@dataclass
class UnitChange:
    """Observed state of one unit on either side of an apply."""
    unit: str
    before: str
    after: str


@dataclass
class ApplyResult:
    """What an apply call actually changed."""
    changes: List[UnitChange] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    bulk_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BackendAdapter(ABC):
    """
    One package manager behind the detect/list/apply/revert capability set.

    Subclasses implement the native commands; the before/after capture
    around an apply lives here so every backend records the same way.
    """

    backend: Backend
    binary: str
    bulk_only: bool = False

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        apply_timeout: float = APPLY_TIMEOUT,
    ):
        self.timeout = timeout
        self.apply_timeout = apply_timeout

    @property
    def label(self) -> str:
        """Name used in reports and the selection checklist."""
        return self.backend.value

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.label}>"

    def detect(self) -> bool:
        """True iff the backend's tooling is present on the host."""
        return binary_available(self.binary)

    @abstractmethod
    def list_pending(self) -> List[PendingUnit]:
        """
        Enumerate upgradable units.

        Raises:
            FetchError: The listing command failed or timed out.
        """

    @abstractmethod
    def query_state(self, unit: str) -> Optional[str]:
        """
        Current version/identifier of a unit, or None if not installed.

        Raises:
            StateQueryError: The query failed for any other reason.
        """

    def installed_units(self) -> Optional[Set[str]]:
        """
        Every installed unit, for spotting what an apply pulled in.

        None when the backend does not track dependencies this way.
        """
        return None

    def query_bulk_state(self) -> Optional[str]:
        """Backend-wide identifier used for bulk applies."""
        return None

    @abstractmethod
    def _install(self, units: List[str]) -> Optional[str]:
        """Update the given units. Returns an error message, or None on success."""

    def _install_all(self) -> Optional[str]:
        """Update everything the backend manages. Returns an error message or None."""
        raise NotImplementedError(f"{self.label} does not support bulk updates")

    def cleanup(self) -> None:
        """
        Remove unused artifacts.

        Raises:
            CleanupError: A cleanup command failed.
        """

    @abstractmethod
    def revert(self, record: TransactionRecord) -> None:
        """
        Undo one recorded change.

        Raises:
            RevertError: The change could not be reverted.
        """

    def encode_state(self, state: Optional[str]) -> str:
        """Turn a queried state into a record's before/after value."""
        return state if state else NONE_VERSION

    def apply(self, units: Iterable[str], bulk: bool = False) -> ApplyResult:
        """
        Apply updates and report what changed.

        State is queried immediately before and after the native command
        rather than taken from the pending listing, because what gets
        installed can differ from what was listed. Units the backend
        installed as new dependencies are recorded as fresh installs. A failing
        command still yields every change observed, so partial applies get
        recorded.

        Args:
            units: Unit ids to update (ignored for bulk applies)
            bulk: Update everything in one backend-wide operation

        Raises:
            BackendError: State could not be captured before applying.
        """
        if bulk:
            return self._apply_bulk()

        targets = list(dict.fromkeys(units))
        result = ApplyResult()
        if not targets:
            return result

        installed_before = self.installed_units()
        before = {unit: self.encode_state(self.query_state(unit)) for unit in targets}

        try:
            result.error = self._install(targets)
        except CommandTimeoutError as e:
            result.error = e.message

        for unit in targets:
            try:
                after = self.encode_state(self.query_state(unit))
            except BackendError as e:
                logger.warning(f"{self.label}: could not read state of {unit} after update: {e.message}")
                after = UNKNOWN_STATE

            if after != before[unit]:
                result.changes.append(UnitChange(unit=unit, before=before[unit], after=after))
            else:
                result.unchanged.append(unit)

        if installed_before is not None:
            # Pulled-in units are recorded ahead of the targets that needed them
            result.changes[:0] = self._pulled_in(installed_before, targets)

        if result.unchanged:
            logger.info(f"{self.label}: no change for {', '.join(result.unchanged)}")

        return result

    def _pulled_in(self, installed_before: Set[str], targets: List[str]) -> List[UnitChange]:
        """Units newly installed as a side effect of updating targets."""
        try:
            installed_after = self.installed_units() or set()
        except BackendError as e:
            logger.warning(f"{self.label}: could not list installed units after update: {e.message}")
            return []

        changes = []
        for unit in sorted(installed_after - installed_before - set(targets)):
            try:
                after = self.encode_state(self.query_state(unit))
            except BackendError as e:
                logger.warning(f"{self.label}: could not read state of new unit {unit}: {e.message}")
                after = UNKNOWN_STATE
            changes.append(UnitChange(unit=unit, before=self.encode_state(None), after=after))

        if changes:
            logger.info(f"{self.label}: newly installed {', '.join(c.unit for c in changes)}")
        return changes

    def _apply_bulk(self) -> ApplyResult:
        """
        Bulk apply. The record carries the id of the backend transaction
        that performed the update, which is what a bulk revert undoes.
        """
        result = ApplyResult()
        previous_id = self.query_bulk_state()

        try:
            result.error = self._install_all()
        except CommandTimeoutError as e:
            result.error = e.message

        try:
            current_id = self.query_bulk_state()
        except BackendError as e:
            logger.warning(f"{self.label}: could not read transaction id after update: {e.message}")
            current_id = None

        if current_id and current_id != previous_id:
            result.bulk_id = current_id
            result.changes.append(UnitChange(
                unit=BULK_TRANSACTION,
                before=current_id,
                after=current_id,
            ))
        else:
            logger.info(f"{self.label}: no new transaction recorded")

        return result

    def _failure_message(self, result: CommandResult) -> str:
        return f"{' '.join(result.args)}: {result.brief_error()}"
