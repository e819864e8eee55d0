"""Flatpak adapter, one instance per installation scope."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from common.exceptions import (
    CleanupError,
    CommandTimeoutError,
    CommitUnavailableError,
    FetchError,
    RevertCommandError,
    StateQueryError,
)

from ..records import NONE_VERSION, Backend, TransactionRecord
from ..system import run_command
from .base import BackendAdapter, PendingUnit, cleanup_step, fetch_step
from .parsers import parse_flatpak_updates

logger = logging.getLogger(__name__)

SCOPES = ("system", "user")

# Messages flatpak prints when a commit can no longer be fetched
_MISSING_COMMIT = re.compile(
    r"(no such (ref|commit)|not found|can't find|cannot find|does not exist|couldn't find)",
    re.IGNORECASE,
)

_NOT_INSTALLED = re.compile(r"not installed", re.IGNORECASE)


def split_scoped_state(value: str, default_scope: str = "system") -> Tuple[str, str]:
    """
    Split a ``scope:commit`` record value.

    Values without a recognised scope prefix belong to the system scope.
    """
    scope, sep, commit = value.partition(":")
    if sep and scope in SCOPES:
        return scope, commit
    return default_scope, value


class FlatpakAdapter(BackendAdapter):
    """
    Flatpak backend for either the system or the per-user installation.

    Both scopes write FLATPAK records; the scope is stored in the before
    and after values so whichever instance reverts a record targets the
    installation it came from.
    """

    backend = Backend.FLATPAK
    binary = "flatpak"

    def __init__(self, scope: str = "system", **kwargs):
        if scope not in SCOPES:
            raise ValueError(f"Unknown flatpak scope: {scope}")
        super().__init__(**kwargs)
        self.scope = scope

    @property
    def label(self) -> str:
        return f"FLATPAK_{self.scope.upper()}"

    def _scope_flag(self, scope: Optional[str] = None) -> str:
        return f"--{scope or self.scope}"

    def _privileged(self, scope: Optional[str] = None) -> bool:
        return (scope or self.scope) == "system"

    @fetch_step
    def list_pending(self) -> List[PendingUnit]:
        result = run_command(
            ["flatpak", "remote-ls", "--updates", "--columns=application,name", self._scope_flag()],
            timeout=self.timeout,
        )
        if not result.ok:
            raise FetchError(self.label, self._failure_message(result))

        parsed = parse_flatpak_updates(result.stdout)
        if parsed.skipped:
            logger.debug(f"{self.label}: skipped {parsed.skipped} unrecognised listing lines")
        return parsed.units

    def query_state(self, unit: str) -> Optional[str]:
        result = run_command(
            ["flatpak", "info", "--show-commit", self._scope_flag(), unit],
            timeout=self.timeout,
        )
        if result.ok:
            return result.stdout.strip() or None
        if _NOT_INSTALLED.search(result.output):
            return None
        raise StateQueryError(self.label, unit, self._failure_message(result))

    def encode_state(self, state: Optional[str]) -> str:
        return f"{self.scope}:{state or NONE_VERSION}"

    def _install(self, units: List[str]) -> Optional[str]:
        logger.info(f"Updating Flatpaks ({self.scope}): {' '.join(units)}")
        result = run_command(
            ["flatpak", "update", "-y", "--noninteractive", self._scope_flag()] + units,
            timeout=self.apply_timeout,
            privileged=self._privileged(),
        )
        return None if result.ok else self._failure_message(result)

    @cleanup_step
    def cleanup(self) -> None:
        result = run_command(
            ["flatpak", "uninstall", "--unused", "-y", "--noninteractive", self._scope_flag()],
            timeout=self.timeout,
            privileged=self._privileged(),
        )
        if not result.ok:
            raise CleanupError(self.label, self._failure_message(result))

    def revert(self, record: TransactionRecord) -> None:
        scope, commit = split_scoped_state(record.before, default_scope=self.scope)
        unit = record.unit

        if commit == NONE_VERSION:
            logger.info(f"Flatpak ({scope}): uninstalling freshly installed {unit}")
            cmd = ["flatpak", "uninstall", "-y", "--noninteractive", self._scope_flag(scope), unit]
        else:
            logger.info(f"Flatpak ({scope}): pinning {unit} to commit {commit}")
            cmd = [
                "flatpak", "update", "-y", "--noninteractive",
                f"--commit={commit}", self._scope_flag(scope), unit,
            ]

        try:
            result = run_command(cmd, timeout=self.apply_timeout, privileged=self._privileged(scope))
        except CommandTimeoutError as e:
            raise RevertCommandError(self.label, unit, e.message)

        if result.ok:
            return
        if commit != NONE_VERSION and _MISSING_COMMIT.search(result.output):
            raise CommitUnavailableError(unit, commit, result.brief_error())
        raise RevertCommandError(self.label, unit, self._failure_message(result))
