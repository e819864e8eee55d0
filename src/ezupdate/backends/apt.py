"""APT adapter (Debian/Ubuntu)."""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from common.exceptions import (
    CleanupError,
    CommandTimeoutError,
    FetchError,
    RevertCommandError,
    StateQueryError,
    VersionUnavailableError,
)

from ..records import Backend, TransactionRecord
from ..system import run_command
from .base import BackendAdapter, PendingUnit, cleanup_step, fetch_step
from .parsers import parse_apt_madison, parse_apt_upgradable, parse_dpkg_installed

logger = logging.getLogger(__name__)

# Avoid debconf prompts hanging an unattended run
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# dpkg-query exit status for "no such package"; anything higher is a real failure
DPKG_NOT_FOUND = 1

# dpkg expands the escapes itself
DPKG_INSTALLED_FORMAT = r"-f=${Package}\t${db:Status-Status}\n"


class AptAdapter(BackendAdapter):
    """
    APT backend.

    Records carry the prior package version; a NONE before value means the
    package was pulled in fresh and is removed on revert.
    """

    backend = Backend.APT
    binary = "apt-get"

    @fetch_step
    def list_pending(self) -> List[PendingUnit]:
        refresh = run_command(
            ["apt-get", "update", "-y"],
            timeout=self.timeout,
            privileged=True,
            env=APT_ENV,
        )
        if not refresh.ok:
            raise FetchError(self.label, self._failure_message(refresh))

        listing = run_command(["apt", "list", "--upgradable"], timeout=self.timeout)
        if not listing.ok:
            raise FetchError(self.label, self._failure_message(listing))

        parsed = parse_apt_upgradable(listing.stdout)
        if parsed.skipped:
            logger.debug(f"APT: skipped {parsed.skipped} unrecognised listing lines")
        return parsed.units

    def query_state(self, unit: str) -> Optional[str]:
        result = run_command(
            ["dpkg-query", "-W", "-f=${Version}", unit],
            timeout=self.timeout,
        )
        if result.returncode == DPKG_NOT_FOUND:
            return None
        if not result.ok:
            raise StateQueryError(self.label, unit, self._failure_message(result))
        return result.stdout.strip() or None

    def installed_units(self) -> Set[str]:
        result = run_command(["dpkg-query", "-W", DPKG_INSTALLED_FORMAT], timeout=self.timeout)
        if not result.ok:
            raise StateQueryError(self.label, "installed packages", self._failure_message(result))
        return parse_dpkg_installed(result.stdout)

    def _install(self, units: List[str]) -> Optional[str]:
        logger.info(f"Updating APT packages: {' '.join(units)}")
        result = run_command(
            ["apt-get", "install", "-y"] + units,
            timeout=self.apply_timeout,
            privileged=True,
            env=APT_ENV,
        )
        return None if result.ok else self._failure_message(result)

    @cleanup_step
    def cleanup(self) -> None:
        for cmd in (["apt-get", "autoremove", "-y"], ["apt-get", "clean"]):
            result = run_command(cmd, timeout=self.timeout, privileged=True, env=APT_ENV)
            if not result.ok:
                raise CleanupError(self.label, self._failure_message(result))

    def available_versions(self, unit: str) -> List[str]:
        """Versions the configured repositories can still provide."""
        result = run_command(["apt-cache", "madison", unit], timeout=self.timeout)
        if not result.ok:
            return []
        return parse_apt_madison(result.stdout)

    def revert(self, record: TransactionRecord) -> None:
        unit = record.unit

        try:
            if record.is_fresh_install:
                logger.info(f"APT: removing freshly installed {unit}")
                result = run_command(
                    ["apt-get", "remove", "-y", unit],
                    timeout=self.apply_timeout,
                    privileged=True,
                    env=APT_ENV,
                )
            else:
                if record.before not in self.available_versions(unit):
                    raise VersionUnavailableError(unit, record.before)

                logger.info(f"APT: reinstalling {unit}={record.before}")
                result = run_command(
                    ["apt-get", "install", "-y", "--allow-downgrades", f"{unit}={record.before}"],
                    timeout=self.apply_timeout,
                    privileged=True,
                    env=APT_ENV,
                )
        except CommandTimeoutError as e:
            raise RevertCommandError(self.label, unit, e.message)

        if not result.ok:
            raise RevertCommandError(self.label, unit, self._failure_message(result))
