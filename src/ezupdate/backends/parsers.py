"""
Best-effort parsers for package-manager text output.

Every parser accepts arbitrary text and never raises: lines it does not
understand are counted in ``ParseResult.skipped`` and otherwise ignored,
so an unexpected format degrades to "no pending units" rather than an
aborted run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

from .base import PendingUnit


@dataclass
class ParseResult:
    """Units recognised in a listing, plus how many lines were not understood."""
    units: List[PendingUnit] = field(default_factory=list)
    skipped: int = 0


# curl/jammy-updates 7.81.0-1ubuntu1.15 amd64 [upgradable from: 7.81.0-1ubuntu1.14]
_APT_LINE = re.compile(
    r"^(?P<name>[^/\s]+)/\S+\s+(?P<version>\S+)"
    r"(?:\s+\S+)?"
    r"(?:\s+\[upgradable from:\s*(?P<old>[^\]]+)\])?"
)


def parse_apt_upgradable(text: str) -> ParseResult:
    """Parse ``apt list --upgradable``."""
    result = ParseResult()
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("Listing") or line.startswith("WARNING"):
            continue

        match = _APT_LINE.match(line)
        if not match:
            result.skipped += 1
            continue

        version = match.group("version")
        old = match.group("old")
        descriptor = f"{old.strip()} -> {version}" if old else f"Upgrade to {version}"
        result.units.append(PendingUnit(
            id=match.group("name"),
            descriptor=descriptor,
            version=version,
        ))
    return result


def parse_apt_madison(text: str) -> List[str]:
    """Versions offered by ``apt-cache madison <pkg>``."""
    versions = []
    for line in text.splitlines():
        parts = [p.strip() for p in line.split("|")]
        if len(parts) >= 2 and parts[1]:
            versions.append(parts[1])
    return versions


def parse_dpkg_installed(text: str) -> Set[str]:
    """
    Names of fully installed packages from ``dpkg-query -W`` lines of the
    form ``name<TAB>status``. Removed packages that left config files behind
    are not installed.
    """
    installed = set()
    for line in text.splitlines():
        name, _, status = line.partition("\t")
        if name.strip() and status.strip() == "installed":
            installed.add(name.strip())
    return installed


_DNF_ARCH = re.compile(r"^(?P<name>\S+)\.(?P<arch>[A-Za-z0-9_]+)$")


def parse_dnf_check_update(text: str) -> ParseResult:
    """
    Parse ``dnf check-update``.

    Only the three-column ``name.arch version repo`` rows before the
    "Obsoleting Packages" section are taken; wrapped rows are skipped.
    """
    result = ParseResult()
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("Obsoleting"):
            break
        if stripped.startswith(("Last metadata", "Security:", "Updating", "Repositories")):
            continue

        parts = stripped.split()
        if len(parts) != 3:
            result.skipped += 1
            continue

        match = _DNF_ARCH.match(parts[0])
        if not match or not any(c.isdigit() for c in parts[1]):
            result.skipped += 1
            continue

        result.units.append(PendingUnit(
            id=match.group("name"),
            descriptor=f"Upgrade to {parts[1]} ({parts[2]})",
            version=parts[1],
        ))
    return result


def parse_dnf_history_latest_id(text: str) -> Optional[str]:
    """
    Most recent transaction id from ``dnf history list``.

    dnf lists newest first; both the pipe-separated (dnf4) and the
    whitespace-separated (dnf5) tables are handled.
    """
    for line in text.splitlines():
        first = line.split("|")[0].strip()
        if not first:
            continue
        token = first.split()[0]
        if token.isdigit():
            return token
    return None


def parse_flatpak_updates(text: str) -> ParseResult:
    """Parse ``flatpak remote-ls --updates --columns=application,name``."""
    result = ParseResult()
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        parts = re.split(r"\t|\s+", stripped, maxsplit=1)
        app_id = parts[0]
        if app_id in ("Application", "Application ID") or "." not in app_id:
            result.skipped += 1
            continue

        name = parts[1].strip() if len(parts) > 1 else app_id
        result.units.append(PendingUnit(id=app_id, descriptor=name or app_id))
    return result


def parse_snap_refresh_list(text: str) -> ParseResult:
    """Parse ``snap refresh --list``."""
    result = ParseResult()
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("Name ") or stripped == "Name":
            continue
        if stripped.startswith("All snaps up to date"):
            continue

        parts = stripped.split()
        if len(parts) < 2:
            result.skipped += 1
            continue

        result.units.append(PendingUnit(
            id=parts[0],
            descriptor=f"Refresh to {parts[1]}",
            version=parts[1],
        ))
    return result


def parse_snap_list_entry(text: str, name: str) -> Optional[str]:
    """
    Installed ``version rRev`` of one snap from ``snap list <name>``.

    Returns None when the snap is not listed.
    """
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[0] == name:
            return f"{parts[1]} r{parts[2]}"
    return None
