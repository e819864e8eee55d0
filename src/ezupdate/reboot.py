"""
Reboot-pending detection.

Debian-family hosts drop a flag file; DNF hosts answer through
``dnf needs-restarting -r`` (exit status 1 means a reboot is needed).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from common.decorators import handle_errors
from common.exceptions import CommandTimeoutError

from .records import Backend
from .system import run_command

logger = logging.getLogger(__name__)

REBOOT_REQUIRED_FLAG = Path("/var/run/reboot-required")


def _flag_file_present() -> bool:
    return REBOOT_REQUIRED_FLAG.exists()


@handle_errors(CommandTimeoutError, default=None, log_level=logging.WARNING,
               message="Reboot check timed out")
def _dnf_needs_restarting() -> Optional[bool]:
    result = run_command(["dnf", "needs-restarting", "-r"], timeout=60)
    if result.returncode == 1:
        return True
    if result.returncode == 0:
        return False
    # Plugin missing or other error
    logger.debug(f"dnf needs-restarting unavailable: {result.brief_error()}")
    return None


def reboot_pending(backends: Iterable[Backend]) -> Optional[bool]:
    """
    Check whether the host needs a reboot.

    Args:
        backends: Backends active in this run

    Returns:
        True/False, or None when no available check could tell.
    """
    active = set(backends)
    answer: Optional[bool] = None

    if Backend.APT in active:
        answer = _flag_file_present()

    if Backend.DNF in active and not answer:
        dnf_answer = _dnf_needs_restarting()
        if dnf_answer is not None:
            answer = dnf_answer

    if answer:
        logger.warning("A system reboot is required")
    return answer
