#!/usr/bin/env python3
"""
EzUpdate Run Reports

Per-run summary of what each backend had pending, what was applied and
what failed, rendered from Jinja2 templates for the console, the
last-run report file and email.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, TemplateNotFound

from common.exceptions import CommandTimeoutError, NotificationError
from utils.atomic_write import atomic_write_text

from .backends.base import PendingUnit
from .records import Backend, TransactionRecord
from .system import binary_available, run_command

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = "report.txt.j2"
ROLLBACK_TEMPLATE = "rollback.txt.j2"


@dataclass
class BackendReport:
    """One backend's section of the run report."""
    label: str
    backend: Backend
    bulk: bool = False
    pending: List[PendingUnit] = field(default_factory=list)
    applied: List[TransactionRecord] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    fetch_error: Optional[str] = None
    apply_error: Optional[str] = None
    cleanup_error: Optional[str] = None

    @property
    def errors(self) -> List[str]:
        return [e for e in (self.fetch_error, self.apply_error, self.cleanup_error) if e]

    @property
    def errored(self) -> bool:
        return bool(self.errors)

    @property
    def status(self) -> str:
        if self.errored:
            return "errored"
        if self.applied:
            return "updated"
        return "up to date"


@dataclass
class RunReport:
    """Dual-state summary of a run: pending at fetch, applied at apply."""
    batch_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    sections: List[BackendReport] = field(default_factory=list)
    reboot_required: Optional[bool] = None
    cancelled: bool = False
    history_path: Optional[Path] = None

    @property
    def pending_count(self) -> int:
        return sum(len(s.pending) for s in self.sections)

    @property
    def applied_count(self) -> int:
        return sum(len(s.applied) for s in self.sections)

    @property
    def errored(self) -> bool:
        return any(s.errored for s in self.sections)

    def section(self, label: str) -> Optional[BackendReport]:
        for section in self.sections:
            if section.label == label:
                return section
        return None


class ReportRenderer:
    """
    Renders reports from Jinja2 templates.

    Search order:
    1. User templates (~/.config/ezupdate/templates)
    2. System templates (/etc/ezupdate/templates)
    3. Templates shipped with the package
    """

    TEMPLATE_PATHS = [
        Path.home() / ".config/ezupdate/templates",
        Path("/etc/ezupdate/templates"),
        Path(__file__).parent / "templates",
    ]

    def __init__(self, additional_paths: Optional[List[Path]] = None):
        self._paths = list(additional_paths or []) + list(self.TEMPLATE_PATHS)
        self._env = self._create_environment()

    def _create_environment(self) -> Environment:
        loaders = []
        for path in self._paths:
            if path.exists() and path.is_dir():
                loaders.append(FileSystemLoader(str(path)))
                logger.debug(f"Added template path: {path}")

        env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        env.filters["tristate"] = _tristate
        return env

    def render(self, name: str, **variables) -> str:
        """
        Render a template.

        Raises:
            TemplateNotFound: No search path provides the template.
        """
        try:
            template = self._env.get_template(name)
        except TemplateNotFound:
            logger.error(f"Report template not found: {name}")
            raise
        return template.render(**variables)

    def render_run(self, report: RunReport) -> str:
        return self.render(REPORT_TEMPLATE, report=report)

    def render_rollback(self, summary) -> str:
        return self.render(ROLLBACK_TEMPLATE, summary=summary)


def _tristate(value: Optional[bool]) -> str:
    if value is None:
        return "unknown"
    return "yes" if value else "no"


def write_report(text: str, path: Union[str, Path]) -> Path:
    """Replace the last-run report file."""
    path = Path(path)
    atomic_write_text(path, text)
    logger.info(f"Report saved to {path}")
    return path


def send_report(recipient: str, subject: str, body: str, timeout: float = 60) -> None:
    """
    Mail a report through the local sendmail binary.

    Raises:
        NotificationError: sendmail missing or delivery refused.
    """
    if not binary_available("sendmail"):
        raise NotificationError(recipient, "sendmail not found")

    message = EmailMessage()
    message["To"] = recipient
    message["From"] = f"ezupdate@{socket.gethostname()}"
    message["Subject"] = subject
    message.set_content(body)

    try:
        result = run_command(["sendmail", "-t", "-oi"], timeout=timeout, input_text=message.as_string())
    except CommandTimeoutError as e:
        raise NotificationError(recipient, e.message)

    if not result.ok:
        raise NotificationError(recipient, result.brief_error())
    logger.info(f"Report sent to {recipient}")
