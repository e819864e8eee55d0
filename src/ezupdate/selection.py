#!/usr/bin/env python3
"""
Update selection.

Lets an operator deselect pending units before anything is applied.
Returning None from a selector means the operator cancelled the run.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .backends.base import PendingUnit
from .system import binary_available

logger = logging.getLogger(__name__)

# label -> selected unit ids
Selection = Dict[str, List[str]]


class Selector(ABC):
    """Chooses which pending units a run applies."""

    @abstractmethod
    def select(
        self,
        pending: Dict[str, List[PendingUnit]],
        bulk_labels: List[str],
    ) -> Optional[Selection]:
        """
        Args:
            pending: Pending units per adapter label
            bulk_labels: Active bulk-only adapters, always applied

        Returns:
            Selected unit ids per label, or None if cancelled.
        """


class SelectAll(Selector):
    """Non-interactive selection: every pending unit."""

    def select(self, pending, bulk_labels):
        return {label: [unit.id for unit in units] for label, units in pending.items()}


class WhiptailSelector(Selector):
    """Terminal checklist, every unit pre-checked."""

    TITLE = "System Updates"

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        # whiptail draws on the terminal and writes its answer to stderr
        return subprocess.run(
            ["whiptail", "--title", self.TITLE] + args,
            stderr=subprocess.PIPE,
            text=True,
        )

    def select(self, pending, bulk_labels):
        items: List[str] = []
        for label, units in pending.items():
            for unit in units:
                description = f"Update {unit.id}"
                if unit.descriptor:
                    description += f" ({unit.descriptor})"
                items.extend([f"{label}:{unit.id}", description, "ON"])

        if not items:
            if bulk_labels:
                names = ", ".join(bulk_labels)
                result = self._run([
                    "--yesno", f"{names} updates detected (bulk mode). Proceed?", "10", "60",
                ])
                if result.returncode != 0:
                    return None
            else:
                self._run(["--msgbox", "No specific updates found!", "10", "40"])
            return {label: [] for label in pending}

        result = self._run([
            "--separate-output",
            "--checklist", "Select packages to update:", "20", "78", "10",
        ] + items)

        if result.returncode != 0:
            return None

        selection: Selection = {label: [] for label in pending}
        for line in (result.stderr or "").splitlines():
            tag = line.strip().strip('"')
            label, sep, unit_id = tag.partition(":")
            if sep and label in selection:
                selection[label].append(unit_id)
        return selection


def make_selector(interactive: bool) -> Selector:
    """Pick the selection surface for this run."""
    if not interactive:
        logger.info("Non-interactive mode. Proceeding with all updates.")
        return SelectAll()
    if not binary_available("whiptail"):
        logger.info("Whiptail not found. Proceeding with all updates.")
        return SelectAll()
    return WhiptailSelector()
