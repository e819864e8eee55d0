#!/usr/bin/env python3
"""
EzUpdate History Store

Append-only ledger of transaction records shared by every run on the host.
Records are never rewritten or deleted; rollback replays them newest first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from common.exceptions import RecordParseError
from utils.atomic_write import durable_append

from .records import TransactionRecord, parse_record

logger = logging.getLogger(__name__)

# Batch selector resolving to the most recent batch in the store
LATEST = "latest"

_BLOCK_SIZE = 8192


@dataclass
class BatchSummary:
    """Aggregated view of one batch for listings."""
    batch_id: str
    first_timestamp: datetime
    last_timestamp: datetime
    record_count: int = 0
    backends: List[str] = field(default_factory=list)


def _read_lines_reversed(path: Path, block_size: int = _BLOCK_SIZE) -> Iterator[bytes]:
    """Yield the non-empty lines of a file from last to first."""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        position = f.tell()
        remainder = b""

        while position > 0:
            read_size = min(block_size, position)
            position -= read_size
            f.seek(position)
            chunk = f.read(read_size) + remainder

            lines = chunk.split(b"\n")
            # First piece may be the tail of a line that starts in an earlier block
            remainder = lines.pop(0)
            for line in reversed(lines):
                if line:
                    yield line

        if remainder:
            yield remainder


class HistoryStore:
    """
    Durable, append-only log of TransactionRecords.

    Supports:
    - append (flushed to disk before returning)
    - lazy scan in exact reverse append order
    - filtering by batch, including the "latest" selector
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"HistoryStore({str(self.path)!r})"

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def append(self, record: TransactionRecord) -> None:
        """
        Append one record.

        The whole line is written in a single locked write and fsynced, so
        a crash right after return cannot lose it and concurrent runs
        cannot tear it.
        """
        line = record.to_line() + "\n"
        durable_append(self.path, line.encode("utf-8"))
        logger.debug(f"Recorded {record.backend.value}:{record.unit} in batch {record.batch_id}")

    def _iter_reverse(self) -> Iterator[TransactionRecord]:
        if not self.exists:
            return

        for raw in _read_lines_reversed(self.path):
            text = raw.decode("utf-8", errors="replace")
            try:
                yield parse_record(text)
            except RecordParseError as e:
                logger.warning(f"Skipping unreadable history line in {self.path}: {e.message}")

    def scan_reverse(self, batch: Optional[str] = None) -> Iterator[TransactionRecord]:
        """
        Iterate records newest first.

        Args:
            batch: Only yield records of this batch id. LATEST resolves to
                the most recent batch at the time iteration starts.

        Yields:
            TransactionRecord in exact reverse of append order.
        """
        if batch == LATEST:
            batch = self.latest_batch_id()
            if batch is None:
                return

        for record in self._iter_reverse():
            if batch is None or record.batch_id == batch:
                yield record

    def latest_batch_id(self) -> Optional[str]:
        """
        Batch of the record with the greatest timestamp.

        Ties go to the record appended last.
        """
        newest: Optional[TransactionRecord] = None
        for record in self._iter_reverse():
            if newest is None or record.timestamp > newest.timestamp:
                newest = record
        return newest.batch_id if newest else None

    def batches(self) -> List[BatchSummary]:
        """List every batch in the store, most recent first."""
        summaries: Dict[str, BatchSummary] = {}

        for record in self._iter_reverse():
            summary = summaries.get(record.batch_id)
            if summary is None:
                summary = BatchSummary(
                    batch_id=record.batch_id,
                    first_timestamp=record.timestamp,
                    last_timestamp=record.timestamp,
                )
                summaries[record.batch_id] = summary

            summary.record_count += 1
            summary.first_timestamp = min(summary.first_timestamp, record.timestamp)
            summary.last_timestamp = max(summary.last_timestamp, record.timestamp)
            if record.backend.value not in summary.backends:
                summary.backends.append(record.backend.value)

        return sorted(summaries.values(), key=lambda s: s.last_timestamp, reverse=True)
