#!/usr/bin/env python3
"""
EzUpdate Transaction Records

One record per affected unit per batch, stored one per line:

    timestamp|batchId|backend|unit|action|before|after

The field order, delimiter and escaping are fixed so that records written
by any version of the executor can be read back by the rollback engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List

from common.exceptions import RecordParseError

FIELD_DELIMITER = "|"
ESCAPE_CHAR = "\\"
FIELD_COUNT = 7

# Sentinel unit for a backend-wide bulk operation
BULK_TRANSACTION = "BULK_TRANSACTION"

# Sentinel "before" value: the unit was freshly installed, not upgraded
NONE_VERSION = "NONE"


class Backend(Enum):
    """Package manager a record belongs to. Values are stable on disk."""
    APT = "APT"
    DNF = "DNF"
    FLATPAK = "FLATPAK"
    SNAP = "SNAP"


class Action(Enum):
    """Kind of change a record describes."""
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class TransactionRecord:
    """A single applied change, sufficient for its backend to reverse it."""
    timestamp: datetime
    batch_id: str
    backend: Backend
    unit: str
    action: Action
    before: str
    after: str

    @property
    def is_bulk(self) -> bool:
        return self.unit == BULK_TRANSACTION

    @property
    def is_fresh_install(self) -> bool:
        return self.before == NONE_VERSION

    def to_line(self) -> str:
        return encode_record(self)


def _escape(value: str) -> str:
    return (
        value.replace(ESCAPE_CHAR, ESCAPE_CHAR * 2)
        .replace(FIELD_DELIMITER, ESCAPE_CHAR + FIELD_DELIMITER)
        .replace("\n", ESCAPE_CHAR + "n")
        .replace("\r", ESCAPE_CHAR + "r")
    )


def _split_fields(line: str) -> List[str]:
    """Split on unescaped delimiters, undoing escapes as we go."""
    fields = []
    current = []
    chars = iter(line)
    for ch in chars:
        if ch == ESCAPE_CHAR:
            nxt = next(chars, "")
            if nxt == "n":
                current.append("\n")
            elif nxt == "r":
                current.append("\r")
            elif nxt:
                current.append(nxt)
            else:
                # Trailing lone backslash, keep it literally
                current.append(ESCAPE_CHAR)
        elif ch == FIELD_DELIMITER:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


def _normalize_timestamp(value: datetime) -> datetime:
    # Naive timestamps from older writers are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def encode_record(record: TransactionRecord) -> str:
    """Encode a record as one history line, without the trailing newline."""
    fields = [
        record.timestamp.isoformat(),
        record.batch_id,
        record.backend.value,
        record.unit,
        record.action.value,
        record.before,
        record.after,
    ]
    return FIELD_DELIMITER.join(_escape(f) for f in fields)


def parse_record(line: str) -> TransactionRecord:
    """
    Decode one history line.

    Raises:
        RecordParseError: wrong field count, unknown enum value or a
            timestamp that is not ISO-8601.
    """
    stripped = line.rstrip("\r\n")
    fields = _split_fields(stripped)
    if len(fields) != FIELD_COUNT:
        raise RecordParseError(line, f"expected {FIELD_COUNT} fields, got {len(fields)}")

    raw_ts, batch_id, raw_backend, unit, raw_action, before, after = fields

    try:
        timestamp = _normalize_timestamp(datetime.fromisoformat(raw_ts))
    except ValueError:
        raise RecordParseError(line, f"invalid timestamp {raw_ts!r}")

    try:
        backend = Backend(raw_backend)
    except ValueError:
        raise RecordParseError(line, f"unknown backend {raw_backend!r}")

    try:
        action = Action(raw_action)
    except ValueError:
        raise RecordParseError(line, f"unknown action {raw_action!r}")

    if not batch_id or not unit:
        raise RecordParseError(line, "empty batch id or unit")

    return TransactionRecord(
        timestamp=timestamp,
        batch_id=batch_id,
        backend=backend,
        unit=unit,
        action=action,
        before=before,
        after=after,
    )


def new_batch_id(started_at: datetime) -> str:
    """Batch identifier derived from the run start time (UTC, sortable)."""
    started_at = _normalize_timestamp(started_at).astimezone(timezone.utc)
    return started_at.strftime("%Y%m%dT%H%M%S%fZ")
