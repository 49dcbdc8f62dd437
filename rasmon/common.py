"""Shared event plumbing: trace records, daemon context and enumerations."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Callable

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"
EPOCH_TIMESTAMP = "1970-01-01 00:00:00 +0000"


class FieldMissingError(LookupError):
    """A trace event lacks a field that the handler needs."""

    def __init__(self, name: str) -> None:
        super().__init__(f"event field {name!r} is not available")
        self.name = name


class EventType(IntEnum):
    """Kinds of RAS events the daemon listens to."""

    MC = 0
    MCE = 1
    AER = 2
    NON_STANDARD = 3
    ARM = 4
    EXTLOG = 5
    DEVLINK = 6
    DISKERROR = 7
    MF = 8
    CXL_POISON = 9
    CXL_AER_UE = 10
    CXL_AER_CE = 11
    CXL_OVERFLOW = 12
    CXL_GENERIC = 13
    CXL_GENERAL_MEDIA = 14
    CXL_DRAM = 15
    CXL_MEMORY_MODULE = 16


class McErrorType(IntEnum):
    """Memory controller error types as reported by the kernel EDAC core."""

    CORRECTED = 0
    UNCORRECTED = 1
    FATAL = 2
    INFO = 3


class GhesSeverity(IntEnum):
    """Severities of hardware error sources (GHES)."""

    NO = 0
    CORRECTED = 1
    RECOVERABLE = 2
    PANIC = 3


@dataclass
class EventRecord:
    """One decoded trace event: its timestamp, CPU and named fields."""

    fields: dict[str, Any] = field(default_factory=dict)
    ts: int = 0
    cpu: int = 0

    def value(self, name: str) -> int:
        """Return an integer field, raising FieldMissingError if absent."""
        found = self.fields.get(name)
        if isinstance(found, bool) or not isinstance(found, int):
            raise FieldMissingError(name)
        return found

    def raw(self, name: str) -> Any:
        """Return a raw (bytes or text) field, raising FieldMissingError if absent."""
        found = self.fields.get(name)
        if found is None:
            raise FieldMissingError(name)
        return found

    def optional_value(self, name: str) -> int | None:
        """Return an integer field, or None when it is absent."""
        try:
            return self.value(name)
        except FieldMissingError:
            return None


def _default_user_hz() -> int:
    try:
        return int(os.sysconf("SC_CLK_TCK"))
    except (AttributeError, ValueError, OSError):
        return 100


@dataclass
class RasContext:
    """State shared by the event handlers."""

    use_uptime: bool = False
    uptime_diff: int = 0
    user_hz: int = field(default_factory=_default_user_hz)
    record_events: bool = False
    records: list = field(default_factory=list)
    filters: dict = field(default_factory=dict)
    clock: Callable[[], float] = time.time

    def event_time(self, record: EventRecord) -> int:
        """Wall-clock seconds at which the event happened."""
        if self.use_uptime:
            return record.ts // self.user_hz + self.uptime_diff
        return int(self.clock())


def format_timestamp(when: float) -> str:
    """Format seconds since the epoch as local time with UTC offset."""
    try:
        moment = datetime.fromtimestamp(when).astimezone()
    except (OverflowError, OSError, ValueError):
        return EPOCH_TIMESTAMP
    return moment.strftime(TIMESTAMP_FORMAT)