"""Decoding of block device request error events."""

from __future__ import annotations

import errno
from dataclasses import dataclass

from .common import EventRecord, RasContext, format_timestamp

_BLK_ERRORS: tuple[tuple[int, str], ...] = (
    (-getattr(errno, "EOPNOTSUPP", 95), "operation not supported error"),
    (-getattr(errno, "ETIMEDOUT", 110), "timeout error"),
    (-getattr(errno, "ENOSPC", 28), "critical space allocation error"),
    (-getattr(errno, "ENOLINK", 67), "recoverable transport error"),
    (-getattr(errno, "EREMOTEIO", 121), "critical target error"),
    (-getattr(errno, "EBADE", 52), "critical nexus error"),
    (-getattr(errno, "ENODATA", 61), "critical medium error"),
    (-getattr(errno, "EILSEQ", 84), "protection error"),
    (-getattr(errno, "ENOMEM", 12), "kernel resource error"),
    (-getattr(errno, "EBUSY", 16), "device resource error"),
    (-getattr(errno, "EAGAIN", 11), "nonblocking retry error"),
    (-getattr(errno, "EREMCHG", 78), "dm internal retry error"),
    (-getattr(errno, "EIO", 5), "I/O error"),
)


def block_error_name(err: int) -> str:
    """Describe a negative errno reported for a block request."""
    for code, name in _BLK_ERRORS:
        if code == err:
            return name
    return "unknown block error"


def _as_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _major(dev: int) -> int:
    return ((dev >> 8) & 0xFFF) | ((dev >> 32) & ~0xFFF & 0xFFFFFFFF)


def _minor(dev: int) -> int:
    return (dev & 0xFF) | ((dev >> 12) & ~0xFF & 0xFFFFFFFF)


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.split("\0", 1)[0]
    return bytes(value).split(b"\0", 1)[0].decode(errors="replace")


@dataclass
class DiskErrorEvent:
    timestamp: str = ""
    dev: str = ""
    sector: int = 0
    nr_sector: int = 0
    error: str = ""
    rwbs: str = ""
    cmd: str = ""


def handle_diskerror_event(ctx: RasContext, record: EventRecord) -> DiskErrorEvent:
    """Decode a block request error; missing fields raise FieldMissingError."""
    ev = DiskErrorEvent(timestamp=format_timestamp(ctx.event_time(record)))
    dev = record.value("dev") & 0xFFFFFFFFFFFFFFFF
    ev.dev = f"{_major(dev)}:{_minor(dev)}"
    ev.sector = record.value("sector")
    ev.nr_sector = record.value("nr_sector") & 0xFFFFFFFF
    ev.error = block_error_name(_as_int32(record.value("error")))
    ev.rwbs = _to_text(record.raw("rwbs"))
    ev.cmd = _to_text(record.raw("cmd"))
    if ctx.record_events:
        ctx.records.append(ev)
    return ev