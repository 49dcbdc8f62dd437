"""Decoding of devlink health reports and network transmit timeouts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .common import EventRecord, EventType, RasContext, format_timestamp


@dataclass
class DevlinkEvent:
    timestamp: str = ""
    bus_name: str = ""
    dev_name: str = ""
    driver_name: str = ""
    reporter_name: str = ""
    msg: str = ""


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.split("\0", 1)[0]
    return bytes(value).split(b"\0", 1)[0].decode(errors="replace")


def _as_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _store(ctx: RasContext, event: DevlinkEvent) -> DevlinkEvent:
    if ctx.record_events:
        ctx.records.append(event)
    return event


def handle_net_xmit_timeout(ctx: RasContext, record: EventRecord) -> DevlinkEvent:
    """Decode a network transmit timeout; missing fields raise FieldMissingError."""
    ev = DevlinkEvent(timestamp=format_timestamp(ctx.event_time(record)))
    ev.dev_name = _to_text(record.raw("name"))
    ev.driver_name = _to_text(record.raw("driver"))
    queue_index = _as_int32(record.value("queue_index"))
    ev.msg = f"TX timeout on queue: {queue_index}\n"
    return _store(ctx, ev)


def handle_devlink_event(
    ctx: RasContext,
    record: EventRecord,
    event_filter: Optional[Callable[[EventRecord], bool]] = None,
) -> DevlinkEvent | None:
    """Decode a devlink health report.

    Records matched by the filter (by default the one registered for devlink
    events in the context) are skipped and None is returned.
    """
    if event_filter is None:
        event_filter = ctx.filters.get(EventType.DEVLINK)
    if event_filter is not None and event_filter(record):
        return None

    ev = DevlinkEvent(timestamp=format_timestamp(ctx.event_time(record)))
    ev.bus_name = _to_text(record.raw("bus_name"))
    ev.dev_name = _to_text(record.raw("dev_name"))
    ev.driver_name = _to_text(record.raw("driver_name"))
    ev.reporter_name = _to_text(record.raw("reporter_name"))
    ev.msg = _to_text(record.raw("msg"))
    return _store(ctx, ev)