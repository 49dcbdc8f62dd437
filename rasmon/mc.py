"""Decoding of memory controller (EDAC) error events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .common import EventRecord, FieldMissingError, McErrorType, RasContext, format_timestamp

log = logging.getLogger(__name__)

_ERROR_TYPE_NAMES = {
    McErrorType.CORRECTED: "Corrected",
    McErrorType.UNCORRECTED: "Uncorrected",
    McErrorType.FATAL: "Fatal",
    McErrorType.INFO: "Info",
}


@dataclass
class McEvent:
    timestamp: str = ""
    error_count: int = 0
    error_type: str = ""
    msg: str = ""
    label: str = ""
    mc_index: int = 0
    top_layer: int = -1
    middle_layer: int = -1
    lower_layer: int = -1
    address: int = 0
    grain: int = 0
    syndrome: int = 0
    driver_detail: str = ""
    description: str = field(default="", repr=False)


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.split("\0", 1)[0]
    return bytes(value).split(b"\0", 1)[0].decode(errors="replace")


def _as_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _as_int8(value: int) -> int:
    value &= 0xFF
    return value - 0x100 if value & 0x80 else value


def _error_type_name(value: int) -> str:
    try:
        return _ERROR_TYPE_NAMES[McErrorType(value)]
    except ValueError:
        return "Info"


def _location(ev: McEvent) -> str:
    if ev.lower_layer >= 0:
        return f" location: {ev.top_layer}:{ev.middle_layer}:{ev.lower_layer}"
    if ev.middle_layer >= 0:
        return f" location: {ev.top_layer}:{ev.middle_layer}"
    if ev.top_layer >= 0:
        return f" location: {ev.top_layer}"
    return ""


def handle_mc_event(ctx: RasContext, record: EventRecord) -> McEvent | None:
    """Decode a memory controller error event.

    A record that lacks one of the expected fields is logged and skipped:
    None is returned.
    """
    ev = McEvent(timestamp=format_timestamp(ctx.event_time(record)))
    out = [f"{ev.timestamp} "]
    parsed = 0
    try:
        ev.error_count = _as_int32(record.value("error_count"))
        parsed += 1
        out.append(f"{ev.error_count} ")

        ev.error_type = _error_type_name(record.value("error_type"))
        parsed += 1
        out.append(ev.error_type)
        out.append(" errors:" if ev.error_count > 1 else " error:")

        ev.msg = _to_text(record.raw("msg"))
        parsed += 1
        if ev.msg:
            out.append(f" {ev.msg}")

        ev.label = _to_text(record.raw("label"))
        parsed += 1
        if ev.label:
            out.append(f" on {ev.label}")

        out.append(" (")
        ev.mc_index = _as_int32(record.value("mc_index"))
        parsed += 1
        out.append(f"mc: {ev.mc_index}")

        ev.top_layer = _as_int8(record.value("top_layer"))
        parsed += 1
        ev.middle_layer = _as_int8(record.value("middle_layer"))
        parsed += 1
        ev.lower_layer = _as_int8(record.value("lower_layer"))
        parsed += 1
        out.append(_location(ev))

        ev.address = record.value("address")
        parsed += 1
        if ev.address:
            out.append(f" address: 0x{ev.address:08x}")

        ev.grain = record.value("grain_bits")
        parsed += 1
        out.append(f" grain: {ev.grain}")

        ev.syndrome = record.value("syndrome")
        parsed += 1
        if ev.syndrome:
            out.append(f" syndrome: 0x{ev.syndrome:08x}")

        ev.driver_detail = _to_text(record.raw("driver_detail"))
        parsed += 1
        if ev.driver_detail:
            out.append(f" {ev.driver_detail}")
        out.append(")")
    except FieldMissingError:
        log.error("MC error handler: can't parse field #%d", parsed)
        return None

    ev.description = "".join(out)
    if ctx.record_events:
        ctx.records.append(ev)
    return ev