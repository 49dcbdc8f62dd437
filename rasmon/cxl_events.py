"""Decoding of CXL poison, AER and overflow trace events."""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .common import EPOCH_TIMESTAMP, EventRecord, RasContext, format_timestamp

NSEC_PER_SEC = 1_000_000_000

# Poison list payload-out flags
CXL_POISON_FLAG_MORE = 1 << 0
CXL_POISON_FLAG_OVERFLOW = 1 << 1
CXL_POISON_FLAG_SCANNING = 1 << 2

CXL_HEADERLOG_SIZE_U32 = 128

_POISON_TRACE_TYPES = {0: "List", 1: "Inject", 2: "Clear"}
_POISON_SOURCES = {0: "Unknown", 1: "External", 2: "Internal", 3: "Injected", 7: "Vendor"}
_LOG_TYPES = {0: "Informational", 1: "Warning", 2: "Failure", 3: "Fatal"}

CXL_AER_UE: tuple[tuple[int, str], ...] = (
    (1 << 0, "Cache Data Parity Error"),
    (1 << 1, "Cache Address Parity Error"),
    (1 << 2, "Cache Byte Enable Parity Error"),
    (1 << 3, "Cache Data ECC Error"),
    (1 << 4, "Memory Data Parity Error"),
    (1 << 5, "Memory Address Parity Error"),
    (1 << 6, "Memory Byte Enable Parity Error"),
    (1 << 7, "Memory Data ECC Error"),
    (1 << 8, "REINIT Threshold Hit"),
    (1 << 9, "Received Unrecognized Encoding"),
    (1 << 10, "Received Poison From Peer"),
    (1 << 11, "Receiver Overflow"),
    (1 << 14, "Component Specific Error"),
    (1 << 15, "IDE Tx Error"),
    (1 << 16, "IDE Rx Error"),
)

CXL_AER_CE: tuple[tuple[int, str], ...] = (
    (1 << 0, "Cache Data ECC Error"),
    (1 << 1, "Memory Data ECC Error"),
    (1 << 2, "CRC Threshold Hit"),
    (1 << 3, "Retry Threshold"),
    (1 << 4, "Received Cache Poison From Peer"),
    (1 << 5, "Received Memory Poison From Peer"),
    (1 << 6, "Received Error From Physical Layer"),
)


def convert_timestamp(ts: int) -> str:
    """Format a CXL timestamp given in nanoseconds since the epoch."""
    if not ts:
        return EPOCH_TIMESTAMP
    return format_timestamp(ts // NSEC_PER_SEC)


def uuid_be(raw) -> str:
    """Format 16 bytes, in the order given, as a UUID string."""
    raw = _to_bytes(raw)
    if len(raw) != 16:
        raise ValueError(f"UUID needs 16 bytes, got {len(raw)}")
    return str(uuid.UUID(bytes=raw))


def cxl_type_str(names: Sequence[str], value: int) -> str:
    """Name for an enumerated value, or "Unknown" when out of range."""
    if 0 <= value < len(names):
        return names[value]
    return "Unknown"


def decode_flags(value: int, table: Iterable[tuple[int, str]]) -> str:
    """Quoted names of the flags set in value, each followed by a space."""
    return "".join(f"'{name}' " for bit, name in table if value & bit)


def cxl_log_type_str(value: int) -> str:
    """Name of a CXL event log type."""
    return _LOG_TYPES.get(value, "Unknown")


def _to_bytes(value) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode()
    return bytes(value)


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.split("\0", 1)[0]
    return bytes(value).split(b"\0", 1)[0].decode(errors="replace")


def _event_timestamp(ctx: RasContext, record: EventRecord) -> str:
    return format_timestamp(record.ts // ctx.user_hz + ctx.uptime_diff)


def _header_log_words(value) -> tuple[int, ...]:
    if isinstance(value, (bytes, bytearray, memoryview, str)):
        data = _to_bytes(value)
        data = data[: CXL_HEADERLOG_SIZE_U32 * 4].ljust(CXL_HEADERLOG_SIZE_U32 * 4, b"\0")
        return struct.unpack(f"<{CXL_HEADERLOG_SIZE_U32}I", data)
    words = [int(word) & 0xFFFFFFFF for word in value][:CXL_HEADERLOG_SIZE_U32]
    words.extend([0] * (CXL_HEADERLOG_SIZE_U32 - len(words)))
    return tuple(words)


@dataclass
class CxlPoisonEvent:
    timestamp: str = ""
    memdev: str = ""
    host: str = ""
    serial: int = 0
    trace_type: str = ""
    region: str = ""
    uuid: str = ""
    hpa: int = 0
    dpa: int = 0
    dpa_length: int = 0
    source: str = ""
    flags: int = 0
    overflow_ts: str = EPOCH_TIMESTAMP
    description: str = field(default="", repr=False)


@dataclass
class CxlAerUeEvent:
    timestamp: str = ""
    memdev: str = ""
    host: str = ""
    serial: int = 0
    error_status: int = 0
    first_error: int = 0
    header_log: tuple[int, ...] = ()
    description: str = field(default="", repr=False)

    @property
    def header_log_be(self) -> bytes:
        """Header log words serialised big-endian, as they are stored."""
        return b"".join(word.to_bytes(4, "big") for word in self.header_log)


@dataclass
class CxlAerCeEvent:
    timestamp: str = ""
    memdev: str = ""
    host: str = ""
    serial: int = 0
    error_status: int = 0
    description: str = field(default="", repr=False)


@dataclass
class CxlOverflowEvent:
    timestamp: str = ""
    memdev: str = ""
    host: str = ""
    serial: int = 0
    log_type: str = ""
    count: int = 0
    first_ts: str = EPOCH_TIMESTAMP
    last_ts: str = EPOCH_TIMESTAMP
    description: str = field(default="", repr=False)


def _store(ctx: RasContext, event):
    if ctx.record_events:
        ctx.records.append(event)
    return event


def handle_cxl_poison_event(ctx: RasContext, record: EventRecord) -> CxlPoisonEvent:
    """Decode a CXL poison list event; missing fields raise FieldMissingError."""
    ev = CxlPoisonEvent(timestamp=_event_timestamp(ctx, record))
    out = [f"{ev.timestamp} "]
    ev.memdev = _to_text(record.raw("memdev"))
    out.append(f"memdev:{ev.memdev} ")
    ev.host = _to_text(record.raw("host"))
    out.append(f"host:{ev.host} ")
    ev.serial = record.value("serial")
    out.append(f"serial:0x{ev.serial:x} ")
    ev.trace_type = _POISON_TRACE_TYPES.get(record.value("trace_type"), "Invalid")
    out.append(f"trace_type:{ev.trace_type} ")
    ev.region = _to_text(record.raw("region"))
    out.append(f"region:{ev.region} ")
    ev.uuid = _to_text(record.raw("uuid"))
    out.append(f"region_uuid:{ev.uuid} ")
    ev.hpa = record.value("hpa")
    out.append(f"poison list: hpa:0x{ev.hpa:x} ")
    ev.dpa = record.value("dpa")
    out.append(f"dpa:0x{ev.dpa:x} ")
    ev.dpa_length = record.value("dpa_length")
    out.append(f"dpa_length:0x{ev.dpa_length:x} ")
    ev.source = _POISON_SOURCES.get(record.value("source"), "Invalid")
    out.append(f"source:{ev.source} ")
    ev.flags = record.value("flags")
    out.append(f"flags:{ev.flags} ")
    if ev.flags & CXL_POISON_FLAG_OVERFLOW:
        ev.overflow_ts = convert_timestamp(record.value("overflow_ts"))
    else:
        ev.overflow_ts = EPOCH_TIMESTAMP
    out.append(f"overflow timestamp:{ev.overflow_ts}\n")
    ev.description = "".join(out)
    return _store(ctx, ev)


def _device_prefix(ctx: RasContext, record: EventRecord, ev) -> list[str]:
    ev.timestamp = _event_timestamp(ctx, record)
    ev.memdev = _to_text(record.raw("memdev"))
    ev.host = _to_text(record.raw("host"))
    ev.serial = record.value("serial")
    return [
        f"{ev.timestamp} ",
        f"memdev:{ev.memdev} ",
        f"host:{ev.host} ",
        f"serial:0x{ev.serial:x} ",
    ]


def handle_cxl_aer_ue_event(ctx: RasContext, record: EventRecord) -> CxlAerUeEvent:
    """Decode a CXL uncorrectable AER event."""
    ev = CxlAerUeEvent()
    out = _device_prefix(ctx, record, ev)
    ev.error_status = record.value("status")
    out.append("error status:")
    out.append(decode_flags(ev.error_status, CXL_AER_UE))
    ev.first_error = record.value("first_error")
    out.append("first error:")
    out.append(decode_flags(ev.first_error, CXL_AER_UE))
    ev.header_log = _header_log_words(record.raw("header_log"))
    out.append("header log:\n")
    for index, word in enumerate(ev.header_log):
        out.append(f"{word:08x} ")
        if index > 0 and index % 20 == 0:
            out.append("\n")
    ev.description = "".join(out)
    return _store(ctx, ev)


def handle_cxl_aer_ce_event(ctx: RasContext, record: EventRecord) -> CxlAerCeEvent:
    """Decode a CXL correctable AER event."""
    ev = CxlAerCeEvent()
    out = _device_prefix(ctx, record, ev)
    ev.error_status = record.value("status")
    out.append("error status:")
    out.append(decode_flags(ev.error_status, CXL_AER_CE))
    ev.description = "".join(out)
    return _store(ctx, ev)


def handle_cxl_overflow_event(ctx: RasContext, record: EventRecord) -> CxlOverflowEvent:
    """Decode a CXL event log overflow event."""
    ev = CxlOverflowEvent()
    out = _device_prefix(ctx, record, ev)
    ev.log_type = cxl_log_type_str(record.value("log"))
    out.append(f"log type:{ev.log_type} ")
    ev.count = record.value("count")
    ev.first_ts = convert_timestamp(record.value("first_ts"))
    ev.last_ts = convert_timestamp(record.value("last_ts"))
    if ev.count:
        out.append(f"{ev.count} errors from {ev.first_ts} to {ev.last_ts}\n")
    ev.description = "".join(out)
    return _store(ctx, ev)