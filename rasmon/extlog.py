"""Decoding of extended memory error log events."""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass

from .common import EventRecord, FieldMissingError, RasContext, format_timestamp

_ERR_TYPES = (
    "unknown",
    "no error",
    "single-bit ECC",
    "multi-bit ECC",
    "single-symbol chipkill ECC",
    "multi-symbol chipkill ECC",
    "master abort",
    "target abort",
    "parity error",
    "watchdog timeout",
    "invalid address",
    "mirror Broken",
    "memory sparing",
    "scrub corrected error",
    "scrub uncorrected error",
    "physical memory map-out event",
)

_SEVERITIES = ("recoverable", "fatal", "corrected", "informational")

_MASK64 = 2**64 - 1

# Compact CPER memory error record, little-endian and without padding.
_CPER = struct.Struct("<Q8H3Q3H")

# (validation bit, label, field index in the unpacked record, hex?)
_CPER_FIELDS = (
    (0x0008, "node", 1, False),
    (0x0010, "card", 2, False),
    (0x0020, "module", 3, False),
    (0x0040, "bank", 4, False),
    (0x0080, "device", 5, False),
    (0x0100, "row", 6, False),
    (0x0200, "column", 7, False),
    (0x0400, "bit_pos", 8, False),
    (0x0800, "req_id", 9, True),
    (0x1000, "resp_id", 10, True),
    (0x2000, "tgt_id", 11, True),
    (0x8000, "rank", 12, False),
    (0x10000, "card_handle", 13, False),
    (0x20000, "module_handle", 14, False),
)


def err_type_name(etype: int) -> str:
    """Name of a memory error type code."""
    if 0 <= etype < len(_ERR_TYPES):
        return _ERR_TYPES[etype]
    return "unknown-type"


def err_severity_name(severity: int) -> str:
    """Name of an error severity code."""
    if 0 <= severity < len(_SEVERITIES):
        return _SEVERITIES[severity]
    return "unknown-severity"


def err_mask(lsb: int) -> int:
    """Physical address mask given its least significant valid bit."""
    if lsb == 0xFF:
        return _MASK64
    return ~((1 << lsb) - 1) & _MASK64


def err_cper_data(data: bytes | None) -> str:
    """Describe the valid fields of a compact CPER memory error record."""
    data = bytes(data or b"")
    if len(data) < _CPER.size:
        data = data.ljust(_CPER.size, b"\0")
    values = _CPER.unpack_from(data)
    validation_bits = values[0]
    if validation_bits == 0:
        return ""
    parts = [" ("]
    for bit, label, index, as_hex in _CPER_FIELDS:
        if validation_bits & bit:
            value = values[index]
            parts.append(f"{label}: 0x{value:x} " if as_hex else f"{label}: {value} ")
    text = "".join(parts)
    # The closing parenthesis replaces the last character written.
    return text[:-1] + ")"


def uuid_le(raw: bytes) -> str:
    """Format 16 bytes as a UUID whose first three groups are little-endian."""
    raw = bytes(raw)
    if len(raw) != 16:
        raise ValueError(f"UUID needs 16 bytes, got {len(raw)}")
    return str(uuid.UUID(bytes_le=raw))


@dataclass
class ExtlogEvent:
    timestamp: str
    etype: int
    error_seq: int
    severity: int
    address: int
    pa_mask_lsb: int
    cper_data: bytes
    fru_text: str
    fru_id: bytes
    description: str = ""


def _optional_raw(record: EventRecord, name: str):
    try:
        return record.raw(name)
    except FieldMissingError:
        return None


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


def handle_extlog_mem_event(ctx: RasContext, record: EventRecord) -> ExtlogEvent:
    """Decode an extlog memory event; missing numeric fields raise FieldMissingError."""
    timestamp = format_timestamp(ctx.event_time(record))

    etype = record.value("etype")
    error_seq = record.value("err_seq")
    severity = record.value("sev")
    address = record.value("pa")
    pa_mask_lsb = record.value("pa_mask_lsb")

    cper_data = _to_bytes(_optional_raw(record, "data"))
    fru_text = _to_text(_optional_raw(record, "fru_text"))
    fru_id = _to_bytes(_optional_raw(record, "fru_id")).ljust(16, b"\0")[:16]

    description = (
        f"{timestamp} {error_seq} {err_severity_name(severity)} error: "
        f"{err_type_name(etype)} physical addr: 0x{address:x} "
        f"mask: 0x{err_mask(pa_mask_lsb):x}{err_cper_data(cper_data)} "
        f"{fru_text} {uuid_le(fru_id)}"
    )

    event = ExtlogEvent(
        timestamp=timestamp,
        etype=etype,
        error_seq=error_seq,
        severity=severity,
        address=address,
        pa_mask_lsb=pa_mask_lsb,
        cper_data=cper_data,
        fru_text=fru_text,
        fru_id=fru_id,
        description=description,
    )
    if ctx.record_events:
        ctx.records.append(event)
    return event