"""Decoding of CXL event records: generic, general media, DRAM and memory module."""

from __future__ import annotations

from dataclasses import dataclass, field

from .common import EventRecord, RasContext, format_timestamp
from .cxl_events import convert_timestamp, cxl_log_type_str, cxl_type_str, decode_flags, uuid_be

CXL_EVENT_RECORD_DATA_LENGTH = 0x50
CXL_EVENT_GEN_MED_COMP_ID_SIZE = 0x10
CXL_EVENT_DER_CORRECTION_MASK_SIZE = 0x20

# Common event record flags (CXL 3.0, table 8-42)
CXL_HDR_FLAGS: tuple[tuple[int, str], ...] = (
    (1 << 2, "PERMANENT_CONDITION"),
    (1 << 3, "MAINTENANCE_NEEDED"),
    (1 << 4, "PERFORMANCE_DEGRADED"),
    (1 << 5, "HARDWARE_REPLACEMENT_NEEDED"),
)

CXL_DPA_FLAGS: tuple[tuple[int, str], ...] = (
    (1 << 0, "VOLATILE"),
    (1 << 1, "NOT_REPAIRABLE"),
)

CXL_GMER_EVENT_DESC_FLAGS: tuple[tuple[int, str], ...] = (
    (1 << 0, "UNCORRECTABLE EVENT"),
    (1 << 1, "THRESHOLD EVENT"),
    (1 << 2, "POISON LIST OVERFLOW"),
)

CXL_GMER_VALID_CHANNEL = 1 << 0
CXL_GMER_VALID_RANK = 1 << 1
CXL_GMER_VALID_DEVICE = 1 << 2
CXL_GMER_VALID_COMPONENT = 1 << 3

CXL_DER_VALID_CHANNEL = 1 << 0
CXL_DER_VALID_RANK = 1 << 1
CXL_DER_VALID_NIBBLE = 1 << 2
CXL_DER_VALID_BANK_GROUP = 1 << 3
CXL_DER_VALID_BANK = 1 << 4
CXL_DER_VALID_ROW = 1 << 5
CXL_DER_VALID_COLUMN = 1 << 6
CXL_DER_VALID_CORRECTION_MASK = 1 << 7

CXL_GMER_MEM_EVENT_TYPE = ("ECC Error", "Invalid Address", "Data Path Error")

CXL_GMER_TRANS_TYPE = (
    "Unknown",
    "Host Read",
    "Host Write",
    "Host Scan Media",
    "Host Inject Poison",
    "Internal Media Scrub",
    "Internal Media Management",
)

CXL_DEV_EVT_TYPE = (
    "Health Status Change",
    "Media Status Change",
    "Life Used Change",
    "Temperature Change",
    "Data Path Error",
    "LSA Error",
)

CXL_HEALTH_STATUS: tuple[tuple[int, str], ...] = (
    (1 << 0, "MAINTENANCE_NEEDED"),
    (1 << 1, "PERFORMANCE_DEGRADED"),
    (1 << 2, "REPLACEMENT_NEEDED"),
)

CXL_MEDIA_STATUS = (
    "Normal",
    "Not Ready",
    "Write Persistency Lost",
    "All Data Lost",
    "Write Persistency Loss in the Event of Power Loss",
    "Write Persistency Loss in Event of Shutdown",
    "Write Persistency Loss Imminent",
    "All Data Loss in Event of Power Loss",
    "All Data loss in the Event of Shutdown",
    "All Data Loss Imminent",
)

CXL_TWO_BIT_STATUS = ("Normal", "Warning", "Critical")
CXL_ONE_BIT_STATUS = ("Normal", "Warning")


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


@dataclass
class CxlCommonHeader:
    timestamp: str = ""
    memdev: str = ""
    host: str = ""
    serial: int = 0
    log_type: str = ""
    hdr_uuid: str = ""
    hdr_flags: int = 0
    hdr_handle: int = 0
    hdr_related_handle: int = 0
    hdr_timestamp: str = ""
    hdr_length: int = 0
    hdr_maint_op_class: int = 0


@dataclass
class CxlGenericEvent:
    hdr: CxlCommonHeader = field(default_factory=CxlCommonHeader)
    data: bytes = b""
    description: str = field(default="", repr=False)


@dataclass
class CxlGeneralMediaEvent:
    hdr: CxlCommonHeader = field(default_factory=CxlCommonHeader)
    dpa: int = 0
    dpa_flags: int = 0
    descriptor: int = 0
    type: int = 0
    transaction_type: int = 0
    validity_flags: int = 0
    channel: int = 0
    rank: int = 0
    device: int = 0
    comp_id: bytes = b""
    description: str = field(default="", repr=False)


@dataclass
class CxlDramEvent:
    hdr: CxlCommonHeader = field(default_factory=CxlCommonHeader)
    dpa: int = 0
    dpa_flags: int = 0
    descriptor: int = 0
    type: int = 0
    transaction_type: int = 0
    validity_flags: int = 0
    channel: int = 0
    rank: int = 0
    nibble_mask: int = 0
    bank_group: int = 0
    bank: int = 0
    row: int = 0
    column: int = 0
    cor_mask: bytes = b""
    description: str = field(default="", repr=False)


@dataclass
class CxlMemoryModuleEvent:
    hdr: CxlCommonHeader = field(default_factory=CxlCommonHeader)
    event_type: int = 0
    health_status: int = 0
    media_status: int = 0
    add_status: int = 0
    life_used: int = 0
    device_temp: int = 0
    dirty_shutdown_cnt: int = 0
    cor_vol_err_cnt: int = 0
    cor_per_err_cnt: int = 0
    description: str = field(default="", repr=False)


def parse_common_header(ctx: RasContext, record: EventRecord, out: list) -> CxlCommonHeader:
    """Decode the common event record header, appending its text to out.

    Missing fields raise FieldMissingError.
    """
    hdr = CxlCommonHeader()
    hdr.timestamp = format_timestamp(record.ts // ctx.user_hz + ctx.uptime_diff)
    out.append(f"{hdr.timestamp} ")
    hdr.memdev = _to_text(record.raw("memdev"))
    out.append(f"memdev:{hdr.memdev} ")
    hdr.host = _to_text(record.raw("host"))
    out.append(f"host:{hdr.host} ")
    hdr.serial = record.value("serial")
    out.append(f"serial:0x{hdr.serial:x} ")
    hdr.log_type = cxl_log_type_str(record.value("log"))
    out.append(f"log type:{hdr.log_type} ")
    hdr.hdr_uuid = uuid_be(_to_bytes(record.raw("hdr_uuid"))[:16].ljust(16, b"\0"))
    out.append(f"hdr_uuid:{hdr.hdr_uuid} ")
    hdr.hdr_flags = record.value("hdr_flags")
    out.append(decode_flags(hdr.hdr_flags, CXL_HDR_FLAGS))
    hdr.hdr_handle = record.value("hdr_handle")
    out.append(f"hdr_handle:0x{hdr.hdr_handle:x} ")
    hdr.hdr_related_handle = record.value("hdr_related_handle")
    out.append(f"hdr_related_handle:0x{hdr.hdr_related_handle:x} ")
    hdr.hdr_timestamp = convert_timestamp(record.value("hdr_timestamp"))
    out.append(f"hdr_timestamp:{hdr.hdr_timestamp} ")
    hdr.hdr_length = record.value("hdr_length")
    out.append(f"hdr_length:{hdr.hdr_length} ")
    hdr.hdr_maint_op_class = record.value("hdr_maint_op_class")
    out.append(f"hdr_maint_op_class:{hdr.hdr_maint_op_class} ")
    return hdr


def _store(ctx: RasContext, event):
    if ctx.record_events:
        ctx.records.append(event)
    return event


def _hex_bytes(data: bytes) -> str:
    return "".join(f"{byte:02x} " for byte in data)


def handle_cxl_generic_event(ctx: RasContext, record: EventRecord) -> CxlGenericEvent:
    """Decode a CXL generic event record."""
    out: list[str] = []
    ev = CxlGenericEvent(hdr=parse_common_header(ctx, record, out))
    raw = _to_bytes(record.raw("data"))
    ev.data = raw[:CXL_EVENT_RECORD_DATA_LENGTH].ljust(CXL_EVENT_RECORD_DATA_LENGTH, b"\0")
    out.append(f"\ndata:\n  {0:08x}: ")
    for offset in range(0, CXL_EVENT_RECORD_DATA_LENGTH, 4):
        if offset > 0 and offset % 16 == 0:
            out.append(f"\n  {offset:08x}: ")
        out.append(ev.data[offset:offset + 4].hex() + " ")
    ev.description = "".join(out)
    return _store(ctx, ev)


def _media_common(record: EventRecord, ev, out: list) -> None:
    ev.dpa = record.value("dpa")
    out.append(f"dpa:0x{ev.dpa:x} ")
    ev.dpa_flags = record.value("dpa_flags")
    out.append("dpa_flags:")
    out.append(decode_flags(ev.dpa_flags, CXL_DPA_FLAGS))
    ev.descriptor = record.value("descriptor")
    out.append("descriptor:")
    out.append(decode_flags(ev.descriptor, CXL_GMER_EVENT_DESC_FLAGS))
    ev.type = record.value("type")
    out.append(f"type:{cxl_type_str(CXL_GMER_MEM_EVENT_TYPE, ev.type)} ")
    ev.transaction_type = record.value("transaction_type")
    out.append(f"transaction_type:{cxl_type_str(CXL_GMER_TRANS_TYPE, ev.transaction_type)} ")
    ev.validity_flags = record.value("validity_flags")


def handle_cxl_general_media_event(ctx: RasContext, record: EventRecord) -> CxlGeneralMediaEvent:
    """Decode a CXL general media event record."""
    out: list[str] = []
    ev = CxlGeneralMediaEvent(hdr=parse_common_header(ctx, record, out))
    _media_common(record, ev, out)
    if ev.validity_flags & CXL_GMER_VALID_CHANNEL:
        ev.channel = record.value("channel")
        out.append(f"channel:{ev.channel} ")
    if ev.validity_flags & CXL_GMER_VALID_RANK:
        ev.rank = record.value("rank")
        out.append(f"rank:{ev.rank} ")
    if ev.validity_flags & CXL_GMER_VALID_DEVICE:
        ev.device = record.value("device")
        out.append(f"device:{ev.device:x} ")
    if ev.validity_flags & CXL_GMER_VALID_COMPONENT:
        raw = _to_bytes(record.raw("comp_id"))
        ev.comp_id = raw[:CXL_EVENT_GEN_MED_COMP_ID_SIZE].ljust(
            CXL_EVENT_GEN_MED_COMP_ID_SIZE, b"\0"
        )
        out.append("comp_id:")
        out.append(_hex_bytes(ev.comp_id))
    ev.description = "".join(out)
    return _store(ctx, ev)


def handle_cxl_dram_event(ctx: RasContext, record: EventRecord) -> CxlDramEvent:
    """Decode a CXL DRAM event record."""
    out: list[str] = []
    ev = CxlDramEvent(hdr=parse_common_header(ctx, record, out))
    _media_common(record, ev, out)
    optional = (
        (CXL_DER_VALID_CHANNEL, "channel", "channel"),
        (CXL_DER_VALID_RANK, "rank", "rank"),
        (CXL_DER_VALID_NIBBLE, "nibble_mask", "nibble_mask"),
        (CXL_DER_VALID_BANK_GROUP, "bank_group", "bank_group"),
        (CXL_DER_VALID_BANK, "bank", "bank"),
        (CXL_DER_VALID_ROW, "row", "row"),
        (CXL_DER_VALID_COLUMN, "column", "column"),
    )
    for bit, name, label in optional:
        if ev.validity_flags & bit:
            value = record.value(name)
            setattr(ev, name, value)
            out.append(f"{label}:{value} ")
    if ev.validity_flags & CXL_DER_VALID_CORRECTION_MASK:
        raw = _to_bytes(record.raw("cor_mask"))
        ev.cor_mask = raw[:CXL_EVENT_DER_CORRECTION_MASK_SIZE].ljust(
            CXL_EVENT_DER_CORRECTION_MASK_SIZE, b"\0"
        )
        out.append("correction_mask:")
        out.append(_hex_bytes(ev.cor_mask))
    ev.description = "".join(out)
    return _store(ctx, ev)


def handle_cxl_memory_module_event(
    ctx: RasContext, record: EventRecord
) -> CxlMemoryModuleEvent:
    """Decode a CXL memory module event record."""
    out: list[str] = []
    ev = CxlMemoryModuleEvent(hdr=parse_common_header(ctx, record, out))
    ev.event_type = record.value("event_type")
    out.append(f"event_type:{cxl_type_str(CXL_DEV_EVT_TYPE, ev.event_type)} ")
    ev.health_status = record.value("health_status")
    out.append("health_status:")
    out.append(decode_flags(ev.health_status, CXL_HEALTH_STATUS))
    ev.media_status = record.value("media_status")
    out.append(f"media_status:{cxl_type_str(CXL_MEDIA_STATUS, ev.media_status)} ")

    ev.add_status = record.value("add_status")
    add = ev.add_status
    out.append(f"as_life_used:{cxl_type_str(CXL_TWO_BIT_STATUS, add & 0x3)} ")
    out.append(f"as_dev_temp:{cxl_type_str(CXL_TWO_BIT_STATUS, (add & 0xC) >> 2)} ")
    out.append(f"as_cor_vol_err_cnt:{cxl_type_str(CXL_ONE_BIT_STATUS, (add & 0x10) >> 4)} ")
    out.append(f"as_cor_per_err_cnt:{cxl_type_str(CXL_ONE_BIT_STATUS, (add & 0x20) >> 5)} ")

    for name in (
        "life_used",
        "device_temp",
        "dirty_shutdown_cnt",
        "cor_vol_err_cnt",
        "cor_per_err_cnt",
    ):
        value = record.value(name)
        setattr(ev, name, value)
        out.append(f"{name}:{value} ")
    ev.description = "".join(out)
    return _store(ctx, ev)