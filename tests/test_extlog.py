import struct
import uuid

import pytest

from rasmon.common import EventRecord, FieldMissingError, RasContext, format_timestamp
from rasmon.extlog import (
    err_cper_data,
    err_mask,
    err_severity_name,
    err_type_name,
    handle_extlog_mem_event,
    uuid_le,
)


def cper(validation_bits, node=0, requestor_id=0):
    return struct.pack(
        "<Q8H3Q3H",
        validation_bits,
        node, 0, 0, 0, 0, 0, 0, 0,
        requestor_id, 0, 0,
        0, 0, 0,
    )


@pytest.mark.parametrize(
    "code, name",
    [
        (2, "single-bit ECC"),
        (15, "physical memory map-out event"),
        (16, "unknown-type"),
        (-1, "unknown-type"),
    ],
)
def test_err_type_name(code, name):
    assert err_type_name(code) == name


@pytest.mark.parametrize(
    "code, name",
    [(0, "recoverable"), (1, "fatal"), (3, "informational"), (4, "unknown-severity")],
)
def test_err_severity_name(code, name):
    assert err_severity_name(code) == name


def test_err_mask_all_ones():
    assert err_mask(0xFF) == 2**64 - 1
    assert err_mask(0) == 2**64 - 1


def test_err_mask_clears_low_bits():
    mask = err_mask(12)
    assert mask & 0xFFF == 0
    assert mask >> 12 == (1 << 52) - 1


def test_cper_without_valid_bits_is_empty():
    assert err_cper_data(cper(0)) == ""
    assert err_cper_data(b"") == ""


def test_cper_node():
    assert err_cper_data(cper(0x0008, node=7)) == " (node: 7)"


def test_cper_requestor_is_hex():
    assert err_cper_data(cper(0x0800, requestor_id=0xABC)) == " (req_id: 0xabc)"


def test_cper_unknown_bits_only():
    assert err_cper_data(cper(0x1)) == " )"


def test_uuid_le_matches_standard_layout():
    raw = bytes(range(16))
    assert uuid_le(raw) == str(uuid.UUID(bytes_le=raw))
    assert uuid_le(raw).startswith("03020100-0504-0706-0809-")


def test_uuid_le_rejects_wrong_length():
    with pytest.raises(ValueError):
        uuid_le(b"\x01\x02")


def make_record():
    return EventRecord(
        ts=0,
        fields={
            "etype": 2,
            "err_seq": 5,
            "sev": 1,
            "pa": 0x1000,
            "pa_mask_lsb": 0xFF,
            "data": cper(0x0008, node=7),
            "fru_text": b"DIMM_A1\0",
            "fru_id": bytes(range(16)),
        },
    )


def test_handle_extlog_mem_event():
    ctx = RasContext(use_uptime=True, uptime_diff=1_700_000_000, user_hz=100, record_events=True)
    event = handle_extlog_mem_event(ctx, make_record())
    assert event.timestamp == format_timestamp(1_700_000_000)
    assert event.fru_text == "DIMM_A1"
    assert "5 fatal error: single-bit ECC physical addr: 0x1000" in event.description
    assert event.description.endswith(" (node: 7) DIMM_A1 " + uuid_le(bytes(range(16))))
    assert ctx.records == [event]


def test_handle_extlog_not_recorded_without_flag():
    ctx = RasContext(clock=lambda: 0)
    handle_extlog_mem_event(ctx, make_record())
    assert ctx.records == []


def test_handle_extlog_missing_field():
    record = make_record()
    del record.fields["sev"]
    with pytest.raises(FieldMissingError):
        handle_extlog_mem_event(RasContext(clock=lambda: 0), record)