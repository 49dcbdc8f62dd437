import re
from datetime import datetime

import pytest

from rasmon.common import (
    EPOCH_TIMESTAMP,
    TIMESTAMP_FORMAT,
    FieldMissingError,
    EventRecord,
    RasContext,
    format_timestamp,
)


def test_value_returns_integer_field():
    record = EventRecord(fields={"error_count": 4})
    assert record.value("error_count") == 4


def test_value_missing_raises():
    record = EventRecord(fields={})
    with pytest.raises(FieldMissingError) as info:
        record.value("error_count")
    assert info.value.name == "error_count"


def test_value_of_non_integer_raises():
    record = EventRecord(fields={"msg": b"hello"})
    with pytest.raises(FieldMissingError):
        record.value("msg")


def test_raw_returns_stored_bytes():
    record = EventRecord(fields={"msg": b"hello"})
    assert record.raw("msg") == b"hello"


def test_raw_missing_raises():
    with pytest.raises(FieldMissingError):
        EventRecord().raw("label")


def test_optional_value():
    record = EventRecord(fields={"ppin": 9})
    assert record.optional_value("ppin") == 9
    assert record.optional_value("microcode") is None


def test_event_time_uses_uptime_clock():
    ctx = RasContext(use_uptime=True, uptime_diff=1000, user_hz=100)
    assert ctx.event_time(EventRecord(ts=500)) == 1005


def test_event_time_falls_back_to_clock():
    ctx = RasContext(use_uptime=False, clock=lambda: 1234.7)
    assert ctx.event_time(EventRecord(ts=99999)) == 1234


def test_format_timestamp_round_trip():
    when = 1_700_000_000
    text = format_timestamp(when)
    assert re.fullmatch(r"\d{4}-\d\d-\d\d \d\d:\d\d:\d\d [+-]\d{4}", text)
    assert datetime.strptime(text, TIMESTAMP_FORMAT).timestamp() == when


def test_format_timestamp_out_of_range():
    assert format_timestamp(10**20) == EPOCH_TIMESTAMP