import pytest

from rasmon.common import EventRecord, EventType, FieldMissingError, RasContext, format_timestamp
from rasmon.devlink import DevlinkEvent, handle_devlink_event, handle_net_xmit_timeout

NOW = 1_700_000_000


def _ctx(**kwargs):
    return RasContext(clock=lambda: NOW, **kwargs)


def _devlink_fields(**extra):
    fields = {
        "bus_name": "pci",
        "dev_name": b"0000:01:00.0\0",
        "driver_name": "mlx5_core",
        "reporter_name": "tx",
        "msg": "TX timeout on queue: 1",
    }
    fields.update(extra)
    return fields


def test_xmit_timeout_message():
    ctx = _ctx(record_events=True)
    record = EventRecord(fields={"name": "eth0", "driver": "e1000", "queue_index": 3})
    ev = handle_net_xmit_timeout(ctx, record)
    assert ev.msg == "TX timeout on queue: 3\n"
    assert ev.dev_name == "eth0"
    assert ev.driver_name == "e1000"
    assert ev.bus_name == ""
    assert ev.reporter_name == ""
    assert ev.timestamp == format_timestamp(NOW)
    assert ctx.records == [ev]


def test_xmit_timeout_queue_index_is_signed():
    record = EventRecord(fields={"name": "eth0", "driver": "e1000", "queue_index": 0xFFFFFFFF})
    ev = handle_net_xmit_timeout(_ctx(), record)
    assert ev.msg == "TX timeout on queue: -1\n"


def test_xmit_timeout_missing_field():
    with pytest.raises(FieldMissingError):
        handle_net_xmit_timeout(_ctx(), EventRecord(fields={"name": "eth0", "driver": "e1000"}))


def test_devlink_event_fields():
    ev = handle_devlink_event(_ctx(), EventRecord(fields=_devlink_fields()))
    assert ev == DevlinkEvent(
        timestamp=format_timestamp(NOW),
        bus_name="pci",
        dev_name="0000:01:00.0",
        driver_name="mlx5_core",
        reporter_name="tx",
        msg="TX timeout on queue: 1",
    )


def test_devlink_event_uses_uptime():
    ctx = RasContext(use_uptime=True, uptime_diff=NOW, user_hz=100)
    ev = handle_devlink_event(ctx, EventRecord(fields=_devlink_fields(), ts=300))
    assert ev.timestamp == format_timestamp(NOW + 3)


def test_devlink_event_filtered_out():
    ctx = _ctx(record_events=True)
    result = handle_devlink_event(
        ctx, EventRecord(fields=_devlink_fields()), lambda rec: rec.raw("msg").startswith("TX")
    )
    assert result is None
    assert ctx.records == []


def test_devlink_event_filter_not_matching():
    ev = handle_devlink_event(
        _ctx(), EventRecord(fields=_devlink_fields(msg="other")), lambda rec: False
    )
    assert ev.msg == "other"


def test_devlink_event_context_filter():
    ctx = _ctx()
    ctx.filters[EventType.DEVLINK] = lambda rec: True
    assert handle_devlink_event(ctx, EventRecord(fields=_devlink_fields())) is None


def test_devlink_event_missing_field():
    fields = _devlink_fields()
    del fields["reporter_name"]
    with pytest.raises(FieldMissingError):
        handle_devlink_event(_ctx(), EventRecord(fields=fields))