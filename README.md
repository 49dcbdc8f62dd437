# rasmon

`rasmon` decodes the hardware error events that the Linux kernel reports
through its tracing interface: memory controller (EDAC) errors, CXL device
events, extended memory error logs, block request errors and devlink health
reports. Each handler takes one trace record, checks and converts its fields,
and returns a structured event, most of them with a readable one-line
`description`. The package can also keep per-CPU error counts and take a
failing CPU offline through sysfs.

It has no dependencies outside the standard library.

## Modules

- `rasmon.common` – shared pieces:
  - `EventRecord(fields, ts, cpu)` – one trace record. `value(name)` returns
    an integer field, `raw(name)` a bytes or text field; both raise
    `FieldMissingError` when the field is absent. `optional_value(name)`
    returns `None` instead.
  - `RasContext` – state shared by the handlers: `use_uptime`,
    `uptime_diff`, `user_hz`, `record_events`, `records`, `filters` and
    `clock`. `event_time(record)` gives the event's wall-clock seconds,
    from the record's uptime stamp when `use_uptime` is set, otherwise from
    `clock()`.
  - `format_timestamp(seconds)` – local time as `YYYY-MM-DD HH:MM:SS +ZZZZ`.
  - Enumerations `EventType`, `McErrorType` and `GhesSeverity`.
- `rasmon.mc` – `handle_mc_event(ctx, record)` returns an `McEvent`; a record
  with a missing field is logged and `None` is returned.
- `rasmon.cxl_events` – CXL poison, uncorrectable/correctable AER and
  overflow events (`handle_cxl_poison_event`, `handle_cxl_aer_ue_event`,
  `handle_cxl_aer_ce_event`, `handle_cxl_overflow_event`), plus helpers
  `convert_timestamp`, `uuid_be`, `cxl_type_str`, `decode_flags` and
  `cxl_log_type_str`.
- `rasmon.cxl_records` – CXL event records with the common header
  (`parse_common_header`): `handle_cxl_generic_event`,
  `handle_cxl_general_media_event`, `handle_cxl_dram_event`,
  `handle_cxl_memory_module_event`.
- `rasmon.extlog` – `handle_extlog_mem_event(ctx, record)` and the helpers
  `err_type_name`, `err_severity_name`, `err_mask`, `err_cper_data`,
  `uuid_le`.
- `rasmon.diskerror` – `handle_diskerror_event(ctx, record)` and
  `block_error_name(err)`.
- `rasmon.devlink` – `handle_devlink_event(ctx, record, event_filter)` and
  `handle_net_xmit_timeout(ctx, record)`. A devlink record that matches the
  filter (by default `ctx.filters[EventType.DEVLINK]`, a callable taking the
  record) is skipped and `None` is returned.
- `rasmon.tracing` – the kernel tracing directory: `find_debugfs`,
  `is_disabled_event`, the `Tracing` class and `toggle_ras_events`. Failures
  raise `TracingError`.
- `rasmon.cpu_isolation` – `CpuIsolation`, `ErrorInfo`, `parse_ul_config`.

Apart from `handle_mc_event` and a filtered devlink record, handlers raise
`FieldMissingError` when a required field is missing. When
`ctx.record_events` is true, every decoded event is also appended to
`ctx.records`.

## Decoding a record

```python
from rasmon.common import EventRecord, RasContext
from rasmon.mc import handle_mc_event

ctx = RasContext(use_uptime=True, uptime_diff=1_700_000_000, user_hz=100)
record = EventRecord(
    fields={
        "error_count": 1, "error_type": 0, "msg": "read error", "label": "DIMM_A1",
        "mc_index": 0, "top_layer": 0, "middle_layer": 1, "lower_layer": 255,
        "address": 0x1234000, "grain_bits": 6, "syndrome": 0, "driver_detail": "",
    },
    ts=0,
)
event = handle_mc_event(ctx, record)
event.error_type      # "Corrected"
event.lower_layer     # -1 (the layers are signed bytes)
print(event.description)
```

The table lookups can be used on their own:

```python
from rasmon.extlog import err_severity_name, err_type_name
from rasmon.diskerror import block_error_name

err_severity_name(2)     # "corrected"
err_type_name(2)         # "single-bit ECC"
block_error_name(-5)     # "I/O error"
```

## The tracing directory

```python
from rasmon.tracing import Tracing, toggle_ras_events

tracing = Tracing.locate("/proc/mounts", "ras:mc_event")
offset = tracing.select_timestamp()     # None if the uptime clock is unavailable
enabled = toggle_ras_events(tracing)     # the (group, event) pairs left enabled
```

`Tracing.locate` finds the debugfs mount and, when the tracer supports
instances, creates and uses a private `instances/rasmon` directory.
`toggle_event` writes the event to `set_event`, prefixed with `!` when it is
named in the `disabled` string (`"group:event"` entries); `set_filter`
installs a kernel-side filter, `set_buffer_percent` writes `buffer_percent`.
`select_timestamp` switches `trace_clock` to `uptime` and returns the offset
from uptime to wall-clock seconds, suitable for `RasContext.uptime_diff`.
These need root access to the tracing directory.

## CPU fault isolation

`CpuIsolation(cpus, sysfs_root, environ, online_count)` reads CPU states
from `<sysfs_root>/cpuN/online` and its settings from `environ`:

| Variable               | Meaning                                            | Default |
|------------------------|----------------------------------------------------|---------|
| `CPU_ISOLATION_ENABLE` | must be `yes` (any case) to enable isolation       | off     |
| `CPU_CE_THRESHOLD`     | corrected errors in a cycle before offlining (max 10000) | 18 |
| `CPU_ISOLATION_CYCLE`  | cycle length, unit `d`, `h`, `m` or `s` (max 30 days) | 1 day |
| `CPU_ISOLATION_LIMIT`  | offlined CPUs allowed before isolation stops (max `cpus - 1`) | 0 |

Values above their limits are clamped; invalid values keep the default.
With the default limit of 0 no CPU is ever offlined, so set
`CPU_ISOLATION_LIMIT` to use isolation. `record_error(ErrorInfo(nums, time,
err_type), cpu)` accounts the errors and returns a `HandleResult`: a CPU is
offlined once its corrected errors within the cycle reach the threshold, or
at its first uncorrected error.

## What the package does not do

`rasmon` decodes records that it is handed; it does not read the per-CPU
trace ring buffers, parse event format files, or run a listening loop, and
it has no command-line program. ARM processor error events, machine check
(MCE) events, PCIe AER and vendor-specific events are not decoded. Decoded
events are kept only in memory (`RasContext.records`); there is no database
and no external error reporting.