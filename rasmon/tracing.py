"""Access to the kernel tracing directory: locating it and toggling events."""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from typing import Iterable

log = logging.getLogger(__name__)

INSTANCE_NAME = "rasmon"
UPTIME_CLOCK = "uptime"

DEFAULT_RAS_EVENTS: tuple[tuple[str, str], ...] = (
    ("ras", "mc_event"),
    ("ras", "aer_event"),
    ("mce", "mce_record"),
    ("ras", "extlog_mem_event"),
    ("ras", "non_standard_event"),
    ("ras", "arm_event"),
    ("devlink", "devlink_health_report"),
    ("block", "block_rq_error"),
    ("ras", "memory_failure_event"),
    ("cxl", "cxl_poison"),
    ("cxl", "cxl_aer_uncorrectable_error"),
    ("cxl", "cxl_aer_correctable_error"),
    ("cxl", "cxl_overflow"),
    ("cxl", "cxl_generic_event"),
    ("cxl", "cxl_general_media"),
    ("cxl", "cxl_dram"),
    ("cxl", "cxl_memory_module"),
)

_UPTIME_RE = re.compile(r"\s*(\d+)")


class TracingError(OSError):
    """The tracing directory could not be found or used."""


def find_debugfs(mounts_path: str | os.PathLike = "/proc/mounts") -> str:
    """Return the mount point of debugfs as listed in a mounts table."""
    try:
        with open(mounts_path, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                tokens = line.split()
                if len(tokens) < 3:
                    break
                if tokens[2] == "debugfs":
                    return tokens[1]
    except OSError as exc:
        log.info("Can't open %s", mounts_path)
        raise TracingError(f"can't open {mounts_path}") from exc
    log.info("Can't find debugfs")
    raise TracingError("can't find debugfs")


def is_disabled_event(group: str, event: str, disabled: str | None) -> bool:
    """Whether group:event is named in the list of disabled events."""
    return bool(disabled) and f"{group}:{event}" in disabled


class Tracing:
    """A tracing directory (or instance) of the kernel event tracer."""

    def __init__(self, tracing_dir: str | os.PathLike, disabled: str | None = "") -> None:
        self.tracing_dir = Path(tracing_dir)
        self.disabled = disabled or ""

    @classmethod
    def locate(
        cls, mounts_path: str | os.PathLike = "/proc/mounts", disabled: str | None = ""
    ) -> Tracing:
        """Find the tracing directory, using a private instance when supported."""
        tracing = Path(find_debugfs(mounts_path)) / "tracing"
        try:
            has_instances = any("instances" in entry.name for entry in os.scandir(tracing))
        except OSError as exc:
            raise TracingError(f"can't read {tracing}") from exc

        if has_instances:
            tracing = tracing / "instances" / INSTANCE_NAME
            try:
                tracing.mkdir(mode=0o700, exist_ok=True)
            except OSError as exc:
                log.info("Unable to create %s instance at %s", INSTANCE_NAME, tracing)
                raise TracingError(f"unable to create instance at {tracing}") from exc
        return cls(tracing, disabled)

    def _write(self, name: str, data: bytes, flags: int) -> None:
        path = self.tracing_dir / name
        try:
            fd = os.open(path, flags)
        except OSError as exc:
            raise TracingError(f"can't open {path}") from exc
        try:
            written = os.write(fd, data)
        except OSError as exc:
            raise TracingError(f"can't write to {path}") from exc
        finally:
            os.close(fd)
        if not written:
            raise TracingError(f"nothing was written on {path}")

    def toggle_event(self, group: str, event: str) -> bool:
        """Enable the event, or disable it if configured so; return whether enabled."""
        enable = not is_disabled_event(group, event, self.disabled)
        line = f"{'' if enable else '!'}{group}:{event}\n"
        try:
            self._write("set_event", line.encode(), os.O_RDWR | os.O_APPEND)
        except TracingError:
            log.warning("Can't write to set_event")
            raise
        log.debug("%s:%s event %s", group, event, "enabled" if enable else "disabled")
        return enable

    def set_filter(self, group: str, event: str, filter_str: str) -> None:
        """Install a kernel-side filter on an event."""
        try:
            self._write(
                f"events/{group}/{event}/filter",
                filter_str.encode(),
                os.O_RDWR | os.O_APPEND,
            )
        except TracingError:
            log.warning("Can't write to filter file")
            raise

    def set_buffer_percent(self, percent: int) -> None:
        """Set how full the ring buffer gets before readers are woken."""
        try:
            self._write("buffer_percent", str(percent).encode(), os.O_WRONLY)
        except TracingError:
            log.warning("can't write to buffer_percent")
            raise

    def select_timestamp(
        self, uptime_path: str | os.PathLike = "/proc/uptime", now: float | None = None
    ) -> int | None:
        """Switch the trace clock to uptime.

        Returns the offset from uptime to wall-clock seconds, or None when the
        uptime clock cannot be used. Raises TracingError when the trace clock
        or the uptime file cannot be read.
        """
        clock_path = self.tracing_dir / "trace_clock"
        try:
            clocks = clock_path.read_bytes()[:4096]
        except OSError as exc:
            log.error("Can't open trace_clock")
            raise TracingError("can't open trace_clock") from exc
        if not clocks:
            log.error("trace_clock is empty!")
            raise TracingError("trace_clock is empty")
        if UPTIME_CLOCK.encode() not in clocks:
            log.info("Kernel doesn't support uptime clock")
            return None

        try:
            self._write("trace_clock", UPTIME_CLOCK.encode(), os.O_WRONLY)
        except TracingError:
            log.error("Kernel didn't allow selecting uptime on trace_clock")
            return None

        try:
            with open(uptime_path, encoding="ascii", errors="replace") as fh:
                text = fh.read()
        except OSError:
            log.error("Couldn't read from %s", uptime_path)
            return None
        match = _UPTIME_RE.match(text)
        if not match:
            log.error("Can't parse %s!", uptime_path)
            raise TracingError(f"can't parse {uptime_path}")
        uptime = int(match.group(1))
        current = time.time() if now is None else now
        return int(current) - uptime


def toggle_ras_events(
    tracing: Tracing, events: Iterable[tuple[str, str]] | None = None
) -> list[tuple[str, str]]:
    """Toggle every event; return the ones left enabled.

    All events are attempted; if any fails, TracingError is raised afterwards.
    """
    enabled: list[tuple[str, str]] = []
    failed: list[str] = []
    for group, event in DEFAULT_RAS_EVENTS if events is None else events:
        try:
            if tracing.toggle_event(group, event):
                enabled.append((group, event))
        except TracingError:
            failed.append(f"{group}:{event}")
    if failed:
        raise TracingError(f"can't toggle {', '.join(failed)}")
    return enabled