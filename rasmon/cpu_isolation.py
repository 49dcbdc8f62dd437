"""Offline CPUs that accumulate too many hardware errors."""

from __future__ import annotations

import logging
import os
import string
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable, Mapping

log = logging.getLogger(__name__)

ULONG_MAX = 2**64 - 1

SECOND_OF_MIN = 60
SECOND_OF_HOU = 60 * 60
SECOND_OF_DAY = 24 * 60 * 60
SECOND_OF_MON = 30 * 24 * 60 * 60

LIMIT_OF_CPU_THRESHOLD = 10000
INIT_OF_CPU_THRESHOLD = 18

NORMAL_UNITS: tuple[tuple[str, int], ...] = (("", 1),)
CYCLE_UNITS: tuple[tuple[str, int], ...] = (
    ("d", SECOND_OF_DAY),
    ("h", SECOND_OF_HOU),
    ("m", SECOND_OF_MIN),
    ("s", 1),
)

DEFAULT_SYSFS_ROOT = "/sys/devices/system/cpu"


class CpuState(IntEnum):
    OFFLINE = 0
    ONLINE = 1
    OFFLINE_FAILED = 2
    UNKNOWN = 3


_STATE_NAMES = {
    CpuState.OFFLINE: "offline",
    CpuState.ONLINE: "online",
    CpuState.OFFLINE_FAILED: "offline-failed",
    CpuState.UNKNOWN: "unknown",
}


class ErrorType(IntEnum):
    CE = 1
    UCE = 2


class HandleResult(IntEnum):
    FAILED = -1
    SUCCEED = 0
    NOTHING = 1


@dataclass
class IsolationParam:
    """A tunable read from the environment, with its units and upper limit."""

    name: str
    units: tuple[tuple[str, int], ...]
    value: int = 0
    limit: int = 0

    def _clamp(self) -> None:
        if self.value > self.limit:
            log.warning("Value: %d exceed limit: %d, set to limit", self.value, self.limit)
            self.value = self.limit


@dataclass
class ErrorInfo:
    """A batch of errors seen on one CPU at one time."""

    nums: int
    time: int
    err_type: int


@dataclass
class _CpuInfo:
    state: CpuState
    ce_nums: int = 0
    uce_nums: int = 0
    ce_queue: deque = field(default_factory=deque)


def parse_ul_config(text: str | None, units) -> int:
    """Parse an unsigned decimal with an optional one-letter unit suffix."""
    if not text:
        raise ValueError("empty value")
    digits, unit = text, ""
    last = text[-1]
    if last.isascii() and last.isalpha():
        digits, unit = text[:-1], last
        if not digits:
            raise ValueError(f"no number in {text!r}")

    value = 0
    for ch in digits:
        if ch not in string.digits:
            raise ValueError(f"invalid number {text!r}")
        value = value * 10 + int(ch)
        if value > ULONG_MAX:
            raise ValueError(f"{text} is out of range: {ULONG_MAX}")

    if not unit:
        return value

    for name, multiplier in units:
        if name.lower() == unit.lower():
            if value > ULONG_MAX // multiplier:
                raise ValueError(f"{text} is out of range: {ULONG_MAX}")
            return value * multiplier
    raise ValueError(f"Invalid unit {unit}")


def _online_cpus() -> int:
    try:
        return int(os.sysconf("SC_NPROCESSORS_ONLN"))
    except (AttributeError, ValueError, OSError):
        return os.cpu_count() or 1


class CpuIsolation:
    """Counts errors per CPU and takes a failing CPU offline."""

    def __init__(
        self,
        cpus: int,
        sysfs_root: str | os.PathLike = DEFAULT_SYSFS_ROOT,
        environ: Mapping[str, str] | None = None,
        online_count: Callable[[], int] | None = None,
    ) -> None:
        env = os.environ if environ is None else environ
        self.ncores = cpus
        self._sysfs_root = Path(sysfs_root)
        self._online_count = online_count or _online_cpus

        self.threshold = IsolationParam(
            "CPU_CE_THRESHOLD", NORMAL_UNITS, INIT_OF_CPU_THRESHOLD, LIMIT_OF_CPU_THRESHOLD
        )
        # The number of CPUs that may be offlined depends on how many there are.
        self.cpu_limit = IsolationParam("CPU_ISOLATION_LIMIT", NORMAL_UNITS, 0, cpus - 1)
        self.cycle = IsolationParam(
            "CPU_ISOLATION_CYCLE", CYCLE_UNITS, SECOND_OF_DAY, SECOND_OF_MON
        )
        self.infos = [_CpuInfo(state=self.cpu_status(cpu)) for cpu in range(cpus)]

        self.enabled = env.get("CPU_ISOLATION_ENABLE", "").lower() == "yes"
        if not self.enabled:
            log.warning("Cpu fault isolation is disabled")
            return
        log.info("Cpu fault isolation is enabled")
        for param in (self.threshold, self.cpu_limit, self.cycle):
            self._init_config(param, env)

    @staticmethod
    def _init_config(param: IsolationParam, env: Mapping[str, str]) -> None:
        text = env.get(param.name)
        try:
            value = parse_ul_config(text, param.units)
        except ValueError as exc:
            log.error(
                "Invalid %s: %s (%s)! Use default value %d.", param.name, text, exc, param.value
            )
            return
        param.value = value
        param._clamp()

    def _online_path(self, cpu: int) -> Path:
        return self._sysfs_root / f"cpu{cpu}" / "online"

    def cpu_status(self, cpu: int) -> CpuState:
        """Read a CPU's online state from sysfs."""
        path = self._online_path(cpu)
        try:
            with open(path, "rb") as fh:
                first = fh.read(1)
        except OSError:
            log.error("open file: %s failed", path)
            return CpuState.UNKNOWN
        try:
            num = int(first.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            return CpuState.UNKNOWN
        if 0 <= num <= CpuState.UNKNOWN:
            return CpuState(num)
        return CpuState.UNKNOWN

    def _offline(self, cpu: int) -> HandleResult:
        info = self.infos[cpu]
        info.state = CpuState.OFFLINE_FAILED
        path = self._online_path(cpu)
        try:
            fd = os.open(path, os.O_RDWR)
        except OSError:
            log.error("open file: %s failed", path)
            return HandleResult.FAILED
        try:
            os.write(fd, b"0")
        except OSError as exc:
            log.error("cpu%d offline failed, errno:%d", cpu, exc.errno or 0)
            return HandleResult.FAILED
        finally:
            os.close(fd)

        info.state = self.cpu_status(cpu)
        if info.state == CpuState.OFFLINE:
            return HandleResult.SUCCEED
        return HandleResult.FAILED

    def _handle_ce(self, cpu: int) -> HandleResult:
        info = self.infos[cpu]
        queue = info.ce_queue
        # Only errors within one cycle of the newest one count.
        while queue and queue[-1][0] - queue[0][0] > self.cycle.value:
            _, nums = queue.popleft()
            info.ce_nums -= nums
        log.info(
            "Current number of Corrected Errors in cpu%d in the cycle is %d", cpu, info.ce_nums
        )
        if info.ce_nums >= self.threshold.value:
            log.info(
                "Corrected Errors exceeded threshold %d, try to offline cpu%d",
                self.threshold.value,
                cpu,
            )
            return self._offline(cpu)
        return HandleResult.NOTHING

    def _handle_uce(self, cpu: int) -> HandleResult:
        if self.infos[cpu].uce_nums > 0:
            log.info("Uncorrected Errors occurred, try to offline cpu%d", cpu)
            return self._offline(cpu)
        return HandleResult.NOTHING

    def _record(self, cpu: int, err_info: ErrorInfo) -> None:
        info = self.infos[cpu]
        if err_info.err_type == ErrorType.CE:
            info.ce_queue.append((err_info.time, err_info.nums))
            info.ce_nums += err_info.nums
        elif err_info.err_type == ErrorType.UCE:
            info.uce_nums += 1

    def record_error(self, err_info: ErrorInfo, cpu: int) -> HandleResult:
        """Account errors on a CPU and offline it when its limits are crossed."""
        if not self.enabled:
            return HandleResult.NOTHING
        if not 0 <= cpu < self.ncores:
            log.error(
                "The current cpu %d has exceed the total number of cpu:%d", cpu, self.ncores
            )
            return HandleResult.NOTHING

        log.info("Handling error on cpu%d", cpu)
        info = self.infos[cpu]
        info.state = self.cpu_status(cpu)
        if info.state != CpuState.ONLINE:
            log.info("Cpu%d is not online or unknown, ignore", cpu)
            return HandleResult.NOTHING

        self._record(cpu, err_info)

        # The user may change CPU states, so the offlined count is taken afresh.
        offlined = self.ncores - self._online_count()
        if offlined < 0 or offlined >= self.cpu_limit.value:
            log.warning(
                "Offlined cpus have exceeded limit: %d, choose to do nothing",
                self.cpu_limit.value,
            )
            return HandleResult.NOTHING

        if err_info.err_type == ErrorType.CE:
            result = self._handle_ce(cpu)
        elif err_info.err_type == ErrorType.UCE:
            result = self._handle_uce(cpu)
        else:
            result = HandleResult.NOTHING

        if result == HandleResult.NOTHING:
            log.warning("Doing nothing in the cpu%d", cpu)
        elif result == HandleResult.SUCCEED:
            log.info("Offline cpu%d succeed, the state is %s", cpu, _STATE_NAMES[info.state])
            info.ce_queue.clear()
            info.ce_nums = 0
            info.uce_nums = 0
        else:
            log.warning("Offline cpu%d fail, the state is %s", cpu, _STATE_NAMES[info.state])
        return result