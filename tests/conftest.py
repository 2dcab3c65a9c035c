"""Shared fixtures for livetop tests."""

from dataclasses import dataclass

import pytest

from livetop.models import CpuTotals, MemoryTotals, ProcessStat, ProcessStatus
from livetop.source import MetricsUnreadable, ProcessNotFound


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeProcess:
    """Mutable process state served by FakeMetricsSource."""

    command: str = "/usr/bin/worker"
    uid: int = 1000
    state: str = "S"
    utime: int = 0
    stime: int = 0
    nice: int = 0
    threads: int = 1
    virtual: int = 4096 * 1024
    resident: int = 1024 * 1024
    shared: int = 512 * 1024


class FakeMetricsSource:
    """
    In-memory MetricsSource.

    system_ticks is the aggregate CPU total; tests move it forward together
    with the per-process utime/stime to produce exact utilizations.
    """

    ticks_per_second = 100

    def __init__(self, cores: int = 4) -> None:
        self.cores = cores
        self.system_ticks = 0
        self.processes: dict[int, FakeProcess] = {}
        self.running = 1
        self.unreadable: set[int] = set()
        self.owner_unreadable: set[int] = set()
        self.fail_running = False
        self.fail_pids = False
        self.memory_totals = MemoryTotals(
            total=8 * 1024**3,
            free=2 * 1024**3,
            available=5 * 1024**3,
            buffers=256 * 1024**2,
            cached=2 * 1024**3,
            swap_total=2 * 1024**3,
            swap_free=1024**3,
        )
        self.command_calls: dict[int, int] = {}

    def add(self, pid: int, **fields) -> FakeProcess:
        proc = FakeProcess(**fields)
        self.processes[pid] = proc
        return proc

    def _process(self, pid: int) -> FakeProcess:
        if pid in self.unreadable:
            raise MetricsUnreadable(f"cannot read {pid}")
        try:
            return self.processes[pid]
        except KeyError:
            raise ProcessNotFound(pid) from None

    def uptime(self) -> float:
        return 3723.0

    def cpu_totals(self) -> list[CpuTotals]:
        per_core = self.system_ticks // self.cores
        return [CpuTotals(user=self.system_ticks)] + [
            CpuTotals(user=per_core) for _ in range(self.cores)
        ]

    def memory(self) -> MemoryTotals:
        return self.memory_totals

    def load_average(self) -> tuple[float, float, float]:
        return (0.5, 0.25, 0.125)

    def running_count(self) -> int:
        if self.fail_running:
            raise MetricsUnreadable("no run queue")
        return self.running

    def pids(self) -> set[int]:
        if self.fail_pids:
            raise MetricsUnreadable("scan failed")
        return set(self.processes)

    def process_stat(self, pid: int) -> ProcessStat:
        proc = self._process(pid)
        return ProcessStat(
            state=proc.state,
            utime=proc.utime,
            stime=proc.stime,
            nice=proc.nice,
            priority=20 + proc.nice,
        )

    def process_status(self, pid: int) -> ProcessStatus:
        proc = self._process(pid)
        return ProcessStatus(
            virtual=proc.virtual,
            resident=proc.resident,
            shared=proc.shared,
            threads=proc.threads,
        )

    def command(self, pid: int) -> str:
        self.command_calls[pid] = self.command_calls.get(pid, 0) + 1
        return self._process(pid).command

    def owner_uid(self, pid: int) -> int:
        if pid in self.owner_unreadable:
            raise MetricsUnreadable(f"cannot read owner of {pid}")
        return self._process(pid).uid

    def user_name(self, uid: int) -> str:
        return f"user{uid}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakeMetricsSource:
    return FakeMetricsSource()
