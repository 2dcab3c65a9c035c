"""Metrics source for livetop.

The engine talks to the operating system only through the MetricsSource
protocol. PsutilMetricsSource implements it on top of psutil, caching the
system-wide reads for one refresh interval.
"""

import logging
import os
import pwd
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import psutil

from livetop.cache import TTLCache
from livetop.models import CpuTotals, MemoryTotals, ProcessStat, ProcessStatus

logger = logging.getLogger(__name__)

# psutil status names mapped to the one-letter codes shown by top. Only the
# constants the installed psutil still exports are used.
_STATE_NAMES = (
    ("STATUS_RUNNING", "R"),
    ("STATUS_SLEEPING", "S"),
    ("STATUS_DISK_SLEEP", "D"),
    ("STATUS_STOPPED", "T"),
    ("STATUS_TRACING_STOP", "t"),
    ("STATUS_ZOMBIE", "Z"),
    ("STATUS_DEAD", "X"),
    ("STATUS_WAKE_KILL", "K"),
    ("STATUS_WAKING", "W"),
    ("STATUS_IDLE", "I"),
    ("STATUS_PARKED", "P"),
    ("STATUS_LOCKED", "L"),
    ("STATUS_WAITING", "W"),
    ("STATUS_SUSPENDED", "T"),
)
_STATE_CODES = {
    getattr(psutil, name): code for name, code in _STATE_NAMES if hasattr(psutil, name)
}


def state_code(status: str) -> str:
    """One-letter state for a psutil status string, '?' when unknown."""
    return _STATE_CODES.get(status, "?")


_REALTIME_POLICIES = tuple(
    getattr(os, name) for name in ("SCHED_FIFO", "SCHED_RR") if hasattr(os, name)
)


class MetricsError(Exception):
    """Base class for failed metric reads."""


class ProcessNotFound(MetricsError):
    """The process exited before or during the read."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"process {pid} not found")
        self.pid = pid


class MetricsUnreadable(MetricsError):
    """A metric exists but cannot be read (permissions, format, platform)."""


class MetricsSource(Protocol):
    """Typed reads of system and per-process metrics."""

    ticks_per_second: int

    def uptime(self) -> float: ...

    def cpu_totals(self) -> list[CpuTotals]: ...

    def memory(self) -> MemoryTotals: ...

    def load_average(self) -> tuple[float, float, float]: ...

    def running_count(self) -> int: ...

    def pids(self) -> set[int]: ...

    def process_stat(self, pid: int) -> ProcessStat: ...

    def process_status(self, pid: int) -> ProcessStatus: ...

    def command(self, pid: int) -> str: ...

    def owner_uid(self, pid: int) -> int: ...

    def user_name(self, uid: int) -> str: ...


class UserNameCache:
    """
    Append-only uid to user-name memo.

    One instance lives as long as the source that owns it, i.e. one run of the
    monitor. Entries are never invalidated; a uid without a passwd entry is
    stored as its numeric string so the lookup is not repeated.
    """

    def __init__(self, lookup: Callable[[int], str] | None = None) -> None:
        self._lookup = lookup or _passwd_name
        self._names: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._names)

    def resolve(self, uid: int) -> str:
        """Return the user name for uid, resolving it on first use."""
        name = self._names.get(uid)
        if name is None:
            try:
                name = self._lookup(uid)
            except (KeyError, OSError):
                logger.debug("No user name for uid %d", uid)
                name = str(uid)
            self._names[uid] = name
        return name


def _passwd_name(uid: int) -> str:
    return pwd.getpwuid(uid).pw_name


@contextmanager
def _process_errors(pid: int) -> Iterator[None]:
    """Translate psutil exceptions into MetricsError subclasses."""
    try:
        yield
    except psutil.NoSuchProcess as exc:  # ZombieProcess is a subclass
        raise ProcessNotFound(pid) from exc
    except psutil.AccessDenied as exc:
        raise MetricsUnreadable(f"access denied reading process {pid}") from exc


def _kernel_priority(pid: int, nice: int) -> int:
    """Priority as the kernel reports it: 20 + nice, or -1 - rt_priority."""
    if _REALTIME_POLICIES:
        try:
            if os.sched_getscheduler(pid) in _REALTIME_POLICIES:
                return -1 - os.sched_getparam(pid).sched_priority
        except OSError:
            pass  # Fall back to the normal-policy mapping
    return 20 + nice


class PsutilMetricsSource:
    """
    MetricsSource backed by psutil.

    System-wide reads are cached for one refresh interval, so the underlying
    files are read at most once per interval no matter how often the engine
    asks. Per-process reads are never cached here.
    """

    def __init__(
        self,
        refresh_interval: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        user_names: UserNameCache | None = None,
    ) -> None:
        """
        Initialize the source.

        Args:
            refresh_interval: Lifetime of cached system-wide reads (seconds).
            clock: Monotonic time source shared by the caches.
            user_names: uid memo, a fresh one by default.
        """
        self.ticks_per_second: int = os.sysconf("SC_CLK_TCK")
        self._procfs = getattr(psutil, "PROCFS_PATH", "/proc")
        self._user_names = user_names or UserNameCache()
        self._uptime: TTLCache[float] = TTLCache(refresh_interval, clock)
        self._cpu: TTLCache[list[CpuTotals]] = TTLCache(refresh_interval, clock)
        self._memory: TTLCache[MemoryTotals] = TTLCache(refresh_interval, clock)
        self._load: TTLCache[tuple[float, float, float]] = TTLCache(refresh_interval, clock)
        self._running: TTLCache[int] = TTLCache(refresh_interval, clock)

    @property
    def user_names(self) -> UserNameCache:
        """Get the uid memo owned by this source."""
        return self._user_names

    def _ticks(self, seconds: float) -> int:
        return int(round(seconds * self.ticks_per_second))

    # System-wide reads

    def uptime(self) -> float:
        """Seconds since boot."""
        return self._uptime.get_or_load(lambda: time.time() - psutil.boot_time())

    def cpu_totals(self) -> list[CpuTotals]:
        """Aggregate CPU counters followed by one entry per core."""
        return self._cpu.get_or_load(self._read_cpu_totals)

    def _read_cpu_totals(self) -> list[CpuTotals]:
        rows = [psutil.cpu_times(), *psutil.cpu_times(percpu=True)]
        return [
            CpuTotals(
                user=self._ticks(row.user),
                nice=self._ticks(getattr(row, "nice", 0.0)),
                system=self._ticks(row.system),
                idle=self._ticks(row.idle),
                iowait=self._ticks(getattr(row, "iowait", 0.0)),
                irq=self._ticks(getattr(row, "irq", 0.0)),
                softirq=self._ticks(getattr(row, "softirq", 0.0)),
                steal=self._ticks(getattr(row, "steal", 0.0)),
                guest=self._ticks(getattr(row, "guest", 0.0)),
                guest_nice=self._ticks(getattr(row, "guest_nice", 0.0)),
            )
            for row in rows
        ]

    def memory(self) -> MemoryTotals:
        """System memory and swap counters."""
        return self._memory.get_or_load(self._read_memory)

    def _read_memory(self) -> MemoryTotals:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()
        # psutil already adds SReclaimable into cached and has no SwapCached
        return MemoryTotals(
            total=mem.total,
            free=mem.free,
            available=mem.available,
            buffers=getattr(mem, "buffers", 0),
            cached=getattr(mem, "cached", 0),
            shared=getattr(mem, "shared", 0),
            swap_total=swap.total,
            swap_free=swap.free,
        )

    def load_average(self) -> tuple[float, float, float]:
        """1, 5 and 15 minute load averages."""
        return self._load.get_or_load(psutil.getloadavg)

    def running_count(self) -> int:
        """Number of runnable tasks, as reported by the kernel."""
        return self._running.get_or_load(self._read_running_count)

    def _read_running_count(self) -> int:
        path = os.path.join(self._procfs, "stat")
        try:
            with open(path, encoding="ascii") as stat_file:
                for line in stat_file:
                    if line.startswith("procs_running"):
                        return int(line.split()[1])
        except (OSError, ValueError, IndexError) as exc:
            raise MetricsUnreadable(f"cannot read run queue from {path}") from exc
        raise MetricsUnreadable(f"no procs_running line in {path}")

    # Per-process reads

    def pids(self) -> set[int]:
        """All live process ids."""
        return set(psutil.pids())

    def process_stat(self, pid: int) -> ProcessStat:
        """Scheduler state, CPU ticks, nice and priority of a process."""
        with _process_errors(pid):
            proc = psutil.Process(pid)
            with proc.oneshot():
                status = proc.status()
                times = proc.cpu_times()
                nice = proc.nice()
        return ProcessStat(
            state=state_code(status),
            utime=self._ticks(times.user),
            stime=self._ticks(times.system),
            nice=nice,
            priority=_kernel_priority(pid, nice),
        )

    def process_status(self, pid: int) -> ProcessStatus:
        """Memory usage and thread count of a process."""
        with _process_errors(pid):
            proc = psutil.Process(pid)
            with proc.oneshot():
                mem = proc.memory_info()
                threads = proc.num_threads()
        return ProcessStatus(
            virtual=mem.vms,
            resident=mem.rss,
            shared=getattr(mem, "shared", 0),
            threads=threads,
        )

    def command(self, pid: int) -> str:
        """Command line of a process; empty for kernel threads."""
        with _process_errors(pid):
            return " ".join(psutil.Process(pid).cmdline())

    def owner_uid(self, pid: int) -> int:
        """Real uid owning a process."""
        with _process_errors(pid):
            return psutil.Process(pid).uids().real

    def user_name(self, uid: int) -> str:
        """User name for a uid, memoized for the life of this source."""
        return self._user_names.resolve(uid)
