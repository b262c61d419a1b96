"""Data models for pytally."""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True, order=True)
class ProcessIdentity:
    """Durable name of one process instance: a pid plus its creation time."""

    pid: int
    start_time: int

    def __str__(self) -> str:
        return f"{self.pid}@{self.start_time}"


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state for one tick."""

    pid: int
    ppid: int
    start_time: int  # Creation time, milliseconds since the epoch
    name: str
    command: str
    user: str
    cpu_usage: float  # 0.0 - 100.0 * core_count
    memory_usage: int  # Bytes
    disk_usage: tuple[int, int]  # (bytes_read, bytes_written) since the previous tick
    status: str

    @property
    def identity(self) -> ProcessIdentity:
        return ProcessIdentity(self.pid, self.start_time)


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """Immutable snapshot of whole-machine usage for one tick."""

    cpu_usage: Sequence[float]  # Per core
    memory_used: int
    network_rx_bytes: int
    network_tx_bytes: int
    disk_io_read_bytes: int
    disk_io_write_bytes: int


@dataclass(slots=True, frozen=True)
class ProcessTimeSeriesPoint:
    """One charted sample of a single process."""

    timestamp: float
    cpu_usage: float
    memory_usage: int
    disk_read: int
    disk_write: int


@dataclass(slots=True, frozen=True)
class SystemTimeSeriesPoint:
    """One charted sample of the whole machine."""

    timestamp: float
    cpu_average: float
    memory_used: int
    network_rx_bytes: int
    network_tx_bytes: int
    disk_io_read_bytes: int
    disk_io_write_bytes: int


class LifeStatus(Enum):
    """Whether an identity was present in the most recent tick."""

    ALIVE = "alive"
    DEAD = "dead"


class Metric(Enum):
    """Ranking metrics and the accumulator field each one reads."""

    CPU = "cpu"
    MEMORY = "memory"
    DISK_READ = "disk_read"
    DISK_WRITE = "disk_write"

    @property
    def field_name(self) -> str:
        return _METRIC_FIELDS[self]

    @classmethod
    def parse(cls, value: "Metric | str") -> "Metric":
        """Accept a Metric or its name in snake_case or camelCase."""
        if isinstance(value, Metric):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown metric: {value!r}")
        key = value.strip()
        key = _CAMEL_ALIASES.get(key, key).lower()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown metric: {value!r}") from None


_METRIC_FIELDS = {
    Metric.CPU: "total_cpu_usage",
    Metric.MEMORY: "max_memory_usage",
    Metric.DISK_READ: "total_disk_read",
    Metric.DISK_WRITE: "total_disk_write",
}

_CAMEL_ALIASES = {"diskRead": "disk_read", "diskWrite": "disk_write"}


@dataclass(slots=True, frozen=True)
class ProcessAccumulator:
    """
    Lifetime rollup of every sample seen for one identity.

    Instances are never mutated; the table replaces them on each merge.
    """

    identity: ProcessIdentity
    ppid: int
    parent_start_time: int  # 0 when no parent could be resolved
    name: str
    command: str
    user: str
    total_cpu_usage: float
    max_memory_usage: int
    total_disk_read: int
    total_disk_write: int
    sample_count: int
    first_seen: float
    last_seen: float
    status: LifeStatus = LifeStatus.ALIVE
    process_status: str = ""  # Last OS state reported by the provider

    @property
    def pid(self) -> int:
        return self.identity.pid

    @property
    def start_time(self) -> int:
        return self.identity.start_time

    @property
    def parent_identity(self) -> ProcessIdentity | None:
        if self.parent_start_time == 0:
            return None
        return ProcessIdentity(self.ppid, self.parent_start_time)

    @property
    def is_alive(self) -> bool:
        return self.status is LifeStatus.ALIVE

    @property
    def average_cpu_usage(self) -> float:
        if self.sample_count == 0:
            return 0.0
        return self.total_cpu_usage / self.sample_count

    def metric_value(self, metric: Metric) -> float:
        return getattr(self, metric.field_name)


@dataclass(slots=True, frozen=True)
class TickResult:
    """Outcome of one ingestion tick, reported to the caller as a value."""

    tick: int  # Committed tick count after this tick
    timestamp: float
    error: Exception | None = None
    violations: tuple[Exception, ...] = ()
    observed: int = 0
    created: int = 0
    died: int = 0
    evicted: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
