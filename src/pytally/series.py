"""Append-only time series for the machine and for each process identity."""

import threading
from collections import deque
from collections.abc import Sequence
from contextlib import AbstractContextManager

from pytally.models import (
    ProcessIdentity,
    ProcessTimeSeriesPoint,
    SystemSnapshot,
    SystemTimeSeriesPoint,
)


def cpu_average(per_core: Sequence[float]) -> float:
    """Mean of the per-core percentages; 0.0 when no cores are reported."""
    if not per_core:
        return 0.0
    return sum(per_core) / len(per_core)


def system_point(snapshot: SystemSnapshot, timestamp: float) -> SystemTimeSeriesPoint:
    return SystemTimeSeriesPoint(
        timestamp=timestamp,
        cpu_average=cpu_average(snapshot.cpu_usage),
        memory_used=snapshot.memory_used,
        network_rx_bytes=snapshot.network_rx_bytes,
        network_tx_bytes=snapshot.network_tx_bytes,
        disk_io_read_bytes=snapshot.disk_io_read_bytes,
        disk_io_write_bytes=snapshot.disk_io_write_bytes,
    )


class SystemSeriesStore:
    """
    Chronological whole-machine samples.

    With ``max_points`` set the oldest points are dropped once the cap is hit.
    """

    def __init__(
        self,
        max_points: int | None = None,
        lock: AbstractContextManager | None = None,
    ) -> None:
        self._lock = lock if lock is not None else threading.RLock()
        self._points: deque[SystemTimeSeriesPoint] = deque(maxlen=max_points)

    @property
    def max_points(self) -> int | None:
        return self._points.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    def append_system_point(self, point: SystemTimeSeriesPoint) -> None:
        with self._lock:
            self._points.append(point)

    def get_system_series(self) -> list[SystemTimeSeriesPoint]:
        with self._lock:
            return list(self._points)

    def latest(self) -> SystemTimeSeriesPoint | None:
        with self._lock:
            return self._points[-1] if self._points else None

    def clear(self) -> None:
        with self._lock:
            self._points.clear()


class ProcessSeriesStore:
    """Per-identity chronological samples, each series capped at ``max_points``."""

    def __init__(
        self,
        max_points: int | None = None,
        lock: AbstractContextManager | None = None,
    ) -> None:
        self._lock = lock if lock is not None else threading.RLock()
        self._max_points = max_points
        self._series: dict[ProcessIdentity, deque[ProcessTimeSeriesPoint]] = {}

    @property
    def max_points(self) -> int | None:
        return self._max_points

    def __len__(self) -> int:
        with self._lock:
            return len(self._series)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._series

    def append_process_point(self, identity: ProcessIdentity, point: ProcessTimeSeriesPoint) -> None:
        with self._lock:
            series = self._series.get(identity)
            if series is None:
                series = self._series[identity] = deque(maxlen=self._max_points)
            series.append(point)

    def get_process_series(self, identity: ProcessIdentity) -> list[ProcessTimeSeriesPoint]:
        """Return the series for ``identity``; empty if it was never seen or was cleared."""
        with self._lock:
            return list(self._series.get(identity, ()))

    def identities(self) -> list[ProcessIdentity]:
        with self._lock:
            return sorted(self._series)

    def clear_one(self, identity: ProcessIdentity) -> bool:
        with self._lock:
            return self._series.pop(identity, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._series.clear()
