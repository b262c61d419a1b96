"""Ingestion engine: turns per-tick snapshots into series and lifetime rollups."""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from pytally.config import DEFAULT_CONFIG, EngineConfig, RetentionPolicy
from pytally.errors import MalformedSnapshot, ProviderError, TallyError
from pytally.identity import resolve_processes
from pytally.models import (
    LifeStatus,
    Metric,
    ProcessAccumulator,
    ProcessIdentity,
    ProcessSnapshot,
    ProcessTimeSeriesPoint,
    SystemSnapshot,
    SystemTimeSeriesPoint,
    TickResult,
)
from pytally.ranking import top_by_metric
from pytally.series import ProcessSeriesStore, SystemSeriesStore, system_point
from pytally.table import AccumulatorTable, open_accumulator, rollup
from pytally.validation import sanitize_tick

logger = logging.getLogger(__name__)

TickListener = Callable[[TickResult], None]


class SnapshotProvider(Protocol):
    """Source of fresh snapshots, e.g. ``pytally.monitor.PsutilProvider``."""

    def sample(self) -> tuple[Sequence[ProcessSnapshot], SystemSnapshot]: ...


class TallyEngine:
    """
    Owns the accumulator table and both time-series stores for one host.

    Ticks are expected one at a time; an overlapping call is refused rather
    than interleaved. Every tick is staged and committed inside a single
    critical section shared with the readers, so a reader sees either all of
    a tick or none of it.
    """

    def __init__(
        self,
        config: EngineConfig = DEFAULT_CONFIG,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the TallyEngine.

        Args:
            config: Retention policy, series caps and root pid.
            clock: Returns the timestamp stamped on each tick. Default time.time.
        """
        self._config = config
        self._clock = clock
        self._lock = threading.RLock()
        self._writer = threading.Lock()
        self._table = AccumulatorTable(lock=self._lock)
        self._system_series = SystemSeriesStore(config.max_system_points, lock=self._lock)
        self._process_series = ProcessSeriesStore(config.max_process_points, lock=self._lock)
        self._listeners: list[TickListener] = []
        self._tick = 0

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tick_count(self) -> int:
        """Number of committed ticks."""
        with self._lock:
            return self._tick

    @property
    def table(self) -> AccumulatorTable:
        return self._table

    @property
    def system_series(self) -> SystemSeriesStore:
        return self._system_series

    @property
    def process_series(self) -> ProcessSeriesStore:
        return self._process_series

    # Ingestion

    def ingest(self, system: SystemSnapshot, processes: Sequence[ProcessSnapshot]) -> TickResult:
        """
        Merge one tick into the series and the accumulator table.

        Input problems never raise: a malformed tick comes back as a failed
        TickResult and leaves every store untouched, while out-of-range
        metrics are clamped and listed in ``TickResult.violations``. Mappings
        with the same field names are accepted in place of snapshots.
        """
        timestamp = self._clock()
        if not self._writer.acquire(blocking=False):
            return TickResult(self.tick_count, timestamp, error=TallyError("Another tick is still in progress"))
        try:
            try:
                clean_system, clean_processes, violations = sanitize_tick(system, processes)
            except MalformedSnapshot as exc:
                logger.warning("Rejected tick: %s", exc)
                return TickResult(self.tick_count, timestamp, error=exc)
            result = self._commit(clean_system, clean_processes, tuple(violations), timestamp)
        finally:
            self._writer.release()

        logger.debug(
            "Tick %d: %d observed, %d new, %d died, %d evicted",
            result.tick,
            result.observed,
            result.created,
            result.died,
            result.evicted,
        )
        self._notify(result)
        return result

    def ingest_from(self, provider: SnapshotProvider) -> TickResult:
        """Sample ``provider`` and ingest the result; a failed sample is returned as ProviderError."""
        try:
            processes, system = provider.sample()
        except Exception as exc:
            error = exc if isinstance(exc, ProviderError) else ProviderError(f"Snapshot provider failed: {exc}")
            if error is not exc:
                error.__cause__ = exc
            logger.warning("Skipping tick: %s", error)
            return TickResult(self.tick_count, self._clock(), error=error)
        return self.ingest(system, processes)

    def _commit(
        self,
        system: SystemSnapshot,
        processes: list[ProcessSnapshot],
        violations: tuple[Exception, ...],
        timestamp: float,
    ) -> TickResult:
        point = system_point(system, timestamp)
        with self._lock:
            resolved = resolve_processes(processes, self._table, self._config.root_pid)
            present = {item.identity for item in resolved}

            merged = []
            created = 0
            for item in resolved:
                previous = self._table.get(item.identity)
                if previous is None:
                    merged.append(open_accumulator(item, timestamp))
                    created += 1
                else:
                    merged.append(rollup(previous, item, timestamp))
            vanished = [identity for identity in self._table.identities() if identity not in present]

            self._system_series.append_system_point(point)
            self._table.put_many(merged)

            died = evicted = 0
            if self._config.retention is RetentionPolicy.EVICT_ON_DISAPPEARANCE:
                for identity in vanished:
                    self._table.remove(identity)
                    self._process_series.clear_one(identity)
                died = evicted = len(vanished)
            else:
                died = len(self._table.mark_dead(vanished))

            for item in resolved:
                proc = item.snapshot
                self._process_series.append_process_point(
                    item.identity,
                    ProcessTimeSeriesPoint(
                        timestamp=timestamp,
                        cpu_usage=proc.cpu_usage,
                        memory_usage=proc.memory_usage,
                        disk_read=proc.disk_usage[0],
                        disk_write=proc.disk_usage[1],
                    ),
                )
            self._tick += 1
            return TickResult(
                tick=self._tick,
                timestamp=timestamp,
                violations=violations,
                observed=len(resolved),
                created=created,
                died=died,
                evicted=evicted,
            )

    # Notifications

    def subscribe(self, listener: TickListener) -> Callable[[], None]:
        """
        Call ``listener`` with the TickResult after every committed tick.

        Returns a function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, result: TickResult) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(result)
            except Exception:
                logger.exception("Tick listener %r failed", listener)

    # Readers

    def get_accumulator(self, identity: ProcessIdentity) -> ProcessAccumulator | None:
        return self._table.get(identity)

    def get_accumulators(self) -> list[ProcessAccumulator]:
        return self._table.get_all()

    def top_by_metric(
        self,
        metric: Metric | str,
        limit: int,
        status: LifeStatus | None = None,
    ) -> list[ProcessAccumulator]:
        """Rank the committed accumulators by ``metric``, highest first."""
        return top_by_metric(self._table.get_all(), metric, limit, status=status)

    def get_system_series(self) -> list[SystemTimeSeriesPoint]:
        return self._system_series.get_system_series()

    def latest_system_point(self) -> SystemTimeSeriesPoint | None:
        return self._system_series.latest()

    def get_process_series(self, identity: ProcessIdentity) -> list[ProcessTimeSeriesPoint]:
        return self._process_series.get_process_series(identity)

    # Administration

    def clear_history(self, identity: ProcessIdentity) -> bool:
        """Forget one identity's accumulator and series. Returns whether anything was removed."""
        with self._lock:
            removed_series = self._process_series.clear_one(identity)
            removed_entry = self._table.remove(identity) is not None
        return removed_series or removed_entry

    def clear_all_histories(self) -> None:
        """Reset the table and both series stores to empty."""
        with self._lock:
            self._table.clear()
            self._process_series.clear()
            self._system_series.clear()
        logger.info("Cleared all histories")

    def evict(self, predicate: Callable[[ProcessAccumulator], bool]) -> list[ProcessIdentity]:
        """
        Remove every accumulator matching ``predicate`` together with its series.

        Example, dropping tombstones older than an hour::

            engine.evict(lambda acc: not acc.is_alive and acc.last_seen < time.time() - 3600)
        """
        with self._lock:
            removed = self._table.sweep(predicate)
            for identity in removed:
                self._process_series.clear_one(identity)
        return removed
