"""Rollup accumulator table keyed by process identity."""

import threading
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import replace

from pytally.identity import ResolvedProcess
from pytally.models import LifeStatus, ProcessAccumulator, ProcessIdentity


def open_accumulator(resolved: ResolvedProcess, timestamp: float) -> ProcessAccumulator:
    """Create the accumulator for an identity seen for the first time."""
    proc = resolved.snapshot
    bytes_read, bytes_written = proc.disk_usage
    return ProcessAccumulator(
        identity=resolved.identity,
        ppid=proc.ppid,
        parent_start_time=resolved.parent_start_time,
        name=proc.name,
        command=proc.command,
        user=proc.user,
        total_cpu_usage=proc.cpu_usage,
        max_memory_usage=proc.memory_usage,
        total_disk_read=bytes_read,
        total_disk_write=bytes_written,
        sample_count=1,
        first_seen=timestamp,
        last_seen=timestamp,
        status=LifeStatus.ALIVE,
        process_status=proc.status,
    )


def rollup(acc: ProcessAccumulator, resolved: ResolvedProcess, timestamp: float) -> ProcessAccumulator:
    """
    Merge one more sample into an existing accumulator, returning a new record.

    Life status is carried over unchanged: only the table moves an entry to
    DEAD, and a tombstone that is sampled again stays DEAD.
    """
    proc = resolved.snapshot
    bytes_read, bytes_written = proc.disk_usage
    return replace(
        acc,
        ppid=proc.ppid,
        parent_start_time=resolved.parent_start_time,
        name=proc.name,
        command=proc.command,
        user=proc.user,
        total_cpu_usage=acc.total_cpu_usage + proc.cpu_usage,
        max_memory_usage=max(acc.max_memory_usage, proc.memory_usage),
        total_disk_read=acc.total_disk_read + bytes_read,
        total_disk_write=acc.total_disk_write + bytes_written,
        sample_count=acc.sample_count + 1,
        last_seen=max(acc.last_seen, timestamp),
        process_status=proc.status,
    )


class AccumulatorTable:
    """
    Per-identity rollups that outlive the processes they describe.

    Records are frozen and replaced wholesale, so a record handed to a reader
    never changes underneath it. Entries are only removed by ``remove``,
    ``sweep`` or ``clear``.
    """

    def __init__(self, lock: AbstractContextManager | None = None) -> None:
        self._lock = lock if lock is not None else threading.RLock()
        self._entries: dict[ProcessIdentity, ProcessAccumulator] = {}
        self._by_pid: dict[int, set[ProcessIdentity]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._entries

    def get(self, identity: ProcessIdentity) -> ProcessAccumulator | None:
        with self._lock:
            return self._entries.get(identity)

    def get_all(self) -> list[ProcessAccumulator]:
        """Return every accumulator, ordered by identity."""
        with self._lock:
            return [self._entries[key] for key in sorted(self._entries)]

    def identities(self) -> frozenset[ProcessIdentity]:
        with self._lock:
            return frozenset(self._entries)

    def find_by_pid(self, pid: int) -> list[ProcessAccumulator]:
        """Return every accumulator, alive or dead, that ever used ``pid``."""
        with self._lock:
            return [self._entries[key] for key in sorted(self._by_pid.get(pid, ()))]

    def put(self, acc: ProcessAccumulator) -> None:
        """Insert or replace the record for ``acc.identity``."""
        with self._lock:
            self._entries[acc.identity] = acc
            self._by_pid.setdefault(acc.pid, set()).add(acc.identity)

    def put_many(self, records: Iterable[ProcessAccumulator]) -> None:
        with self._lock:
            for acc in records:
                self.put(acc)

    def mark_dead(self, identities: Iterable[ProcessIdentity]) -> list[ProcessIdentity]:
        """Tombstone the given identities; returns those that were still alive."""
        buried = []
        with self._lock:
            for identity in identities:
                acc = self._entries.get(identity)
                if acc is not None and acc.is_alive:
                    self._entries[identity] = replace(acc, status=LifeStatus.DEAD)
                    buried.append(identity)
        return buried

    def remove(self, identity: ProcessIdentity) -> ProcessAccumulator | None:
        with self._lock:
            acc = self._entries.pop(identity, None)
            if acc is not None:
                siblings = self._by_pid.get(identity.pid)
                if siblings is not None:
                    siblings.discard(identity)
                    if not siblings:
                        del self._by_pid[identity.pid]
            return acc

    def sweep(self, predicate: Callable[[ProcessAccumulator], bool]) -> list[ProcessIdentity]:
        """
        Remove every accumulator for which ``predicate`` is true.

        This is the eviction hook: nothing is swept unless a caller asks.
        """
        with self._lock:
            doomed = [key for key in sorted(self._entries) if predicate(self._entries[key])]
            for identity in doomed:
                self.remove(identity)
        return doomed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_pid.clear()
