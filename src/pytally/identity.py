"""Identity and parent resolution for process snapshots."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from pytally.models import ProcessAccumulator, ProcessIdentity, ProcessSnapshot

NO_PARENT = 0


class PidIndex(Protocol):
    """Anything that can list accumulators by pid, e.g. an AccumulatorTable."""

    def find_by_pid(self, pid: int) -> list[ProcessAccumulator]: ...


@dataclass(slots=True, frozen=True)
class ResolvedProcess:
    """A snapshot paired with its identity and best-effort parent start time."""

    snapshot: ProcessSnapshot
    identity: ProcessIdentity
    parent_start_time: int


def freshest(candidates: Iterable[ProcessAccumulator]) -> ProcessAccumulator | None:
    """Pick the most recently seen accumulator, preferring the newer process on a tie."""
    return max(candidates, key=lambda acc: (acc.last_seen, acc.start_time), default=None)


def resolve_processes(
    processes: Sequence[ProcessSnapshot],
    table: PidIndex,
    root_pid: int = 1,
) -> list[ResolvedProcess]:
    """
    Resolve identity and parent start time for every snapshot in a tick.

    A parent is looked up first among the processes of the same tick, then,
    unless ppid is 0 or the root pid, among the accumulators already in the
    table. Unresolvable parents get ``NO_PARENT``.
    """
    current_start: dict[int, int] = {}
    for proc in processes:
        # Only a broken provider reports one pid twice; keep the newest.
        if proc.start_time > current_start.get(proc.pid, -1):
            current_start[proc.pid] = proc.start_time

    resolved = []
    for proc in processes:
        parent_start = current_start.get(proc.ppid) if proc.ppid != proc.pid else NO_PARENT
        if parent_start is None:
            parent_start = NO_PARENT
            if proc.ppid not in (0, root_pid):
                candidate = freshest(table.find_by_pid(proc.ppid))
                if candidate is not None:
                    parent_start = candidate.start_time
        resolved.append(ResolvedProcess(proc, proc.identity, parent_start))
    return resolved
