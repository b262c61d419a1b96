"""Checking and sanitizing provider snapshots before they are ingested."""

import logging
import math
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from pytally.errors import InvariantViolation, MalformedSnapshot
from pytally.models import ProcessSnapshot, SystemSnapshot

logger = logging.getLogger(__name__)

_MISSING = object()


class _Sanitizer:
    """Reads fields off one raw record and collects the values it had to clamp."""

    def __init__(self, raw: Any, kind: str, index: int | None = None) -> None:
        self.raw = raw
        self.kind = kind
        self.index = index
        self.violations: list[InvariantViolation] = []

    def _where(self, field: str) -> str:
        if self.index is None:
            return f"{self.kind}.{field}"
        return f"{self.kind}[{self.index}].{field}"

    def _malformed(self, field: str, problem: str) -> MalformedSnapshot:
        return MalformedSnapshot(f"{self._where(field)}: {problem}", field=field, index=self.index)

    def _clamp(self, field: str, value: Any, message: str) -> int:
        violation = InvariantViolation(
            f"{self._where(field)}: {message}, clamped to 0", field=field, value=value, index=self.index
        )
        self.violations.append(violation)
        return 0

    def fetch(self, field: str) -> Any:
        if isinstance(self.raw, Mapping):
            value = self.raw.get(field, _MISSING)
        else:
            value = getattr(self.raw, field, _MISSING)
        if value is _MISSING or value is None:
            raise self._malformed(field, "missing")
        return value

    def integer(self, field: str, value: Any = _MISSING) -> int:
        if value is _MISSING:
            value = self.fetch(field)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._malformed(field, f"expected an integer, got {type(value).__name__}")
        return value

    def metric_int(self, field: str, value: Any = _MISSING) -> int:
        value = self.integer(field, value)
        if value < 0:
            return self._clamp(field, value, f"negative value {value}")
        return value

    def metric_float(self, field: str, value: Any = _MISSING) -> float:
        if value is _MISSING:
            value = self.fetch(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._malformed(field, f"expected a number, got {type(value).__name__}")
        if not math.isfinite(value):
            return float(self._clamp(field, value, f"non-finite value {value}"))
        if value < 0:
            return float(self._clamp(field, value, f"negative value {value}"))
        return float(value)

    def text(self, field: str) -> str:
        value = self.fetch(field)
        if not isinstance(value, str):
            raise self._malformed(field, f"expected a string, got {type(value).__name__}")
        return value

    def label(self, field: str) -> str:
        """A string field that may also arrive as an enum member."""
        value = self.fetch(field)
        if isinstance(value, Enum):
            value = value.value if isinstance(value.value, str) else value.name
        if not isinstance(value, str):
            raise self._malformed(field, f"expected a string, got {type(value).__name__}")
        return value

    def sequence(self, field: str, length: int | None = None) -> Sequence[Any]:
        value = self.fetch(field)
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise self._malformed(field, f"expected a sequence, got {type(value).__name__}")
        if length is not None and len(value) != length:
            raise self._malformed(field, f"expected {length} items, got {len(value)}")
        return value


def sanitize_process(raw: Any, index: int | None = None) -> tuple[ProcessSnapshot, list[InvariantViolation]]:
    """
    Build a clean ProcessSnapshot from a snapshot-like object or a mapping.

    Raises:
        MalformedSnapshot: A required field is missing or has the wrong type.
    """
    s = _Sanitizer(raw, "process", index)
    disk = s.sequence("disk_usage", length=2)
    snapshot = ProcessSnapshot(
        pid=s.integer("pid"),
        ppid=s.integer("ppid"),
        start_time=s.integer("start_time"),
        name=s.text("name"),
        command=s.text("command"),
        user=s.text("user"),
        cpu_usage=s.metric_float("cpu_usage"),
        memory_usage=s.metric_int("memory_usage"),
        disk_usage=(s.metric_int("disk_usage", disk[0]), s.metric_int("disk_usage", disk[1])),
        status=s.label("status"),
    )
    if snapshot.pid < 0 or snapshot.ppid < 0 or snapshot.start_time < 0:
        raise MalformedSnapshot(
            f"process[{index}]: pid, ppid and start_time must not be negative", field="pid", index=index
        )
    return snapshot, s.violations


def sanitize_system(raw: Any) -> tuple[SystemSnapshot, list[InvariantViolation]]:
    """
    Build a clean SystemSnapshot from a snapshot-like object or a mapping.

    Raises:
        MalformedSnapshot: A required field is missing or has the wrong type.
    """
    s = _Sanitizer(raw, "system")
    cores = tuple(s.metric_float("cpu_usage", value) for value in s.sequence("cpu_usage"))
    snapshot = SystemSnapshot(
        cpu_usage=cores,
        memory_used=s.metric_int("memory_used"),
        network_rx_bytes=s.metric_int("network_rx_bytes"),
        network_tx_bytes=s.metric_int("network_tx_bytes"),
        disk_io_read_bytes=s.metric_int("disk_io_read_bytes"),
        disk_io_write_bytes=s.metric_int("disk_io_write_bytes"),
    )
    return snapshot, s.violations


def sanitize_tick(
    system: Any, processes: Sequence[Any]
) -> tuple[SystemSnapshot, list[ProcessSnapshot], list[InvariantViolation]]:
    """
    Sanitize a whole tick, rejecting it if any record is malformed.

    Raises:
        MalformedSnapshot: Any record is malformed, or one identity appears twice.
    """
    if isinstance(processes, (str, bytes)) or not isinstance(processes, Sequence):
        raise MalformedSnapshot("processes: expected a sequence", field="processes")

    clean_system, violations = sanitize_system(system)
    clean_processes = []
    seen = set()
    for index, raw in enumerate(processes):
        snapshot, found = sanitize_process(raw, index)
        if snapshot.identity in seen:
            raise MalformedSnapshot(
                f"process[{index}]: duplicate identity {snapshot.identity}", field="pid", index=index
            )
        seen.add(snapshot.identity)
        clean_processes.append(snapshot)
        violations.extend(found)

    for violation in violations:
        logger.warning("Invariant violation: %s", violation)
    return clean_system, clean_processes, violations
