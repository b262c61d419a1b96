"""Tests for snapshot sanitizing."""

import math
from enum import Enum

import pytest

from factories import make_process, make_system
from pytally.errors import InvariantViolation, MalformedSnapshot
from pytally.models import ProcessSnapshot, SystemSnapshot
from pytally.validation import sanitize_process, sanitize_system, sanitize_tick


def process_dict(**overrides) -> dict:
    fields = dict(
        pid=5,
        ppid=1,
        start_time=100,
        name="worker",
        command="/bin/worker",
        user="tester",
        cpu_usage=1.5,
        memory_usage=2048,
        disk_usage=[10, 20],
        status="running",
    )
    fields.update(overrides)
    return fields


class TestSanitizeProcess:
    """Tests for sanitize_process."""

    def test_clean_snapshot_passes_through(self):
        snapshot, violations = sanitize_process(make_process(5, cpu=2.0, memory=10, disk=(1, 2)))
        assert snapshot == make_process(5, cpu=2.0, memory=10, disk=(1, 2))
        assert violations == []

    def test_accepts_mapping(self):
        snapshot, _ = sanitize_process(process_dict())
        assert isinstance(snapshot, ProcessSnapshot)
        assert snapshot.disk_usage == (10, 20)

    def test_missing_field(self):
        raw = process_dict()
        del raw["start_time"]
        with pytest.raises(MalformedSnapshot) as excinfo:
            sanitize_process(raw, index=3)
        assert excinfo.value.field == "start_time"
        assert excinfo.value.index == 3
        assert "process[3].start_time" in str(excinfo.value)

    def test_none_field(self):
        with pytest.raises(MalformedSnapshot, match="missing"):
            sanitize_process(process_dict(user=None))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"pid": "5"},
            {"pid": 5.0},
            {"pid": True},
            {"cpu_usage": "high"},
            {"memory_usage": 1.5},
            {"name": 7},
            {"disk_usage": [1]},
            {"disk_usage": "12"},
            {"disk_usage": [1.0, 2]},
            {"pid": -1},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(MalformedSnapshot):
            sanitize_process(process_dict(**overrides))

    def test_negative_metrics_are_clamped(self):
        snapshot, violations = sanitize_process(
            process_dict(cpu_usage=-3.0, memory_usage=-1, disk_usage=[-5, 7])
        )
        assert snapshot.cpu_usage == 0.0
        assert snapshot.memory_usage == 0
        assert snapshot.disk_usage == (0, 7)
        assert [v.field for v in violations] == ["cpu_usage", "memory_usage", "disk_usage"]
        assert all(isinstance(v, InvariantViolation) for v in violations)

    def test_non_finite_cpu_is_clamped(self):
        snapshot, violations = sanitize_process(process_dict(cpu_usage=math.nan))
        assert snapshot.cpu_usage == 0.0
        assert len(violations) == 1

    def test_enum_status_is_accepted(self):
        """Test an enum status is stored as its string value or name."""

        class State(Enum):
            RUNNING = "running"

        class Code(Enum):
            SLEEPING = 2

        assert sanitize_process(process_dict(status=State.RUNNING))[0].status == "running"
        assert sanitize_process(process_dict(status=Code.SLEEPING))[0].status == "SLEEPING"

    def test_non_string_status_rejected(self):
        with pytest.raises(MalformedSnapshot):
            sanitize_process(process_dict(status=3))

    def test_integer_cpu_becomes_float(self):
        snapshot, _ = sanitize_process(process_dict(cpu_usage=3))
        assert snapshot.cpu_usage == 3.0
        assert isinstance(snapshot.cpu_usage, float)


class TestSanitizeSystem:
    """Tests for sanitize_system."""

    def test_clean_snapshot(self):
        snapshot, violations = sanitize_system(make_system(cpu=[1.0, 2.0]))
        assert isinstance(snapshot, SystemSnapshot)
        assert tuple(snapshot.cpu_usage) == (1.0, 2.0)
        assert violations == []

    def test_empty_cpu_list_is_valid(self):
        snapshot, _ = sanitize_system(make_system(cpu=[]))
        assert tuple(snapshot.cpu_usage) == ()

    def test_negative_core_clamped(self):
        snapshot, violations = sanitize_system(make_system(cpu=[-1.0, 50.0]))
        assert tuple(snapshot.cpu_usage) == (0.0, 50.0)
        assert violations[0].field == "cpu_usage"

    def test_missing_field(self):
        raw = {"cpu_usage": [1.0], "memory_used": 1}
        with pytest.raises(MalformedSnapshot) as excinfo:
            sanitize_system(raw)
        assert excinfo.value.field == "network_rx_bytes"

    def test_cpu_not_a_sequence(self):
        raw = {
            "cpu_usage": 12.0,
            "memory_used": 1,
            "network_rx_bytes": 0,
            "network_tx_bytes": 0,
            "disk_io_read_bytes": 0,
            "disk_io_write_bytes": 0,
        }
        with pytest.raises(MalformedSnapshot):
            sanitize_system(raw)


class TestSanitizeTick:
    """Tests for sanitize_tick."""

    def test_collects_violations_from_all_records(self):
        _, processes, violations = sanitize_tick(
            make_system(memory_used=-1),
            [make_process(1, cpu=-1.0), make_process(2)],
        )
        assert len(processes) == 2
        assert {v.field for v in violations} == {"memory_used", "cpu_usage"}

    def test_duplicate_identity_rejected(self):
        with pytest.raises(MalformedSnapshot, match="duplicate"):
            sanitize_tick(make_system(), [make_process(1, start_time=5), make_process(1, start_time=5)])

    def test_same_pid_different_start_time_allowed(self):
        _, processes, _ = sanitize_tick(make_system(), [make_process(1, start_time=5), make_process(1, start_time=6)])
        assert len(processes) == 2

    def test_processes_not_a_sequence(self):
        with pytest.raises(MalformedSnapshot):
            sanitize_tick(make_system(), None)
