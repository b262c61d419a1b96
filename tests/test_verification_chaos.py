"""Verification Test: Chaos Monkey - Random process termination resilience.

Randomly terminate dummy processes while the monitor is running and check
that:
- the polling loop keeps committing ticks (no NoSuchProcess crash)
- every killed worker ends up as a DEAD tombstone with its history intact
- survivors stay ALIVE and keep accumulating samples
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

from pytally.engine import TallyEngine
from pytally.models import LifeStatus, TickResult
from pytally.monitor import PsutilProvider, TallyMonitor


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def wait_for_ticks(queue: Queue, count: int, max_wait: float = 10.0) -> int:
    """Consume up to ``count`` committed tick results; returns how many arrived."""
    committed = 0
    deadline = time.time() + max_wait
    while committed < count and time.time() < deadline:
        try:
            result = queue.get(timeout=1.0)
        except Empty:
            continue
        if result.ok:
            committed += 1
    return committed


def accumulators_for(engine: TallyEngine, pid: int):
    return [acc for acc in engine.get_accumulators() if acc.pid == pid]


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_killed_processes_become_tombstones(self):
        """
        Test that processes terminated mid-run are marked DEAD, not dropped.

        Their rollups must remain rankable after they exit.
        """
        processes = []
        for _ in range(20):
            p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
            p.start()
            processes.append(p)

        queue: Queue[TickResult] = Queue()
        engine = TallyEngine()
        monitor = TallyMonitor(engine, queue, poll_rate=0.3)

        try:
            monitor.start()
            assert wait_for_ticks(queue, 2) == 2

            identities = {}
            for p in processes:
                (acc,) = [acc for acc in accumulators_for(engine, p.pid) if acc.is_alive]
                identities[p.pid] = acc.identity

            victims = random.sample(processes, 10)
            for p in victims:
                p.terminate()
            for p in victims:
                p.join(timeout=2.0)

            # Ticks already queued may predate the kills
            while not queue.empty():
                queue.get_nowait()
            assert wait_for_ticks(queue, 2) == 2
            assert monitor.is_running, "Monitor should still be running after chaos"

            for p in victims:
                acc = engine.get_accumulator(identities[p.pid])
                assert acc.status is LifeStatus.DEAD, f"Worker {p.pid} should be a tombstone"
                assert acc.sample_count >= 2

            for p in processes:
                if p in victims:
                    continue
                acc = engine.get_accumulator(identities[p.pid])
                assert acc.is_alive
                assert acc.sample_count >= 4

        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=1.0)

    def test_rapid_process_creation_and_termination(self):
        """
        Test monitor stability during rapid process churn.

        Processes are rapidly created and destroyed while ticks run; no tick
        may fail.
        """
        queue: Queue[TickResult] = Queue()
        engine = TallyEngine()
        monitor = TallyMonitor(engine, queue, poll_rate=0.2)

        processes = []
        results = []

        try:
            monitor.start()

            start_time = time.time()
            while time.time() - start_time < 3.0:
                for _ in range(5):
                    p = multiprocessing.Process(target=dummy_worker, args=(10.0,))
                    p.start()
                    processes.append(p)

                alive_processes = [p for p in processes if p.is_alive()]
                if len(alive_processes) > 10:
                    for p in random.sample(alive_processes, 3):
                        p.terminate()

                time.sleep(0.1)

            assert monitor.is_running, "Monitor crashed during rapid churn"

            while True:
                try:
                    results.append(queue.get(timeout=1.0))
                except Empty:
                    break
                if len(results) >= 5:
                    break

            assert results, "Monitor stopped providing tick results"
            assert all(result.ok for result in results)

        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=0.5)

    def test_sample_handles_terminated_process(self):
        """
        Test that sampling handles a process that has just exited.

        The terminated process may or may not be listed; no exception escapes.
        """
        p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
        p.start()
        time.sleep(0.1)
        p.terminate()
        p.join(timeout=1.0)

        processes, _ = PsutilProvider().sample()
        assert isinstance(processes, list)
