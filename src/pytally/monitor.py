"""psutil snapshot provider and background polling loop for pytally."""

import logging
import threading
import time
from queue import Queue

import psutil

from pytally.engine import SnapshotProvider, TallyEngine
from pytally.errors import ProviderError
from pytally.models import ProcessIdentity, ProcessSnapshot, SystemSnapshot, TickResult

logger = logging.getLogger(__name__)

_PROCESS_ATTRS = [
    "pid",
    "ppid",
    "create_time",
    "name",
    "username",
    "status",
    "cpu_percent",
    "memory_info",
    "io_counters",
    "cmdline",
]
# io_counters is missing on macOS
_PROCESS_ATTRS = [attr for attr in _PROCESS_ATTRS if hasattr(psutil.Process, attr)]


class PsutilProvider:
    """
    Snapshot provider backed by psutil.

    Per-process disk usage is reported as bytes moved since the previous
    sample of the same identity; the first sample of an identity reports its
    cumulative counters. Network figures are byte rates since the previous
    sample.
    """

    def __init__(self) -> None:
        self._io_baseline: dict[ProcessIdentity, tuple[int, int]] = {}
        self._net_baseline = (time.monotonic(), *self._network_totals())
        # Initialize CPU percent (first call returns 0.0)
        psutil.cpu_percent(percpu=True)

    def sample(self) -> tuple[list[ProcessSnapshot], SystemSnapshot]:
        """
        Collect one tick of process and system data.

        Raises:
            ProviderError: psutil could not read system-wide counters.
        """
        try:
            cpu_percents = psutil.cpu_percent(percpu=True)
            mem = psutil.virtual_memory()
            rx_rate, tx_rate = self._network_rates()
            processes = self._collect_processes()
        except (psutil.Error, OSError) as exc:
            raise ProviderError(f"psutil sampling failed: {exc}") from exc

        system = SystemSnapshot(
            cpu_usage=list(cpu_percents),
            memory_used=mem.used,
            network_rx_bytes=rx_rate,
            network_tx_bytes=tx_rate,
            disk_io_read_bytes=sum(proc.disk_usage[0] for proc in processes),
            disk_io_write_bytes=sum(proc.disk_usage[1] for proc in processes),
        )
        return processes, system

    @staticmethod
    def _network_totals() -> tuple[int, int]:
        counters = psutil.net_io_counters()
        if counters is None:
            return 0, 0
        return counters.bytes_recv, counters.bytes_sent

    def _network_rates(self) -> tuple[int, int]:
        now = time.monotonic()
        rx, tx = self._network_totals()
        last_time, last_rx, last_tx = self._net_baseline
        self._net_baseline = (now, rx, tx)
        elapsed = now - last_time
        if elapsed <= 0:
            return 0, 0
        # Counters can wrap or reset when an interface goes away
        return int(max(0, rx - last_rx) / elapsed), int(max(0, tx - last_tx) / elapsed)

    def _collect_processes(self) -> list[ProcessSnapshot]:
        """
        Collect snapshots of all running processes.

        Handles NoSuchProcess, AccessDenied and ZombieProcess by skipping the
        process; attributes psutil cannot read come back as None and default.
        """
        processes: list[ProcessSnapshot] = []
        baseline: dict[ProcessIdentity, tuple[int, int]] = {}

        for proc in psutil.process_iter(attrs=_PROCESS_ATTRS):
            try:
                with proc.oneshot():
                    info = proc.info

                    cmdline = info.get("cmdline") or []
                    command = " ".join(cmdline) if cmdline else info.get("name") or ""

                    mem_info = info.get("memory_info")
                    memory_usage = mem_info.rss if mem_info else 0

                    start_time = int(round((info.get("create_time") or 0.0) * 1000))
                    identity = ProcessIdentity(info.get("pid", 0), start_time)

                    io = info.get("io_counters")
                    previous = self._io_baseline.get(identity)
                    if io is None:
                        # Unreadable this tick; keep the last good counters
                        disk_usage = (0, 0)
                        if previous is not None:
                            baseline[identity] = previous
                    else:
                        io_totals = (io.read_bytes, io.write_bytes)
                        if previous is None:
                            disk_usage = io_totals
                        else:
                            disk_usage = (
                                max(0, io_totals[0] - previous[0]),
                                max(0, io_totals[1] - previous[1]),
                            )
                        baseline[identity] = io_totals

                    processes.append(
                        ProcessSnapshot(
                            pid=identity.pid,
                            ppid=info.get("ppid") or 0,
                            start_time=start_time,
                            name=info.get("name") or "",
                            command=command,
                            user=info.get("username") or "",
                            cpu_usage=info.get("cpu_percent") or 0.0,
                            memory_usage=memory_usage,
                            disk_usage=disk_usage,
                            status=info.get("status") or "?",
                        )
                    )

            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Process died mid-poll or cannot be inspected
                continue

        # Only identities still present keep a baseline
        self._io_baseline = baseline
        return processes


class TallyMonitor:
    """
    Polls a snapshot provider into a TallyEngine on a daemon thread.

    Ticks run strictly one after another. Each TickResult, failed or not, is
    pushed to ``update_queue`` when one is given.
    """

    def __init__(
        self,
        engine: TallyEngine,
        update_queue: Queue[TickResult] | None = None,
        provider: SnapshotProvider | None = None,
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the TallyMonitor.

        Args:
            engine: Engine that receives every sample.
            update_queue: Thread-safe queue to push tick results to.
            provider: Snapshot source. Defaults to a PsutilProvider.
            poll_rate: How often to poll (in seconds). Default 2.0s.
        """
        self._engine = engine
        self._queue = update_queue
        self._provider = provider if provider is not None else PsutilProvider()
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def engine(self) -> TallyEngine:
        return self._engine

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="TallyMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def poll_once(self) -> TickResult:
        """Run a single tick on the calling thread."""
        result = self._engine.ingest_from(self._provider)
        if self._queue is not None:
            self._queue.put(result)
        return result

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Unexpected error during tick; monitor keeps running")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)
