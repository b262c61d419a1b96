"""pytally - Textual viewer for lifetime top resource consumers."""

from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static

from pytally.engine import SnapshotProvider, TallyEngine
from pytally.models import Metric, ProcessAccumulator, SystemTimeSeriesPoint, TickResult
from pytally.monitor import TallyMonitor

TOP_LIMIT = 50


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


class HeaderStats(Static):
    """Header widget showing the most recent system sample."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 4;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._point: SystemTimeSeriesPoint | None = None
        self._tracked = 0
        self._ticks = 0

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_usage_info(), id="usage-info"),
            Static(self._get_io_info(), id="io-info"),
        )

    def update_stats(self, point: SystemTimeSeriesPoint | None, tracked: int, ticks: int) -> None:
        """Update the statistics from the latest system point."""
        self._point = point
        self._tracked = tracked
        self._ticks = ticks
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        try:
            usage_info = self.query_one("#usage-info", Static)
            io_info = self.query_one("#io-info", Static)
        except NoMatches:
            return  # Widget not mounted yet
        usage_info.update(self._get_usage_info())
        io_info.update(self._get_io_info())

    def _get_usage_info(self) -> str:
        if self._point is None:
            return "Waiting for first sample..."
        bar_len = min(int(self._point.cpu_average / 5), 20)
        bar = "[green]█[/green]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)
        return (
            f"CPU \\[{bar}] {self._point.cpu_average:5.1f}%\n"
            f"Mem used: {format_bytes(self._point.memory_used)}\n"
            f"Tracked: {self._tracked} processes over {self._ticks} ticks"
        )

    def _get_io_info(self) -> str:
        if self._point is None:
            return ""
        return (
            f"Net rx/s: {format_bytes(self._point.network_rx_bytes)}  "
            f"tx/s: {format_bytes(self._point.network_tx_bytes)}\n"
            f"Disk read: {format_bytes(self._point.disk_io_read_bytes)}  "
            f"write: {format_bytes(self._point.disk_io_write_bytes)}"
        )


class TopTable(Container):
    """Container for the ranking data table."""

    DEFAULT_CSS = """
    TopTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize TopTable."""
        super().__init__(*args, **kwargs)
        self._metric: Metric = Metric.CPU

    @property
    def metric(self) -> Metric:
        """Get current ranking metric."""
        return self._metric

    def cycle_metric(self) -> Metric:
        """Cycle to the next ranking metric and return it."""
        metrics = list(Metric)
        self._metric = metrics[(metrics.index(self._metric) + 1) % len(metrics)]
        return self._metric

    def compose(self) -> ComposeResult:
        """Compose the ranking table."""
        yield DataTable(id="top-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#top-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("STATE", key="state", width=6)
        table.add_column("CPU Σ", key="cpu", width=10)
        table.add_column("PEAK", key="memory", width=8)
        table.add_column("READ", key="disk_read", width=8)
        table.add_column("WRITE", key="disk_write", width=8)
        table.add_column("N", key="samples", width=6)
        table.add_column("Command", key="command")

    def update_ranking(self, ranking: list[ProcessAccumulator]) -> None:
        """Replace the table rows with ``ranking``, already in display order."""
        table = self.query_one("#top-table", DataTable)
        table.clear()
        for acc in ranking:
            table.add_row(
                str(acc.pid),
                acc.user[:10],
                acc.status.value,
                f"{acc.total_cpu_usage:8.1f}",
                format_bytes(acc.max_memory_usage),
                format_bytes(acc.total_disk_read),
                format_bytes(acc.total_disk_write),
                str(acc.sample_count),
                (acc.command or acc.name)[:50],
                key=str(acc.identity),
            )


class PytallyApp(App):
    """Main pytally application."""

    TITLE = "pytally"
    SUB_TITLE = "Lifetime Top Consumers"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 5;
    }

    Horizontal {
        height: auto;
    }

    #usage-info {
        width: 1fr;
        padding-right: 2;
    }

    #io-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "metric", "Metric"),
        ("c", "clear", "Clear history"),
    ]

    def __init__(
        self,
        engine: TallyEngine | None = None,
        provider: SnapshotProvider | None = None,
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the PytallyApp.

        Args:
            engine: Engine to fill and query. A fresh one by default.
            provider: Snapshot source. Defaults to a PsutilProvider.
            poll_rate: Seconds between ticks.
        """
        super().__init__()
        self._engine = engine if engine is not None else TallyEngine()
        self._update_queue: Queue[TickResult] = Queue()
        self._monitor = TallyMonitor(self._engine, self._update_queue, provider=provider, poll_rate=poll_rate)

    @property
    def engine(self) -> TallyEngine:
        return self._engine

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield TopTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        # Set up a timer to poll the queue for updates
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain tick results and refresh the UI once if any tick committed."""
        committed = False
        while True:
            try:
                result = self._update_queue.get_nowait()
            except Empty:
                break
            if result.ok:
                committed = True
            else:
                self.notify(str(result.error), severity="warning")

        if committed:
            self.refresh_view()

    def refresh_view(self) -> None:
        """Redraw the header and ranking from the engine's committed state."""
        header = self.query_one("#header-stats", HeaderStats)
        header.update_stats(
            self._engine.latest_system_point(),
            len(self._engine.table),
            self._engine.tick_count,
        )
        top_table = self.query_one(TopTable)
        top_table.update_ranking(self._engine.top_by_metric(top_table.metric, TOP_LIMIT))

    def action_metric(self) -> None:
        """Cycle the ranking metric."""
        top_table = self.query_one(TopTable)
        metric = top_table.cycle_metric()
        self.notify(f"Ranking by: {metric.value.upper()}")
        self.refresh_view()

    def action_clear(self) -> None:
        """Forget every accumulator and series."""
        self._engine.clear_all_histories()
        self.notify("History cleared")
        self.refresh_view()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def main() -> None:
    """Entry point for pytally application."""
    app = PytallyApp()
    app.run()


if __name__ == "__main__":
    main()
