"""Top-N ranking over accumulator rollups."""

import heapq
from collections.abc import Iterable

from pytally.models import LifeStatus, Metric, ProcessAccumulator


def ranking_key(metric: Metric):
    """Sort key: metric descending, then identity ascending to break ties."""
    field = metric.field_name

    def key(acc: ProcessAccumulator) -> tuple:
        return (-getattr(acc, field), acc.identity)

    return key


def top_by_metric(
    accumulators: Iterable[ProcessAccumulator],
    metric: Metric | str,
    limit: int,
    status: LifeStatus | None = None,
) -> list[ProcessAccumulator]:
    """
    Return at most ``limit`` accumulators with the highest ``metric``.

    Args:
        accumulators: The rollups to rank, typically ``AccumulatorTable.get_all()``.
        metric: A Metric or its name ("cpu", "memory", "diskRead", "disk_write", ...).
        limit: Maximum number of results. Zero or negative yields an empty list.
        status: Only rank entries in this life status; ``None`` ranks all.
    """
    metric = Metric.parse(metric)
    if limit <= 0:
        return []
    if status is not None:
        accumulators = (acc for acc in accumulators if acc.status is status)
    return heapq.nsmallest(limit, accumulators, key=ranking_key(metric))
