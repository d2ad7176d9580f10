"""Derived per-table metrics: heat levels, bottlenecks, cache and CPU shares."""

from __future__ import annotations

import enum
import math
from typing import Iterable, Optional

from scanlineage.core.models import Table

MAX_BOTTLENECKS = 3
BOTTLENECK_FRACTION = 0.2


class HeatMapMode(str, enum.Enum):
    """Metric used to colour tables."""

    HIT_COUNT = "hits"
    CPU_TIME = "cpu"


def _heat_metric(table: Table, mode: HeatMapMode) -> float:
    if mode == HeatMapMode.CPU_TIME:
        return table.total_cpu_time_ms
    return table.hit_count


def heat_levels(tables: Iterable[Table], mode: HeatMapMode = HeatMapMode.HIT_COUNT) -> dict[str, float]:
    """Normalize the chosen metric to [0, 1] across the tables.

    When every table has the same value all levels are 0.5.
    """
    tables = list(tables)
    if not tables:
        return {}

    values = [_heat_metric(t, mode) for t in tables]
    low, high = min(values), max(values)
    spread = high - low
    if spread <= 0:
        return {t.name: 0.5 for t in tables}
    return {t.name: (value - low) / spread for t, value in zip(tables, values)}


def bottlenecks(tables: Iterable[Table]) -> dict[str, int]:
    """Rank the slowest tables by total duration; rank 1 is the slowest.

    Only tables with a nonzero duration take part, and at most
    ``min(3, ceil(0.2 * n))`` of them are flagged.
    """
    timed = sorted(
        (t for t in tables if t.total_duration_ms > 0),
        key=lambda t: (-t.total_duration_ms, t.key),
    )
    if not timed:
        return {}
    count = max(1, min(MAX_BOTTLENECKS, math.ceil(len(timed) * BOTTLENECK_FRACTION)))
    return {t.name: rank for rank, t in enumerate(timed[:count], start=1)}


def cache_hit_rate(hits: int, misses: int) -> Optional[float]:
    """Cache hit percentage, None when there is no data."""
    total = hits + misses
    if total == 0:
        return None
    return hits / total * 100


def format_cache_hit_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "no data"
    return f"{rate:.0f}%"


def cpu_percentages(tables: Iterable[Table], total_cpu_ms: int) -> dict[str, float]:
    """Each table's share of the total CPU time, in percent."""
    if total_cpu_ms <= 0:
        return {}
    return {
        t.name: t.total_cpu_time_ms / total_cpu_ms * 100.0
        for t in tables
        if t.total_cpu_time_ms > 0
    }


def table_metrics(
    tables: Iterable[Table],
    total_cpu_ms: int = 0,
    mode: HeatMapMode = HeatMapMode.HIT_COUNT,
) -> dict[str, dict]:
    """All derived metrics per table name, ready for JSON output."""
    tables = list(tables)
    heat = heat_levels(tables, mode)
    ranks = bottlenecks(tables)
    cpu = cpu_percentages(tables, total_cpu_ms)
    return {
        t.name: {
            "heat_level": heat.get(t.name, 0.0),
            "bottleneck_rank": ranks.get(t.name),
            "cache_hit_rate": cache_hit_rate(t.cache_hits, t.cache_misses),
            "cpu_percentage": cpu.get(t.name, 0.0),
        }
        for t in tables
    }
