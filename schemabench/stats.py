"""
Statistics aggregation over measured runs.

Percentiles use the nearest-rank method: sort ascending and pick the value at
0-based index ``ceil(p * n) - 1`` clamped to ``[0, n - 1]``. The result is always
an observed value, so there is no interpolation ambiguity.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence

from schemabench.domain.models import AggregatedMetric, RunRecord

PERCENTILES = {"p50": 0.50, "p95": 0.95, "p99": 0.99}


def percentile_nearest_rank(sorted_values: Sequence[float], p: float) -> float:
    if not sorted_values:
        raise ValueError("percentile of an empty sequence")
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"percentile {p} outside [0, 1]")
    n = len(sorted_values)
    index = min(max(math.ceil(p * n) - 1, 0), n - 1)
    return sorted_values[index]


def aggregate(values: Iterable[float]) -> AggregatedMetric:
    ordered = sorted(values)
    if not ordered:
        raise ValueError("cannot aggregate an empty set of values")
    return AggregatedMetric(
        count=len(ordered),
        min=ordered[0],
        max=ordered[-1],
        avg=sum(ordered) / len(ordered),
        p50=percentile_nearest_rank(ordered, PERCENTILES["p50"]),
        p95=percentile_nearest_rank(ordered, PERCENTILES["p95"]),
        p99=percentile_nearest_rank(ordered, PERCENTILES["p99"]),
    )


def aggregate_records(records: Sequence[RunRecord]) -> Dict[str, AggregatedMetric]:
    """
    Aggregate every metric independently across complete measured runs.

    Client wall time is reported as ``wall_ms``. Incomplete records (missing
    from the execution log) are excluded entirely.
    """
    complete = [record for record in records if not record.incomplete]
    series: Dict[str, List[float]] = {}
    for record in complete:
        series.setdefault("wall_ms", []).append(record.elapsed_seconds * 1000.0)
        for name, value in record.metrics.items():
            series.setdefault(name, []).append(value)
    return {name: aggregate(values) for name, values in series.items()}


__all__ = ["PERCENTILES", "aggregate", "aggregate_records", "percentile_nearest_rank"]
