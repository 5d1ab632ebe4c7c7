"""
Usage summarization over metric datapoints.

Statistics are computed only over datapoints that carry them. A statistic
that no datapoint carries stays None so callers can tell "unmonitored"
apart from "zero usage".
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from rightsizer.models.schemas import AggregationPolicy, Datapoint, UsageSummary

Reducer = Callable[[List[float]], float]

STATISTICS = ("average", "minimum", "maximum", "sum", "sample_count")


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


@dataclass(frozen=True)
class Combinator:
    """Per-statistic reducers applied to all datapoints sharing a timestamp."""
    name: str
    average: Reducer
    minimum: Reducer
    maximum: Reducer
    sum: Reducer
    sample_count: Reducer

    def combine(self, points: Sequence[Datapoint]) -> Datapoint:
        if len(points) == 1:
            return points[0]
        values = {}
        for field in STATISTICS:
            present = _values(points, field)
            values[field] = getattr(self, field)(present) if present else None
        return Datapoint(timestamp=points[0].timestamp, **values)


# Additive quantities: read+write IOPS, NetworkIn+NetworkOut
SUM_MERGE = Combinator("sum", sum, sum, sum, sum, sum)

# Redundant reports of the same quantity (percentages)
AVERAGE_MERGE = Combinator("average", _mean, min, max, sum, sum)


def merge(a: Sequence[Datapoint], b: Sequence[Datapoint], combinator: Combinator) -> List[Datapoint]:
    """
    Align two series by timestamp and combine overlapping points.

    Args:
        a: First series (any order)
        b: Second series (any order)
        combinator: Reducers for overlapping timestamps

    Returns:
        Series with unique timestamps, sorted ascending
    """
    return merge_all([a, b], combinator)


def merge_all(series: Iterable[Sequence[Datapoint]], combinator: Combinator) -> List[Datapoint]:
    """
    Combine any number of series in one pass.

    Every point sharing a timestamp is reduced together, so AVERAGE_MERGE
    yields the true mean however many series report it.
    """
    by_timestamp: Dict[datetime, List[Datapoint]] = {}
    for points in series:
        for point in points:
            by_timestamp.setdefault(point.timestamp, []).append(point)

    return [combinator.combine(by_timestamp[ts]) for ts in sorted(by_timestamp)]


def _values(datapoints: Sequence[Datapoint], field: str) -> List[float]:
    return [getattr(dp, field) for dp in datapoints if getattr(dp, field) is not None]


def summarize(datapoints: Sequence[Datapoint], policy: AggregationPolicy) -> UsageSummary:
    """
    Collapse a series into avg/min/max/last.

    AVERAGE policy: avg is the mean of averages, max the highest average.
    MAX policy: avg is the highest average, max the highest maximum.
    min is the lowest minimum under both policies.
    """
    if not datapoints:
        return UsageSummary()

    minimums = _values(datapoints, "minimum")
    averages = _values(datapoints, "average")
    maximums = _values(datapoints, "maximum")

    if policy == AggregationPolicy.MAX:
        avg = max(averages) if averages else None
        peak = max(maximums) if maximums else None
    else:
        avg = sum(averages) / len(averages) if averages else None
        peak = max(averages) if averages else None

    return UsageSummary(
        avg=avg,
        min=min(minimums) if minimums else None,
        max=peak,
        last=max(datapoints, key=lambda dp: dp.timestamp),
    )


def summarize_metric(
    metrics: Dict[str, List[Datapoint]],
    name: str,
    policy: AggregationPolicy,
) -> Optional[UsageSummary]:
    """Summarize one named metric; None when the metric has no datapoints."""
    points = metrics.get(name) or []
    summary = summarize(points, policy)
    if summary.is_empty:
        return None
    return summary
