"""Latest-point reduction of a fetched metric series."""
import math
from typing import Optional

from nasmetrics.errors import DivideByZero, EmptySeries, MalformedValue
from nasmetrics.series import DataPoint, MetricSeries, ReducedValue


def select_latest(series: MetricSeries) -> Optional[DataPoint]:
    """Return the point with the greatest timestamp, or None for an empty series.

    A selected point is only replaced by a strictly newer one, so the first
    point seen wins when timestamps tie.
    """
    latest = None
    for point in series:
        if latest is None or point.timestamp > latest.timestamp:
            latest = point
    return latest


def point_value(point: DataPoint) -> float:
    """Derive the scalar value of a single datapoint."""
    if point.sum is not None and point.sample_count is not None:
        if point.sample_count == 0:
            raise DivideByZero(f"sample count is zero at {point.timestamp.isoformat()}")
        if point.sample_count < 0:
            raise MalformedValue(f"negative sample count {point.sample_count}")
        if not math.isfinite(point.sum):
            raise MalformedValue(f"non-finite sum {point.sum!r}")
        return point.sum / point.sample_count

    if point.value is None:
        raise MalformedValue(f"datapoint at {point.timestamp.isoformat()} has no value")

    try:
        value = float(point.value)
    except (TypeError, ValueError):
        raise MalformedValue(f"cannot parse value {point.value!r}")

    if not math.isfinite(value):
        raise MalformedValue(f"non-finite value {point.value!r}")
    return value


def reduce_latest(metric_name: str, series: MetricSeries) -> ReducedValue:
    """
    Reduce a series to the value of its most recent datapoint.

    Args:
        metric_name: Name of the metric the series belongs to
        series: Datapoints returned for one query, in any order

    Returns:
        ReducedValue for the newest datapoint

    Raises:
        EmptySeries: The series has no datapoints
        DivideByZero: The newest datapoint has a sample count of zero
        MalformedValue: The newest datapoint's direct value is not a finite float
    """
    latest = select_latest(series)
    if latest is None:
        raise EmptySeries("fetched no datapoints")

    return ReducedValue(
        metric_name=metric_name,
        value=point_value(latest),
        timestamp=latest.timestamp,
    )
