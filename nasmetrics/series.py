"""Data structures for metric queries and datapoints."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class MetricQuery:
    """One GetMetricStatistics request for a single metric and instance."""
    metric_name: str
    dimension: Tuple[str, str]
    start: datetime
    end: datetime


@dataclass(frozen=True)
class DataPoint:
    """A single aggregation bucket reported by the remote API.

    Either ``sum`` and ``sample_count`` are set, or ``value`` holds the
    pre-divided value as it appeared on the wire.
    """
    timestamp: datetime
    sum: Optional[float] = None
    sample_count: Optional[int] = None
    value: Optional[str] = None


# Order of points is irrelevant; may be empty.
MetricSeries = Tuple[DataPoint, ...]


@dataclass(frozen=True)
class ReducedValue:
    """The scalar chosen to represent the current state of a metric."""
    metric_name: str
    value: float
    timestamp: datetime
