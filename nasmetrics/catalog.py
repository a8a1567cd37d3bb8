"""Static catalog of NAS metrics and the graphs they are reported in."""
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict


class MetricSpec(BaseModel):
    """A metric shown in a graph, with its display label."""
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class GraphSpec(BaseModel):
    """A reporting graph grouping one or more metrics under a unit."""
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    unit: str
    metrics: Tuple[MetricSpec, ...]


# (graph name, label suffix, unit, ((metric name, display label), ...))
NAS_GRAPHS = (
    ("FreeStorageSpace", "Free Storage Space", "bytes", (
        ("FreeStorageSpace", "FreeStorageSpace"),
    )),
    ("UsedStorageSpace", "Used Storage Space", "bytes", (
        ("UsedStorageSpace", "UsedStorageSpace"),
    )),
    ("ActiveConnections", "Active Connections", "float", (
        ("ActiveConnections", "ActiveConnections"),
    )),
    ("IOPS", "IOPS", "iops", (
        ("ReadIOPS", "Read"),
        ("WriteIOPS", "Write"),
    )),
    ("Throughput", "Throughput", "bytes/sec", (
        ("ReadThroughput", "Read"),
        ("WriteThroughput", "Write"),
    )),
    ("GlobalTraffic", "Global Traffic", "bytes/sec", (
        ("GlobalReadTraffic", "Read"),
        ("GlobalWriteTraffic", "Write"),
    )),
    ("PrivateTraffic", "Private Traffic", "bytes/sec", (
        ("PrivateReadTraffic", "Read"),
        ("PrivateWriteTraffic", "Write"),
    )),
)


class MetricCatalog:
    """Immutable set of graphs built once at startup."""

    def __init__(self, graphs: Tuple[GraphSpec, ...], prefix: str = "nas"):
        self.prefix = prefix
        self._graphs = tuple(graphs)

    @classmethod
    def default(cls, prefix: str = "nas", label_prefix: str = "NAS") -> "MetricCatalog":
        """Build the standard NAS catalog for the given key and label prefixes."""
        graphs = tuple(
            GraphSpec(
                key=f"{prefix}.{name}",
                label=f"{label_prefix} {label}",
                unit=unit,
                metrics=tuple(
                    MetricSpec(name=metric_name, label=metric_label)
                    for metric_name, metric_label in metrics
                ),
            )
            for name, label, unit, metrics in NAS_GRAPHS
        )
        return cls(graphs, prefix=prefix)

    def graphs(self) -> Tuple[GraphSpec, ...]:
        """Return graphs in declaration order."""
        return self._graphs

    def metric_names(self) -> List[str]:
        """Return every metric name across all graphs, without duplicates."""
        seen = {}
        for graph in self._graphs:
            for metric in graph.metrics:
                seen.setdefault(metric.name, None)
        return list(seen)

    def graph_definition(self) -> Dict[str, Any]:
        """Render graphs in the mackerel-agent plugin meta format."""
        return {
            "graphs": {
                graph.key: {
                    "label": graph.label,
                    "unit": graph.unit,
                    "metrics": [m.model_dump() for m in graph.metrics],
                }
                for graph in self._graphs
            }
        }
