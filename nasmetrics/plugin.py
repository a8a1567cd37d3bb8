"""mackerel-agent plugin surface: wiring and output formatting."""
from typing import Dict, Optional, TextIO
import json
import logging
import os
import sys
import time

from nasmetrics.catalog import MetricCatalog
from nasmetrics.config import Config
from nasmetrics.engine import FetchEngine
from nasmetrics.self_metrics import SelfMetrics
from nasmetrics.transport import NasClient

logger = logging.getLogger(__name__)

META_ENV = "MACKEREL_AGENT_PLUGIN_META"
META_HEADER = "# mackerel-agent-plugin"


class NasPlugin:
    """NIFCLOUD NAS plugin for mackerel-agent."""

    def __init__(self, config: Config, transport=None):
        self.config = config
        plugin = config.plugin
        self.catalog = MetricCatalog.default(
            prefix=plugin.metric_key_prefix,
            label_prefix=plugin.metric_label_prefix,
        )

        self.self_metrics = None
        if config.self_metrics.enabled:
            self.self_metrics = SelfMetrics(prefix=config.self_metrics.prefix)

        # None means a fresh client per fetch cycle
        self.transport = transport

    def _engine(self, transport) -> FetchEngine:
        plugin = self.config.plugin
        return FetchEngine(
            transport,
            self.catalog,
            identifier=plugin.identifier,
            lookback_s=plugin.lookback_s,
            timeout_s=plugin.timeout_s,
            max_workers=plugin.max_workers,
            self_metrics=self.self_metrics,
        )

    def fetch_metrics(self) -> Dict[str, float]:
        """Fetch the latest value of every catalog metric."""
        if self.transport is not None:
            return self._engine(self.transport).fetch_all()

        plugin = self.config.plugin
        with NasClient(
            plugin.region,
            plugin.access_key_id,
            plugin.secret_access_key,
            timeout_s=plugin.timeout_s,
        ) as client:
            return self._engine(client).fetch_all()

    def graph_definition(self) -> Dict:
        return self.catalog.graph_definition()

    def metric_key_prefix(self) -> str:
        return self.catalog.prefix or "nas"

    def output_values(self, values: Dict[str, float], now: Optional[int] = None, out: TextIO = None):
        """Print one ``key\\tvalue\\tepoch`` line per reported metric."""
        out = out or sys.stdout
        now = int(time.time()) if now is None else now
        for graph in self.catalog.graphs():
            for metric in graph.metrics:
                if metric.name in values:
                    out.write(f"{graph.key}.{metric.name}\t{values[metric.name]:f}\t{now}\n")

    def output_definitions(self, out: TextIO = None):
        """Print the graph definitions mackerel-agent asks for at startup."""
        out = out or sys.stdout
        out.write(META_HEADER + "\n")
        out.write(json.dumps(self.graph_definition()) + "\n")

    def write_self_metrics(self):
        textfile = self.config.self_metrics.textfile
        if self.self_metrics and textfile:
            try:
                self.self_metrics.write_textfile(textfile)
            except OSError as e:
                logger.error(f"Failed to write self-metrics to {textfile}: {e}")

    def run(self, out: TextIO = None):
        """Print definitions or values depending on how the agent invoked us."""
        if os.getenv(META_ENV) == "1":
            self.output_definitions(out)
            return

        values = self.fetch_metrics()
        self.output_values(values, out=out)
        self.write_self_metrics()
