"""Concurrent fetch-and-reduce engine."""
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import logging
import threading
import time

from nasmetrics.catalog import MetricCatalog
from nasmetrics.errors import PluginError, TransportError
from nasmetrics.reducer import reduce_latest
from nasmetrics.self_metrics import SelfMetrics
from nasmetrics.series import MetricQuery
from nasmetrics.transport import make_query

logger = logging.getLogger(__name__)


class FetchCycle:
    """Result collection for one fetch_all call.

    Tasks write through ``put``; once ``close`` is called later writes are
    rejected, so a task that outlives the deadline cannot change a result
    that has already been returned.
    """

    def __init__(self, deadline: float):
        self.deadline = deadline
        self._results: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._closed = False

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def put(self, metric_name: str, value: float) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._results[metric_name] = value
            return True

    def close(self) -> Dict[str, float]:
        with self._lock:
            self._closed = True
            return dict(self._results)


class FetchEngine:
    """Fans out one fetch task per metric and merges the latest values."""

    def __init__(
        self,
        transport,
        catalog: MetricCatalog,
        identifier: str,
        lookback_s: int = 180,
        timeout_s: float = 30.0,
        max_workers: Optional[int] = None,
        self_metrics: Optional[SelfMetrics] = None,
    ):
        """
        Initialize the engine.

        Args:
            transport: Object with ``fetch(query, timeout=None)`` returning datapoints
            catalog: Catalog the default query list is derived from
            identifier: NAS instance identifier used as the query dimension
            lookback_s: Width of the query window in seconds
            timeout_s: Deadline shared by all tasks of one cycle
            max_workers: Thread cap; defaults to one thread per query
            self_metrics: Optional Prometheus self-metrics
        """
        self.transport = transport
        self.catalog = catalog
        self.identifier = identifier
        self.lookback_s = lookback_s
        self.timeout_s = timeout_s
        self.max_workers = max_workers
        self.self_metrics = self_metrics

    def build_queries(self, now: Optional[datetime] = None) -> List[MetricQuery]:
        """Build one query per catalog metric, all sharing the same window."""
        now = now or datetime.now(timezone.utc)
        return [
            make_query(name, self.identifier, self.lookback_s, now)
            for name in self.catalog.metric_names()
        ]

    def _run_task(self, query: MetricQuery, cycle: FetchCycle):
        """Fetch and reduce one metric; failures are logged, never raised."""
        name = query.metric_name
        task_start = time.time()
        try:
            remaining = cycle.remaining()
            if remaining <= 0:
                raise TransportError("deadline exceeded before request")

            series = self.transport.fetch(query, timeout=remaining)
            reduced = reduce_latest(name, series)

            if cycle.put(name, reduced.value):
                logger.debug(f"{name}: {reduced.value} at {reduced.timestamp.isoformat()}")
            else:
                logger.warning(f"{name}: result arrived after the deadline, discarded")

        except PluginError as e:
            logger.warning(f"{name}: {e}")
            if self.self_metrics:
                self.self_metrics.record_fetch_error(name, type(e).__name__)

        except Exception as e:
            logger.error(f"{name}: unexpected error: {e}", exc_info=True)
            if self.self_metrics:
                self.self_metrics.record_fetch_error(name, type(e).__name__)

        finally:
            if self.self_metrics:
                self.self_metrics.record_fetch(name, time.time() - task_start)

    def fetch_all(self, queries: Optional[Sequence[MetricQuery]] = None) -> Dict[str, float]:
        """
        Fetch every query concurrently and return metric name -> latest value.

        Never raises. Metrics whose fetch or reduction failed, or that did
        not finish before the cycle deadline, are absent from the result.
        """
        if queries is None:
            queries = self.build_queries()

        unique: Dict[str, MetricQuery] = {}
        for query in queries:
            if query.metric_name in unique:
                logger.debug(f"Duplicate query for {query.metric_name} ignored")
                continue
            unique[query.metric_name] = query

        if not unique:
            return {}

        cycle_start = time.time()
        cycle = FetchCycle(time.monotonic() + self.timeout_s)
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers or len(unique),
            thread_name_prefix="nas-fetch",
        )
        try:
            futures = {
                executor.submit(self._run_task, query, cycle): name
                for name, query in unique.items()
            }
            _, not_done = wait(futures, timeout=max(0.0, cycle.remaining()))
            results = cycle.close()
        finally:
            # Hung tasks are abandoned, not joined
            executor.shutdown(wait=False, cancel_futures=True)

        for future in not_done:
            name = futures[future]
            if name in results:
                continue
            logger.warning(f"{name}: timed out after {self.timeout_s}s")
            if self.self_metrics:
                self.self_metrics.record_fetch_error(name, "Timeout")

        duration = time.time() - cycle_start
        if self.self_metrics:
            self.self_metrics.record_cycle(duration, len(results))

        logger.info(f"Fetched {len(results)}/{len(unique)} metrics in {duration:.3f}s")
        return results
