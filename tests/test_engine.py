#!/usr/bin/env python3
"""Tests for the concurrent fetch engine."""
from datetime import datetime, timedelta, timezone
import logging
import threading

from prometheus_client import CollectorRegistry

from nasmetrics.catalog import GraphSpec, MetricCatalog, MetricSpec
from nasmetrics.engine import FetchCycle, FetchEngine
from nasmetrics.errors import TransportError
from nasmetrics.self_metrics import SelfMetrics
from nasmetrics.series import DataPoint
from nasmetrics.transport import make_query

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def series(*pairs):
    """Build datapoints from (offset seconds, sum, count) tuples."""
    return tuple(
        DataPoint(timestamp=T0 + timedelta(seconds=s), sum=total, sample_count=count)
        for s, total, count in pairs
    )


def catalog_of(*names):
    graph = GraphSpec(
        key="test.graph",
        label="Test",
        unit="float",
        metrics=tuple(MetricSpec(name=n, label=n) for n in names),
    )
    return MetricCatalog((graph,), prefix="test")


class FakeTransport:
    """Returns canned series, or raises canned errors, per metric name."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, query, timeout=None):
        with self._lock:
            self.calls.append(query.metric_name)
        response = self.responses[query.metric_name]
        if isinstance(response, Exception):
            raise response
        return response


RESPONSES = {
    "A": series((10, 20.0, 2), (20, 45.0, 3)),
    "B": TransportError("HTTP 500: InternalError"),
    "C": series((5, 8.0, 4)),
}


def make_engine(transport, catalog=None, **kwargs):
    return FetchEngine(
        transport,
        catalog or catalog_of("A", "B", "C"),
        identifier="nas001",
        **kwargs,
    )


def test_failed_metric_is_omitted(caplog):
    """One failing metric does not affect its siblings."""
    transport = FakeTransport(RESPONSES)
    with caplog.at_level(logging.WARNING, logger="nasmetrics.engine"):
        result = make_engine(transport).fetch_all()

    assert result == {"A": 15.0, "C": 2.0}
    assert sorted(transport.calls) == ["A", "B", "C"]
    assert "B: HTTP 500: InternalError" in caplog.text


def test_reduce_errors_are_isolated():
    transport = FakeTransport({
        "A": (),
        "B": series((10, 1.0, 0)),
        "C": series((5, 8.0, 4)),
    })
    assert make_engine(transport).fetch_all() == {"C": 2.0}


def test_unexpected_exception_is_isolated():
    transport = FakeTransport(dict(RESPONSES, B=RuntimeError("boom")))
    assert make_engine(transport).fetch_all() == {"A": 15.0, "C": 2.0}


def test_empty_catalog_returns_empty_mapping():
    transport = FakeTransport({})
    assert make_engine(transport, catalog=MetricCatalog(())).fetch_all() == {}
    assert make_engine(transport).fetch_all([]) == {}
    assert transport.calls == []


def test_every_metric_fetched_once():
    transport = FakeTransport({"A": series((1, 1.0, 1)), "B": series((1, 2.0, 1))})
    queries = [make_query(n, "nas001", now=T0) for n in ("A", "B", "A")]
    result = make_engine(transport, catalog=catalog_of("A", "B")).fetch_all(queries)
    assert result == {"A": 1.0, "B": 2.0}
    assert sorted(transport.calls) == ["A", "B"]


def test_build_queries_share_window():
    engine = make_engine(FakeTransport({}), lookback_s=120)
    queries = engine.build_queries(now=T0)
    assert [q.metric_name for q in queries] == ["A", "B", "C"]
    assert {q.end for q in queries} == {T0}
    assert {q.start for q in queries} == {T0 - timedelta(seconds=120)}
    assert {q.dimension for q in queries} == {("NASInstanceIdentifier", "nas001")}


def test_tasks_run_in_parallel():
    """All three fetches must be in flight at once to pass the barrier."""
    barrier = threading.Barrier(3, timeout=5)

    class BarrierTransport(FakeTransport):
        def fetch(self, query, timeout=None):
            barrier.wait()
            return super().fetch(query, timeout)

    transport = BarrierTransport(dict(RESPONSES, B=series((1, 6.0, 2))))
    assert make_engine(transport).fetch_all() == {"A": 15.0, "B": 3.0, "C": 2.0}


def test_hung_metric_times_out():
    release = threading.Event()

    class HangingTransport(FakeTransport):
        def fetch(self, query, timeout=None):
            if query.metric_name == "B":
                release.wait(5)
            return super().fetch(query, timeout)

    transport = HangingTransport(dict(RESPONSES, B=series((1, 6.0, 2))))
    try:
        result = make_engine(transport, timeout_s=0.3).fetch_all()
    finally:
        release.set()

    assert result == {"A": 15.0, "C": 2.0}


def test_closed_cycle_rejects_late_results():
    cycle = FetchCycle(deadline=0)
    assert cycle.put("A", 1.0)
    results = cycle.close()
    assert not cycle.put("B", 2.0)
    assert results == {"A": 1.0}


def test_overlapping_cycles_do_not_interfere():
    names = [f"M{i}" for i in range(12)]
    responses = {n: series((i, float(i * 10), 10)) for i, n in enumerate(names)}
    responses["M5"] = TransportError("throttled")
    engine = make_engine(FakeTransport(responses), catalog=catalog_of(*names))

    expected = {n: float(i) for i, n in enumerate(names) if n != "M5"}
    results = []
    lock = threading.Lock()

    def run():
        r = engine.fetch_all()
        with lock:
            results.append(r)

    threads = [threading.Thread(target=run) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert len(results) == 8
    assert all(r == expected for r in results)


def test_sequential_calls_are_identical():
    engine = make_engine(FakeTransport(RESPONSES))
    assert engine.fetch_all() == engine.fetch_all()


def test_max_workers_limits_threads():
    transport = FakeTransport(dict(RESPONSES, B=series((1, 6.0, 2))))
    assert make_engine(transport, max_workers=1).fetch_all() == {"A": 15.0, "B": 3.0, "C": 2.0}


def test_self_metrics_recorded():
    registry = CollectorRegistry()
    self_metrics = SelfMetrics(registry=registry, prefix="t_")
    make_engine(FakeTransport(RESPONSES), self_metrics=self_metrics).fetch_all()

    assert registry.get_sample_value("t_fetch_total", {"metric_name": "A"}) == 1.0
    assert registry.get_sample_value(
        "t_fetch_errors_total", {"metric_name": "B", "error": "TransportError"}
    ) == 1.0
    assert registry.get_sample_value("t_metrics_reported") == 2.0
    assert registry.get_sample_value("t_cycle_duration_seconds_count") == 1.0
