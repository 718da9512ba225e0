import pytest

from kiosk_queue.metrics import (
    OPERATION_DURATION,
    TICKETS_ISSUED,
    MetricsRegistry,
    PrometheusExporter,
    register_default_metrics,
)


def test_counter_requires_declared_labels():
    registry = MetricsRegistry()
    counter = registry.counter("issued", label_names=("prefix",))

    counter.inc(labels={"prefix": "PR"})
    counter.inc(2, labels={"prefix": "PR"})

    assert counter.value(labels={"prefix": "PR"}) == 3
    with pytest.raises(ValueError):
        counter.inc(labels={"window": "1"})
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"prefix": "PR"})


def test_registry_rejects_type_mismatch():
    registry = MetricsRegistry()
    registry.counter("queue_depth")

    with pytest.raises(TypeError):
        registry.distribution("queue_depth")


def test_time_records_duration():
    registry = MetricsRegistry()

    with registry.time("op_seconds", labels={"operation": "call_next"}):
        pass

    snapshot = registry.snapshot()["op_seconds"][("call_next",)]
    assert snapshot["count"] == 1.0
    assert snapshot["sum"] >= 0.0


def test_prometheus_exporter_renders_defaults():
    registry = register_default_metrics(MetricsRegistry())
    registry.counter(TICKETS_ISSUED).inc(labels={"prefix": "PR"})
    registry.distribution(OPERATION_DURATION).observe(0.5, labels={"operation": "issue_ticket"})

    payload = PrometheusExporter(registry).build_payload()

    assert "# TYPE queue_tickets_issued_total counter" in payload
    assert 'queue_tickets_issued_total{prefix="PR"} 1.0' in payload
    assert 'queue_operation_duration_seconds_count{operation="issue_ticket"} 1.0' in payload
    assert 'queue_operation_duration_seconds_sum{operation="issue_ticket"} 0.5' in payload
    assert "# HELP queue_claim_conflicts_total" in payload
