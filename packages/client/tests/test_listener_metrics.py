"""Tests for metrics collection."""

import pytest

from taskdeck_client.metrics import COUNTERS, GAUGES, MetricsCollector, UnknownMetric


def test_counter_increment():
    m = MetricsCollector()
    m.inc("notifications_total")
    m.inc("notifications_total")
    assert m.get("notifications_total") == 2


def test_declared_metrics_start_at_zero():
    m = MetricsCollector()
    for name in list(COUNTERS) + list(GAUGES):
        assert m.get(name) == 0


def test_gauge_set():
    m = MetricsCollector()
    m.set_gauge("connected", 1)
    assert m.get("connected") == 1


def test_undeclared_metrics_are_rejected():
    m = MetricsCollector()
    with pytest.raises(UnknownMetric):
        m.inc("messages_total")
    with pytest.raises(UnknownMetric):
        m.set_gauge("sessions_active", 1)
    with pytest.raises(UnknownMetric):
        m.get("messages_total")


def test_prometheus_format():
    m = MetricsCollector()
    m.inc("connect_attempts_total", 3)
    text = m.to_prometheus()
    assert "# HELP listener_connect_attempts_total Connection attempts" in text
    assert "# TYPE listener_connect_attempts_total counter" in text
    assert "listener_connect_attempts_total 3" in text
    assert "listener_reconnects_total 0" in text
    assert "# TYPE listener_connected gauge" in text
    assert "listener_connected 0" in text
    assert "listener_uptime_seconds" in text


def test_to_dict():
    m = MetricsCollector()
    m.inc("pongs_total")
    exported = m.to_dict()
    assert exported["counters"]["pongs_total"] == 1
    assert exported["counters"]["reconnects_total"] == 0
    assert exported["gauges"] == {"connected": 0}
    assert exported["uptime_seconds"] >= 0
