"""
Listener metrics with Prometheus text exposition.

Every metric the listener records is declared below with its help text, so
a scrape shows the full set (at zero) from the moment the process starts.
"""

from __future__ import annotations

import time
from typing import Any

PREFIX = "listener_"

COUNTERS: dict[str, str] = {
    "connect_attempts_total": "Connection attempts, including the first one.",
    "reconnects_total": "Reconnects scheduled after a retryable close.",
    "notifications_total": "Notification frames received.",
    "task_changes_total": "task_changed frames received.",
    "pongs_total": "Pong frames received in reply to heartbeats.",
    "frames_invalid_total": "Server frames that failed to parse.",
    "handler_errors_total": "Exceptions raised by registered frame handlers.",
}

GAUGES: dict[str, str] = {
    "connected": "1 while the real-time connection is authenticated.",
}


class UnknownMetric(KeyError):
    """Raised when recording a metric that is not declared above."""


class MetricsCollector:
    """Counters and gauges for one listener process."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self._gauges: dict[str, float] = dict.fromkeys(GAUGES, 0)
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        if name not in self._counters:
            raise UnknownMetric(name)
        self._counters[name] += value

    def set_gauge(self, name: str, value: float) -> None:
        if name not in self._gauges:
            raise UnknownMetric(name)
        self._gauges[name] = value

    def get(self, name: str) -> int | float:
        if name in self._gauges:
            return self._gauges[name]
        if name in self._counters:
            return self._counters[name]
        raise UnknownMetric(name)

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        for name, value in self._counters.items():
            lines.append(f"# HELP {PREFIX}{name} {COUNTERS[name]}")
            lines.append(f"# TYPE {PREFIX}{name} counter")
            lines.append(f"{PREFIX}{name} {value}")
        for name, value in self._gauges.items():
            lines.append(f"# HELP {PREFIX}{name} {GAUGES[name]}")
            lines.append(f"# TYPE {PREFIX}{name} gauge")
            lines.append(f"{PREFIX}{name} {value:g}")
        uptime = time.time() - self._start_time
        lines.append(f"# HELP {PREFIX}uptime_seconds Seconds since the listener started.")
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "uptime_seconds": time.time() - self._start_time,
        }
