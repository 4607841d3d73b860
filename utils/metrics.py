"""Service metrics exported through Prometheus."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Histogram, start_http_server


check_in_outcomes = Counter(
    "eventease_check_in_total", "Check-in operations by outcome", labelnames=("outcome",)
)
conflict_checks = Counter(
    "eventease_conflict_checks_total", "Conflict checks by result", labelnames=("result",)
)
status_update_runs = Counter(
    "eventease_status_update_runs_total", "Batch status update runs", labelnames=("result",)
)
events_status_changed = Counter(
    "eventease_events_status_changed_total", "Events whose stored status was updated"
)
store_duration = Histogram(
    "eventease_store_operation_seconds", "Data store operation duration", labelnames=("operation",)
)


class ServiceMetrics:
    def record_check_in(self, outcome: str) -> None:
        check_in_outcomes.labels(outcome=outcome).inc()

    def record_conflict_check(self, result: str) -> None:
        conflict_checks.labels(result=result).inc()

    def record_status_update(self, updated: int, failed: bool = False) -> None:
        status_update_runs.labels(result="error" if failed else "ok").inc()
        if updated:
            events_status_changed.inc(updated)

    @contextmanager
    def track_store(self, operation: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            store_duration.labels(operation=operation).observe(time.perf_counter() - start)


metrics = ServiceMetrics()


def start_metrics_server(port: int) -> None:
    start_http_server(port)
