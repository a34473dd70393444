"""
Prometheus metrics.

The manager operates in two modes:
1. No-op mode: every recording call exists but does nothing
2. Active mode: counters are registered on the manager's own registry and
   exposed at /metrics

Call sites never need to check which mode is active.
"""

import time
import typing as t
from contextlib import contextmanager

from flask import Flask, Response, request


class MetricsManager:
    """Central manager for metrics operations."""

    def __init__(self, enabled: bool = False):
        self.enabled = False
        self.registry = None
        self._initialize_metrics(enabled)

    def init_app(self, app: Flask) -> None:
        self._initialize_metrics(bool(app.config.get("METRICS_ENABLED", False)))
        register_metrics(app, self)

    def _initialize_metrics(self, enabled: bool) -> None:
        if enabled and self.enabled:
            return

        self.enabled = enabled
        if enabled:
            from prometheus_client import CollectorRegistry, Counter, Histogram

            self.registry = CollectorRegistry()
            self.http_requests_total = Counter(
                "http_requests_total",
                "Total HTTP requests",
                ["method", "endpoint", "status_code"],
                registry=self.registry,
            )
            self.http_request_duration_seconds = Histogram(
                "http_request_duration_seconds",
                "HTTP request latency in seconds",
                ["method", "endpoint"],
                buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
                registry=self.registry,
            )
            self.webhook_events_total = Counter(
                "webhook_events_total",
                "Processor notifications by type and outcome",
                ["event_type", "outcome"],
                registry=self.registry,
            )
            self.points_awarded_total = Counter(
                "points_awarded_total",
                "Points credited to user wallets",
                ["reference_type"],
                registry=self.registry,
            )
            self.task_executions_total = Counter(
                "task_executions_total",
                "Total background task executions",
                ["task_name", "status"],
                registry=self.registry,
            )
        else:
            self.registry = None
            self.http_requests_total = _DummyMetric()
            self.http_request_duration_seconds = _DummyMetric()
            self.webhook_events_total = _DummyMetric()
            self.points_awarded_total = _DummyMetric()
            self.task_executions_total = _DummyMetric()

    def record_request(self, method: str, endpoint: str, status_code: int) -> None:
        self.http_requests_total.labels(
            method=method.upper(),
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """
        Count one notification.

        Args:
            event_type: Processor event type, e.g. ``invoice.payment_succeeded``
            outcome: processed, duplicate, ignored or failed
        """
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_points_awarded(self, points: int, reference_type: str) -> None:
        self.points_awarded_total.labels(reference_type=reference_type).inc(points)

    def record_task(self, task_name: str, status: str) -> None:
        self.task_executions_total.labels(task_name=task_name, status=status).inc()

    @contextmanager
    def observe_latency(self, method: str, endpoint: str) -> t.Generator[None, None, None]:
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.http_request_duration_seconds.labels(
                method=method.upper(),
                endpoint=endpoint,
            ).observe(time.perf_counter() - start_time)

    def render(self) -> bytes:
        if not self.enabled:
            return b""
        from prometheus_client import generate_latest

        return generate_latest(self.registry)


class _DummyMetric:
    """Dummy metric object that mimics the Prometheus metric interface."""

    def labels(self, **labels: str) -> "_DummyMetric":
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def observe(self, value: float) -> None:
        pass

    def set(self, value: float) -> None:
        pass


def register_metrics(app: Flask, manager: MetricsManager) -> None:
    """Register request timing hooks and the /metrics endpoint."""
    if manager.enabled:
        @app.before_request
        def _start_timer() -> None:
            request.environ["metrics.start_time"] = time.perf_counter()

        @app.after_request
        def _record_request(response: Response) -> Response:
            endpoint = request.endpoint or request.path
            start_time = request.environ.get("metrics.start_time")
            if start_time is not None:
                manager.http_request_duration_seconds.labels(
                    method=request.method,
                    endpoint=endpoint,
                ).observe(time.perf_counter() - start_time)
            manager.record_request(request.method, endpoint, response.status_code)
            return response

    # Always registered; empty body in no-op mode
    @app.route("/metrics")
    def metrics_endpoint() -> Response:
        return Response(
            manager.render(),
            mimetype="text/plain",
            headers={"Cache-Control": "no-cache"},
        )


metrics = MetricsManager()
