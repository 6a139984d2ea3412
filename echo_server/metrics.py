"""Prometheus request metrics.

Each app gets its own ``CollectorRegistry`` so that several apps (tests) can
coexist in one process.
"""

import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, Histogram, Summary, generate_latest,
)

from echo_server.config import EchoSettings

METRIC_TYPES = {"summary": Summary, "histogram": Histogram}


class RequestMetrics:
    """Request duration metric labelled by the configured subset of method/path/status."""

    def __init__(self, settings: EchoSettings):
        metric_cls = METRIC_TYPES.get(settings.prometheus_metric_type)
        if metric_cls is None:
            raise ValueError(
                f"Unsupported PROMETHEUS_METRIC_TYPE {settings.prometheus_metric_type!r}; "
                f"expected one of {sorted(METRIC_TYPES)}"
            )
        self.registry = CollectorRegistry()
        self.metrics_path = settings.prometheus_metrics_path
        self.labels = []
        if settings.prometheus_with_method:
            self.labels.append("method")
        if settings.prometheus_with_path:
            self.labels.append("path")
        if settings.prometheus_with_status:
            self.labels.append("status_code")

        self.duration = metric_cls(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            self.labels,
            registry=self.registry,
        )
        self.up = Gauge("up", "1 = up, 0 = not up", registry=self.registry)
        self.up.set(1)

    def observe(self, method: str, path: str, status_code: int, seconds: float) -> None:
        values = {"method": method, "path": path, "status_code": str(status_code)}
        if self.labels:
            self.duration.labels(**{k: values[k] for k in self.labels}).observe(seconds)
        else:
            self.duration.observe(seconds)

    def render(self) -> Response:
        return Response(generate_latest(self.registry), media_type=CONTENT_TYPE_LATEST)


def install_metrics(app: FastAPI, settings: EchoSettings) -> None:
    """Expose the metrics route and time every other request."""
    if not settings.prometheus_enabled:
        return
    metrics = RequestMetrics(settings)
    app.state.metrics = metrics

    @app.get(metrics.metrics_path, include_in_schema=False)
    async def prometheus_metrics():
        return metrics.render()

    @app.middleware("http")
    async def measure(request: Request, call_next):
        if request.url.path == metrics.metrics_path:
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        metrics.observe(
            request.method, request.url.path, response.status_code,
            time.perf_counter() - start,
        )
        return response
