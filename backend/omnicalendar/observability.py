"""Metrics, request logging and tracing for the OmniCalendar API.

Both metrics backends expose the same catalogue: an in-process collector
that renders Prometheus text (the default) and one backed by
``prometheus_client``. Services report domain events (holiday cache
lookups, Calendarific calls, rejected tokens); the middleware reports
HTTP traffic.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import defaultdict
from contextvars import ContextVar
from threading import Lock
from typing import Iterable, Protocol

from fastapi import FastAPI
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from omnicalendar.core.config import get_settings

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("omnicalendar.request")

DEFAULT_BUCKETS_MS = (25, 50, 100, 250, 500, 1000, 2500, 5000)

# name -> (help, label names)
COUNTERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "http_requests_total": ("HTTP requests by route and status", ("method", "route", "status")),
    "calendarific_requests_total": ("Calls to the Calendarific holidays API", ("status",)),
    "holiday_cache_lookups_total": ("Holiday cache lookups by outcome", ("outcome",)),
    "holiday_cache_writes_total": ("Holiday cache writes by result", ("result",)),
    "auth_failures_total": ("Rejected requests by authentication failure", ("reason",)),
}
HISTOGRAMS: dict[str, tuple[str, tuple[str, ...]]] = {
    "http_request_duration_ms": ("HTTP request latency in milliseconds", ("method", "route")),
    "calendarific_request_duration_ms": ("Calendarific call latency in milliseconds", ()),
}


def get_request_id() -> str | None:
    """Return the current request id if set by middleware."""
    return request_id_ctx.get()


class MetricsBackend(Protocol):
    """Domain events the application reports."""

    def observe_request(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        ...

    def observe_calendarific_call(self, status_code: int, duration_ms: float) -> None:
        ...

    def observe_holiday_lookup(self, outcome: str) -> None:
        ...

    def observe_holiday_write(self, result: str) -> None:
        ...

    def observe_auth_failure(self, reason: str) -> None:
        ...

    def render_prometheus(self) -> str:
        ...


class _Recorder:
    """Maps domain events onto the metric catalogue.

    Subclasses store the samples through ``_inc`` and ``_observe``.
    """

    def observe_request(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        self._inc("http_requests_total", method, route, str(status_code))
        self._observe("http_request_duration_ms", duration_ms, method, route)

    def observe_calendarific_call(self, status_code: int, duration_ms: float) -> None:
        # status 0: no response received
        self._inc("calendarific_requests_total", str(status_code))
        self._observe("calendarific_request_duration_ms", duration_ms)

    def observe_holiday_lookup(self, outcome: str) -> None:
        """outcome: hit, miss or stale."""
        self._inc("holiday_cache_lookups_total", outcome)

    def observe_holiday_write(self, result: str) -> None:
        """result: stored or conflict."""
        self._inc("holiday_cache_writes_total", result)

    def observe_auth_failure(self, reason: str) -> None:
        self._inc("auth_failures_total", reason)

    def _inc(self, name: str, *labels: str) -> None:
        raise NotImplementedError

    def _observe(self, name: str, value: float, *labels: str) -> None:
        raise NotImplementedError


def _format_labels(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    if not names:
        return ""
    pairs = ",".join(f'{name}="{value}"' for name, value in zip(names, values))
    return "{" + pairs + "}"


class _Histogram:
    __slots__ = ("hits", "total", "count")

    def __init__(self, size: int) -> None:
        self.hits = [0] * size
        self.total = 0.0
        self.count = 0

    def add(self, value: float, bounds: list[int]) -> None:
        self.total += value
        self.count += 1
        for i, bound in enumerate(bounds):
            if value <= bound:
                self.hits[i] += 1
                break

    def render(
        self,
        name: str,
        label_names: tuple[str, ...],
        labels: tuple[str, ...],
        bounds: list[int],
    ) -> list[str]:
        bucket_names = label_names + ("le",)
        lines = []
        cumulative = 0
        for bound, hits in zip(bounds, self.hits):
            cumulative += hits
            lines.append(
                f"{name}_bucket{_format_labels(bucket_names, labels + (str(float(bound)),))} {cumulative}"
            )
        lines.append(f"{name}_bucket{_format_labels(bucket_names, labels + ('+Inf',))} {self.count}")
        lines.append(f"{name}_sum{_format_labels(label_names, labels)} {self.total:.2f}")
        lines.append(f"{name}_count{_format_labels(label_names, labels)} {self.count}")
        return lines


class MetricsCollector(_Recorder):
    """In-process metrics with Prometheus text output."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        self._lock = Lock()
        self._bounds = sorted(buckets_ms or DEFAULT_BUCKETS_MS)
        self._counts: dict[str, dict[tuple[str, ...], int]] = defaultdict(lambda: defaultdict(int))
        self._histograms: dict[str, dict[tuple[str, ...], _Histogram]] = defaultdict(dict)

    def _inc(self, name: str, *labels: str) -> None:
        with self._lock:
            self._counts[name][labels] += 1

    def _observe(self, name: str, value: float, *labels: str) -> None:
        with self._lock:
            series = self._histograms[name]
            histogram = series.get(labels)
            if histogram is None:
                histogram = series[labels] = _Histogram(len(self._bounds))
            histogram.add(value, self._bounds)

    def render_prometheus(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name, (help_text, label_names) in COUNTERS.items():
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} counter")
                for labels, count in sorted(self._counts.get(name, {}).items()):
                    lines.append(f"{name}{_format_labels(label_names, labels)} {count}")
            for name, (help_text, label_names) in HISTOGRAMS.items():
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} histogram")
                for labels, histogram in sorted(self._histograms.get(name, {}).items()):
                    lines.extend(histogram.render(name, label_names, labels, self._bounds))
        return "\n".join(lines) + "\n"


class PrometheusMetrics(_Recorder):
    """Metrics backed by a private prometheus_client registry."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        self._registry = CollectorRegistry()
        bounds = sorted(buckets_ms or DEFAULT_BUCKETS_MS)
        self._metrics: dict[str, Counter | Histogram] = {}
        for name, (help_text, label_names) in COUNTERS.items():
            self._metrics[name] = Counter(name, help_text, label_names, registry=self._registry)
        for name, (help_text, label_names) in HISTOGRAMS.items():
            self._metrics[name] = Histogram(
                name, help_text, label_names, buckets=bounds, registry=self._registry
            )

    def _series(self, name: str, labels: tuple[str, ...]):
        metric = self._metrics[name]
        return metric.labels(*labels) if labels else metric

    def _inc(self, name: str, *labels: str) -> None:
        self._series(name, labels).inc()

    def _observe(self, name: str, value: float, *labels: str) -> None:
        self._series(name, labels).observe(value)

    def render_prometheus(self) -> str:
        return generate_latest(self._registry).decode("utf-8")


_metrics_backend: MetricsBackend | None = None


def get_metrics_backend() -> MetricsBackend:
    """Return the process-wide metrics backend."""
    global _metrics_backend
    if _metrics_backend is None:
        _metrics_backend = build_metrics_backend(get_settings().metrics_backend)
    return _metrics_backend


def build_metrics_backend(kind: str) -> MetricsBackend:
    if kind == "prometheus":
        return PrometheusMetrics()
    return MetricsCollector()


def _route_template(request: Request) -> str:
    # Templates keep label cardinality bounded; raw paths would not
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, then time, count and log it."""

    def __init__(self, app: ASGIApp, metrics: MetricsBackend | None = None) -> None:
        super().__init__(app)
        self.metrics = metrics or get_metrics_backend()

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            route = _route_template(request)
            self.metrics.observe_request(request.method, route, status_code, elapsed_ms)
            access_logger.info(
                json.dumps(
                    {
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "route": route,
                        "status_code": status_code,
                        "elapsed_ms": round(elapsed_ms, 2),
                    }
                )
            )
            request_id_ctx.reset(token)


def setup_tracing(app: FastAPI, settings=None, engine=None) -> None:
    """Instrument FastAPI, httpx and (given an engine) SQLAlchemy with OpenTelemetry.

    No-op unless ``OTEL_ENABLED`` is set; the packages come from the
    ``tracing`` extra.
    """
    settings = settings or get_settings()
    if not settings.otel_enabled:
        return

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": settings.otel_service_name}))
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    else:
        exporter = OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    HTTPXClientInstrumentor().instrument()
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    logger.info(f"OpenTelemetry tracing enabled for {settings.otel_service_name}")
