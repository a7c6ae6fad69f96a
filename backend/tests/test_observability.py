"""Tests for metrics backends and the /metrics endpoint."""

import pytest
from httpx import AsyncClient

from omnicalendar.observability import (
    MetricsCollector,
    PrometheusMetrics,
    build_metrics_backend,
)

from conftest import metric_value


def _record_sample_traffic(backend) -> None:
    backend.observe_request("GET", "/api/tasks", 200, 42.0)
    backend.observe_request("GET", "/api/tasks", 200, 700.0)
    backend.observe_calendarific_call(502, 80.0)
    backend.observe_holiday_lookup("hit")
    backend.observe_holiday_lookup("hit")
    backend.observe_holiday_write("conflict")
    backend.observe_auth_failure("expired")


class TestMetricsBackends:
    """Both backends render the same samples for the same events."""

    @pytest.mark.parametrize("backend_cls", [MetricsCollector, PrometheusMetrics])
    def test_counters(self, backend_cls):
        backend = backend_cls()
        _record_sample_traffic(backend)

        rendered = backend.render_prometheus()

        assert metric_value(
            rendered, "http_requests_total", method="GET", route="/api/tasks", status="200"
        ) == 2
        assert metric_value(rendered, "calendarific_requests_total", status="502") == 1
        assert metric_value(rendered, "holiday_cache_lookups_total", outcome="hit") == 2
        assert metric_value(rendered, "holiday_cache_writes_total", result="conflict") == 1
        assert metric_value(rendered, "auth_failures_total", reason="expired") == 1
        assert metric_value(rendered, "auth_failures_total", reason="invalid") == 0

    @pytest.mark.parametrize("backend_cls", [MetricsCollector, PrometheusMetrics])
    def test_histograms(self, backend_cls):
        backend = backend_cls(buckets_ms=[100, 500])
        _record_sample_traffic(backend)

        rendered = backend.render_prometheus()
        labels = {"method": "GET", "route": "/api/tasks"}

        assert metric_value(rendered, "http_request_duration_ms_bucket", le="100.0", **labels) == 1
        assert metric_value(rendered, "http_request_duration_ms_bucket", le="500.0", **labels) == 1
        assert metric_value(rendered, "http_request_duration_ms_bucket", le="+Inf", **labels) == 2
        assert metric_value(rendered, "http_request_duration_ms_count", **labels) == 2
        assert metric_value(rendered, "calendarific_request_duration_ms_count") == 1

    def test_backend_selection(self):
        assert isinstance(build_metrics_backend("inmemory"), MetricsCollector)
        assert isinstance(build_metrics_backend("prometheus"), PrometheusMetrics)


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    async def test_requests_labelled_by_route_template(self, client: AsyncClient):
        await client.get("/health")
        await client.get("/no/such/route")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert 'route="/health"' in response.text
        assert 'route="unmatched"' in response.text
        assert "/no/such/route" not in response.text
