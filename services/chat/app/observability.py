from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


REGISTRY = CollectorRegistry()
for _collector in (ProcessCollector, PlatformCollector, GCCollector):
    _collector(registry=REGISTRY)

# Upstream model calls routinely take several seconds, so the top buckets go past the usual 10s.
LATENCY_BUCKETS_MS = (10, 50, 100, 250, 500, 1000, 2000, 4000, 8000, 15000, 30000, 60000)

REQUEST_TOTAL = Counter(
    "chat_request_total",
    "HTTP requests by route and outcome",
    ["route", "method", "outcome"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "chat_request_latency_ms",
    "HTTP request latency in milliseconds",
    ["route", "method"],
    buckets=LATENCY_BUCKETS_MS,
    registry=REGISTRY,
)

# call: call1 (with tools) | call2 (wording the tool result)
MODEL_LATENCY = Histogram(
    "chat_model_latency_ms", "Chat completion latency in milliseconds", ["call"], buckets=LATENCY_BUCKETS_MS, registry=REGISTRY
)
# kind: config | unavailable | status | malformed
MODEL_ERROR_TOTAL = Counter("chat_model_error_total", "Chat completion failures", ["call", "kind"], registry=REGISTRY)

# tool: search_places | search_rates | get_hotel_details
TOOL_LATENCY = Histogram(
    "chat_hotel_api_latency_ms", "Hotel API latency in milliseconds", ["tool"], buckets=LATENCY_BUCKETS_MS, registry=REGISTRY
)
TOOL_ERROR_TOTAL = Counter("chat_hotel_api_error_total", "Hotel API failures", ["tool"], registry=REGISTRY)

# kind: json_repair | args_regex_fallback | detail_enrichment_failed | call2_degraded | transcript_too_long
FALLBACK_TOTAL = Counter("chat_fallback_total", "Degraded paths taken instead of failing the turn", ["kind"], registry=REGISTRY)


def _outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "rejected"
    return "ok"


def setup_tracing(app: FastAPI, service_name: str, otlp_endpoint: str | None = None) -> None:
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    # No endpoint: spans are recorded but not exported.
    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls="healthz,metrics")
    HTTPXClientInstrumentor().instrument()


async def metrics_endpoint() -> Response:
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


def add_metrics_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def _metrics(request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        resp = await call_next(request)
        # Route template, not raw path.
        matched = request.scope.get("route")
        route = getattr(matched, "path", "unmatched")
        REQUEST_LATENCY.labels(route, request.method).observe((time.perf_counter() - start) * 1000)
        REQUEST_TOTAL.labels(route, request.method, _outcome(resp.status_code)).inc()
        return resp

    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)
