"""
Observability instrumentation.

1. **Structured Logging**
   - JSON output with trace context correlation (trace_id, span_id)
   - Test mode support (TESTING=true) for clean pytest output

2. **Prometheus Metrics**
   - HTTP request counters, duration histograms and in-flight gauge
   - Event pipeline counters mirroring EventBusMetrics
   - Dispatcher outcomes, dead letters and tenant scope bypasses
   - Exposed at /metrics for Prometheus scraping

3. **OpenTelemetry Tracing**
   - Enabled with OTEL_ENABLED; spans exported over OTLP gRPC
   - Application code uses the module-level ``tracer`` for custom spans;
     without a configured provider spans are no-ops

Usage:
    from saas_backend.observability import configure_logging, setup_observability

    configure_logging()
    app = FastAPI()
    setup_observability(app)
"""

import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from opentelemetry import trace
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from pythonjsonlogger import jsonlogger

from saas_backend.core.config import settings

logger = logging.getLogger(__name__)

# Endpoints excluded from tracing; probes are frequent and low value
EXCLUDED_TRACE_ENDPOINTS = frozenset({
    "/metrics",
    "/health",
    "/ready",
})


# =============================================================================
# Logging Configuration
# =============================================================================

# Standard LogRecord attributes plus our own trace fields
RESERVED_LOG_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
    "trace_id", "span_id", "service",
})


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that includes OpenTelemetry trace context and extra fields.

    Every field passed via ``logger.info("msg", extra={...})`` ends up as a
    top-level key, next to level, logger, service and (when a span is
    recording) trace_id / span_id.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs, timestamp=True)
        self.service_name = settings.OTEL_SERVICE_NAME

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self.service_name

        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            log_record["trace_id"] = format(ctx.trace_id, "032x")
            log_record["span_id"] = format(ctx.span_id, "016x")

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and not key.startswith("_"):
                if key not in log_record:
                    log_record[key] = value


def configure_logging() -> None:
    """
    Configure root logging.

    Production uses one stream handler with StructuredJsonFormatter. With
    TESTING=true a plain text format is used instead.
    """
    level = logging.DEBUG if settings.DEBUG else logging.INFO
    is_testing = os.getenv("TESTING", "false").lower() == "true"

    if is_testing:
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,
        )
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(StructuredJsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


# =============================================================================
# OpenTelemetry Tracing Setup
# =============================================================================

def configure_tracing() -> None:
    """
    Install an OTLP-exporting tracer provider when OTEL_ENABLED is set.

    Export is fail-open: the BatchSpanProcessor drops spans when the
    collector is unreachable without affecting request handling.
    """
    if not settings.OTEL_ENABLED:
        return

    from opentelemetry.baggage.propagation import W3CBaggagePropagator
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.propagate import set_global_textmap
    from opentelemetry.propagators.composite import CompositePropagator
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

    provider = TracerProvider(
        resource=Resource(attributes={SERVICE_NAME: settings.OTEL_SERVICE_NAME})
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        )
    )
    trace.set_tracer_provider(provider)

    set_global_textmap(CompositePropagator([
        TraceContextTextMapPropagator(),
        W3CBaggagePropagator(),
    ]))

    logger.info(
        "Tracing configured",
        extra={
            "service": settings.OTEL_SERVICE_NAME,
            "otlp_endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        },
    )


tracer = trace.get_tracer("saas_backend")


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

http_requests_total = Counter(
    name="http_requests_total",
    documentation="Total number of HTTP requests processed",
    labelnames=["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    name="http_request_duration_seconds",
    documentation="HTTP request duration in seconds",
    labelnames=["method", "endpoint"],
)

active_requests = Gauge(
    name="active_requests",
    documentation="Number of HTTP requests currently being processed",
)

# Event bus counters; the "counter" label matches EventBusMetrics field names
event_bus_events_total = Counter(
    name="event_bus_events_total",
    documentation="Event bus counters (published, persisted, persist_failed, "
    "fallback_queued, flushed, processed, failed)",
    labelnames=["counter"],
)

event_fallback_queue_size = Gauge(
    name="event_fallback_queue_size",
    documentation="Events waiting in the in-process fallback queue",
)

events_processed_total = Counter(
    name="events_processed_total",
    documentation="Events processed successfully by the dispatcher",
    labelnames=["event_name"],
)

events_failed_total = Counter(
    name="events_failed_total",
    documentation="Failed event processing attempts",
    labelnames=["event_name", "reason"],
)

events_dead_lettered_total = Counter(
    name="events_dead_lettered_total",
    documentation="Events that exhausted their retries",
    labelnames=["event_name"],
)

event_handler_duration_seconds = Histogram(
    name="event_handler_duration_seconds",
    documentation="Consumer handler duration in seconds",
    labelnames=["consumer"],
)

tenant_scope_bypass_total = Counter(
    name="tenant_scope_bypass_total",
    documentation="Tenant-owned storage operations executed without a tenant in context",
    labelnames=["model", "action"],
)


# =============================================================================
# Setup Function
# =============================================================================

def setup_observability(app: FastAPI) -> FastAPI:
    """
    Instrument a FastAPI application.

    Adds the HTTP metrics middleware, registers /metrics and, when tracing
    is enabled, instruments the app with OpenTelemetry.

    Returns:
        The same application instance, for chaining
    """
    if settings.OTEL_ENABLED:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            app, excluded_urls=",".join(EXCLUDED_TRACE_ENDPOINTS)
        )

    @app.middleware("http")
    async def metrics_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        active_requests.inc()
        method = request.method
        path = request.url.path
        try:
            with http_request_duration_seconds.labels(method=method, endpoint=path).time():
                response = await call_next(request)
            http_requests_total.labels(
                method=method, endpoint=path, status=response.status_code
            ).inc()
            return response
        finally:
            active_requests.dec()

    @app.get("/metrics", include_in_schema=False, tags=["monitoring"])
    async def get_metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
