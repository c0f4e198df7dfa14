"""
Observability instrumentation for the placement realtime layer.

1. **Structured Logging**
   - JSON output via python-json-logger with trace context correlation
   - Plain text format for pytest and local development

2. **Prometheus Metrics**
   - Channel gauges and per-table event counters for the change feed
   - Exposed by the health router at /metrics

3. **OpenTelemetry Distributed Tracing**
   - One span per callback dispatch
   - Optional OTLP gRPC export, enabled with OTEL_ENABLED

Usage:
    from placement_realtime.observability import configure_logging, tracer

    configure_logging(json_output=True, level="INFO")

    with tracer.start_as_current_span("custom_operation") as span:
        span.set_attribute("custom.attribute", "value")
"""

import logging
import os
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge
from pythonjsonlogger import jsonlogger

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider

    from placement_realtime.core.config import Settings

# =============================================================================
# Logging Configuration
# =============================================================================

# Attributes every LogRecord carries; anything else came from extra={...}
RESERVED_LOG_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Extra fields describing the channel a record is about, grouped under "realtime"
REALTIME_CONTEXT_FIELDS = ("channel", "table", "event", "filter", "subscriber_id", "group")

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that includes OpenTelemetry trace context and extra fields.

    Output carries the standard fields (timestamp, level, logger, message),
    the service name and trace_id/span_id when a span is recording. Channel
    context from extra={...} (see REALTIME_CONTEXT_FIELDS) is nested under
    "realtime" so log queries can select on realtime.channel; other extra
    fields stay at the top level.
    """

    def __init__(self, *args: Any, service_name: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("reserved_attrs", tuple(RESERVED_LOG_ATTRS))
        super().__init__(
            *args,
            **kwargs,
            timestamp=True,
        )
        self.service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "placement-realtime")

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

        context = {
            key: log_record.pop(key)
            for key in REALTIME_CONTEXT_FIELDS
            if key in log_record
        }
        if context:
            log_record["realtime"] = context

        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            log_record["trace_id"] = format(ctx.trace_id, '032x')
            log_record["span_id"] = format(ctx.span_id, '016x')


def configure_logging(
    json_output: bool = True,
    level: str = "INFO",
    service_name: str | None = None,
) -> logging.Handler:
    """
    Configure root logging.

    Args:
        json_output: Emit JSON records (production) instead of plain text
        level: Root log level name
        service_name: Service name stamped on JSON records

    Returns:
        The handler installed on the root logger
    """
    handler = logging.StreamHandler()
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(StructuredJsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    return handler


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

channels_active = Gauge(
    name="realtime_channels_active",
    documentation="Number of change-feed channels currently held open",
)

channel_activation_failures_total = Counter(
    name="realtime_channel_activation_failures_total",
    documentation="Channels that never reached the active state",
    labelnames=["table"],
)

# A failed release is not retried; the provider may still hold the channel
channel_release_failures_total = Counter(
    name="realtime_channel_release_failures_total",
    documentation="Channel releases the change feed rejected",
    labelnames=["table"],
)

# Labels: table, event (INSERT/UPDATE/DELETE)
events_received_total = Counter(
    name="realtime_events_received_total",
    documentation="Raw change events received from the change feed",
    labelnames=["table", "event"],
)

events_delivered_total = Counter(
    name="realtime_events_delivered_total",
    documentation="Change events handed to subscriber callbacks",
    labelnames=["table", "event"],
)

# reason: unchanged, table_mismatch, event_mismatch, predicate_mismatch,
# inactive, malformed
events_suppressed_total = Counter(
    name="realtime_events_suppressed_total",
    documentation="Change events not delivered to a subscriber",
    labelnames=["table", "reason"],
)

callback_errors_total = Counter(
    name="realtime_callback_errors_total",
    documentation="Subscriber callbacks that raised",
    labelnames=["table"],
)


# =============================================================================
# Tracing
# =============================================================================

tracer = trace.get_tracer(__name__)


def setup_tracing(settings: "Settings") -> "TracerProvider | None":
    """
    Install an OpenTelemetry TracerProvider exporting to OTLP.

    Export is batched and fail-open: if the collector is unavailable spans
    are dropped without affecting dispatch.

    Args:
        settings: Application settings

    Returns:
        The installed provider, or None when tracing is disabled
    """
    if not settings.OTEL_ENABLED:
        return None

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource(attributes={
        SERVICE_NAME: settings.OTEL_SERVICE_NAME
    })
    provider = TracerProvider(resource=resource)

    # insecure=True: plain gRPC for internal networks
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(
        endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True,
    )))
    trace.set_tracer_provider(provider)

    logging.getLogger(__name__).info(
        "OpenTelemetry tracing enabled",
        extra={"otlp_endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT},
    )
    return provider
